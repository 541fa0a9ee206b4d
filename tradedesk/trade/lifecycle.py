from __future__ import annotations

import json
import logging
import math
import threading
import uuid
from dataclasses import dataclass, replace
from typing import Any, Callable, Protocol

from tradedesk.clock import now_ms
from tradedesk.config import CONTRACT_TYPES, GuidanceConfig, TradeConfig
from tradedesk.storage.kv import KeyValueStore
from tradedesk.trade.guidance import GuidanceResult, MarketContext, evaluate_guidance, guidance_action
from tradedesk.trade.models import (
    DIRECTIONS,
    ActiveTrade,
    GuidanceMessage,
    GuidanceStatus,
    SavedTrade,
    TradeScenario,
    TradeState,
)
from tradedesk.trade.sizing import auto_position_size, risk_per_contract

LOGGER = logging.getLogger(__name__)

SAVED_TRADES_KEY = "vwap_saved_trades"
ACTIVE_TRADE_KEY = "vwap_active_trade"

EDITABLE_FIELDS = ("entry_price", "position_size", "max_risk_amount", "contract_type")
GUIDED_STATES = (TradeState.CONFIRMING, TradeState.MANAGING)


class TimerHandle(Protocol):
    def start(self) -> None:
        ...

    def cancel(self) -> None:
        ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


@dataclass(frozen=True, slots=True)
class LifecycleSnapshot:
    saved_trades: tuple[SavedTrade, ...]
    active_trade: ActiveTrade | None


Listener = Callable[[LifecycleSnapshot], None]


def _default_timer(delay_seconds: float, callback: Callable[[], None]) -> TimerHandle:
    timer = threading.Timer(delay_seconds, callback)
    timer.daemon = True
    return timer


def _positive_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(parsed) or math.isinf(parsed) or parsed <= 0:
        return None
    return parsed


class TradeLifecycle:
    """
    Single-slot active trade store plus the saved-trade bookmarks.

    SELECTED -> CONFIRMING -> MANAGING -> (cleared). Every mutation persists
    both blobs and notifies subscribers after the lock is released.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: TradeConfig | None = None,
        *,
        guidance_config: GuidanceConfig | None = None,
        clock: Callable[[], int] = now_ms,
        timer_factory: TimerFactory | None = None,
        saved_trades_key: str = SAVED_TRADES_KEY,
        active_trade_key: str = ACTIVE_TRADE_KEY,
    ):
        self.store = store
        self.config = config or TradeConfig()
        self.guidance_config = guidance_config or GuidanceConfig()
        self._clock = clock
        self._timer_factory = timer_factory or _default_timer
        self.saved_trades_key = saved_trades_key
        self.active_trade_key = active_trade_key
        self._lock = threading.RLock()
        self._saved: list[SavedTrade] = []
        self._active: ActiveTrade | None = None
        # trade id -> (token, timer); the token guards against a callback that lost the cancel race
        self._timers: dict[str, tuple[object, TimerHandle]] = {}
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------ state

    @property
    def saved_trades(self) -> list[SavedTrade]:
        with self._lock:
            return list(self._saved)

    @property
    def active_trade(self) -> ActiveTrade | None:
        with self._lock:
            return self._active

    def snapshot(self) -> LifecycleSnapshot:
        with self._lock:
            return LifecycleSnapshot(saved_trades=tuple(self._saved), active_trade=self._active)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, snapshot: LifecycleSnapshot | None) -> None:
        if snapshot is None:
            return
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Trade lifecycle listener failed")

    # ------------------------------------------------------------ persistence

    def load(self) -> None:
        saved: list[SavedTrade] = []
        raw_saved = self.store.get(self.saved_trades_key)
        if raw_saved:
            try:
                saved = [SavedTrade.from_dict(item) for item in json.loads(raw_saved)]
            except (TypeError, ValueError, KeyError) as exc:
                LOGGER.error("Failed to load saved trades: %s", exc)
                saved = []

        active: ActiveTrade | None = None
        raw_active = self.store.get(self.active_trade_key)
        if raw_active:
            try:
                active = ActiveTrade.from_dict(json.loads(raw_active))
            except (TypeError, ValueError, KeyError) as exc:
                LOGGER.error("Failed to load active trade: %s", exc)
                active = None

        with self._lock:
            self._saved = saved
            self._active = active
            if active is not None and active.state is TradeState.CONFIRMING:
                self._schedule_confirmation(active.id)
            snapshot = self._snapshot_unlocked()
        LOGGER.info(
            "Trade state loaded saved=%d active=%s",
            len(saved),
            active.state.value if active is not None else "-",
        )
        self._notify(snapshot)

    def _persist(self) -> None:
        self.store.set(self.saved_trades_key, json.dumps([trade.to_dict() for trade in self._saved]))
        if self._active is None:
            self.store.delete(self.active_trade_key)
        else:
            self.store.set(self.active_trade_key, json.dumps(self._active.to_dict()))

    def _snapshot_unlocked(self) -> LifecycleSnapshot:
        return LifecycleSnapshot(saved_trades=tuple(self._saved), active_trade=self._active)

    def _commit(self) -> LifecycleSnapshot:
        self._persist()
        return self._snapshot_unlocked()

    # -------------------------------------------------------------- bookmarks

    def is_saved(self, scenario_id: str) -> bool:
        with self._lock:
            return any(trade.scenario_id == scenario_id for trade in self._saved)

    def save_trade(self, scenario: TradeScenario) -> SavedTrade | None:
        direction = scenario.direction.upper()
        if direction not in DIRECTIONS:
            LOGGER.warning("Ignoring save for scenario %s with direction %s", scenario.id, direction or "-")
            return None
        with self._lock:
            if any(trade.scenario_id == scenario.id for trade in self._saved):
                LOGGER.debug("Scenario %s already saved", scenario.id)
                return None
            stop = scenario.stop_loss or scenario.invalidation or 0.0
            saved = SavedTrade(
                id=uuid.uuid4().hex,
                scenario_id=scenario.id,
                symbol=scenario.symbol,
                direction=direction,
                setup_name=scenario.type.replace("_", " ") if scenario.type else "Manual Setup",
                timeframe=scenario.timeframe or "1m",
                entry_price=scenario.entry_zone.midpoint,
                stop_loss_price=float(stop),
                targets=tuple(target.price for target in scenario.targets),
                saved_at=self._clock(),
                contract_type=self.config.default_contract_type,
            )
            self._saved.insert(0, saved)
            snapshot = self._commit()
        LOGGER.info("Saved trade %s from scenario %s (%s %s)", saved.id, scenario.id, direction, saved.setup_name)
        self._notify(snapshot)
        return saved

    def remove_trade(self, trade_id: str) -> bool:
        with self._lock:
            remaining = [trade for trade in self._saved if trade.id != trade_id]
            removed = len(remaining) != len(self._saved)
            cleared = self._active is not None and self._active.id == trade_id
            if not removed and not cleared:
                LOGGER.debug("remove_trade: %s not found", trade_id)
                return False
            self._saved = remaining
            if cleared:
                self._cancel_timer(trade_id)
                self._active = None
            snapshot = self._commit()
        LOGGER.info("Removed trade %s%s", trade_id, " (active slot cleared)" if cleared else "")
        self._notify(snapshot)
        return True

    # ----------------------------------------------------------- active slot

    def _auto_size(self, trade: SavedTrade | ActiveTrade, max_risk_amount: float) -> int:
        per_contract = risk_per_contract(
            trade.entry_price,
            trade.stop_loss_price,
            trade.contract_type,
            self.config.point_values,
        )
        return auto_position_size(max_risk_amount, per_contract)

    def select(self, trade_id: str) -> ActiveTrade | None:
        with self._lock:
            saved = next((trade for trade in self._saved if trade.id == trade_id), None)
            if saved is None:
                LOGGER.debug("select: unknown trade %s", trade_id)
                return None
            if self._active is not None:
                self._cancel_timer(self._active.id)
            max_risk = self.config.default_max_risk
            self._active = ActiveTrade.from_saved(
                saved,
                state=TradeState.SELECTED,
                max_risk_amount=max_risk,
                position_size=self._auto_size(saved, max_risk),
            )
            active = self._active
            snapshot = self._commit()
        LOGGER.info(
            "Selected trade %s %s size=%d max_risk=%.2f",
            active.id,
            active.direction,
            active.position_size,
            active.max_risk_amount,
        )
        self._notify(snapshot)
        return active

    def _validated_changes(self, changes: dict[str, Any]) -> dict[str, Any]:
        accepted: dict[str, Any] = {}
        for key, value in changes.items():
            if key not in EDITABLE_FIELDS:
                LOGGER.warning("update_params: ignoring unknown field %s", key)
                continue
            if key == "entry_price":
                price = _positive_float(value)
                if price is None:
                    LOGGER.warning("update_params: invalid entry_price %r", value)
                    continue
                accepted[key] = price
            elif key == "max_risk_amount":
                amount = _positive_float(value)
                if amount is None:
                    LOGGER.warning("update_params: invalid max_risk_amount %r", value)
                    continue
                accepted[key] = amount
            elif key == "position_size":
                if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0 or value != int(value):
                    LOGGER.warning("update_params: invalid position_size %r", value)
                    continue
                accepted[key] = int(value)
            else:
                contract = str(value).strip().upper()
                if contract not in CONTRACT_TYPES:
                    LOGGER.warning("update_params: unknown contract_type %r", value)
                    continue
                accepted[key] = contract
        return accepted

    def _editable(self, operation: str) -> bool:
        if self._active is None:
            LOGGER.debug("%s: no active trade", operation)
            return False
        if self._active.state not in (TradeState.SELECTED, TradeState.CONFIRMING):
            LOGGER.warning("%s: trade %s is %s, edits are locked", operation, self._active.id, self._active.state.value)
            return False
        return True

    def update_params(self, **changes: Any) -> ActiveTrade | None:
        with self._lock:
            if not self._editable("update_params"):
                return None
            accepted = self._validated_changes(changes)
            if not accepted:
                return self._active
            self._active = replace(self._active, **accepted)
            active = self._active
            snapshot = self._commit()
        LOGGER.info("Updated trade %s: %s", active.id, ", ".join(f"{k}={v}" for k, v in accepted.items()))
        self._notify(snapshot)
        return active

    def recalculate_size(self) -> ActiveTrade | None:
        with self._lock:
            if not self._editable("recalculate_size"):
                return None
            size = self._auto_size(self._active, self._active.max_risk_amount)
            self._active = replace(self._active, position_size=size)
            active = self._active
            snapshot = self._commit()
        LOGGER.info("Recalculated size for %s: %d", active.id, size)
        self._notify(snapshot)
        return active

    # ------------------------------------------------------------ transitions

    def _schedule_confirmation(self, trade_id: str) -> None:
        self._cancel_timer(trade_id)
        token = object()
        timer = self._timer_factory(self.config.confirm_delay_seconds, lambda: self._confirm(trade_id, token))
        self._timers[trade_id] = (token, timer)
        timer.start()

    def _cancel_timer(self, trade_id: str) -> None:
        entry = self._timers.pop(trade_id, None)
        if entry is not None:
            entry[1].cancel()

    def mark_entered(self) -> ActiveTrade | None:
        with self._lock:
            if self._active is None:
                LOGGER.debug("mark_entered: no active trade")
                return None
            if self._active.state is not TradeState.SELECTED:
                LOGGER.debug("mark_entered: trade %s already %s", self._active.id, self._active.state.value)
                return None
            self._active = replace(self._active, state=TradeState.CONFIRMING)
            active = self._active
            self._schedule_confirmation(active.id)
            snapshot = self._commit()
        LOGGER.info("Trade %s CONFIRMING", active.id)
        self._notify(snapshot)
        return active

    def _confirm(self, trade_id: str, token: object) -> None:
        with self._lock:
            entry = self._timers.get(trade_id)
            if entry is None or entry[0] is not token:
                return
            del self._timers[trade_id]
            active = self._active
            if active is None or active.id != trade_id or active.state is not TradeState.CONFIRMING:
                LOGGER.debug("Confirmation for %s skipped, trade no longer confirming", trade_id)
                return
            self._active = replace(active, state=TradeState.MANAGING, entered_at=self._clock())
            snapshot = self._commit()
        LOGGER.info("Trade %s MANAGING", trade_id)
        self._notify(snapshot)

    def _clear_active(self, operation: str) -> ActiveTrade | None:
        with self._lock:
            active = self._active
            if active is None:
                LOGGER.debug("%s: no active trade", operation)
                return None
            self._cancel_timer(active.id)
            self._active = None
            snapshot = self._commit()
        self._notify(snapshot)
        return active

    def close(self) -> ActiveTrade | None:
        closed = self._clear_active("close")
        if closed is not None:
            LOGGER.info("Trade %s closed from %s", closed.id, closed.state.value)
        return closed

    def invalidate(self) -> ActiveTrade | None:
        invalidated = self._clear_active("invalidate")
        if invalidated is not None:
            LOGGER.info("Trade %s invalidated from %s", invalidated.id, invalidated.state.value)
        return invalidated

    # --------------------------------------------------------------- guidance

    def _prepend_guidance(self, message: GuidanceMessage) -> LifecycleSnapshot:
        self._active = replace(self._active, guidance=(message,) + self._active.guidance)
        return self._commit()

    def append_guidance(self, message: GuidanceMessage) -> ActiveTrade | None:
        with self._lock:
            if self._active is None:
                LOGGER.debug("append_guidance: no active trade")
                return None
            snapshot = self._prepend_guidance(message)
            active = self._active
        self._notify(snapshot)
        return active

    def record_guidance(self, result: GuidanceResult) -> GuidanceMessage | None:
        """Log a guidance change for the active trade.

        Only status changes are logged, and a first HOLD is never logged.
        """
        with self._lock:
            active = self._active
            if active is None or active.state not in GUIDED_STATES:
                return None
            last = active.guidance[0] if active.guidance else None
            if last is not None and last.status is result.status:
                return None
            if last is None and result.status is GuidanceStatus.HOLD:
                return None
            message = GuidanceMessage(
                timestamp=self._clock(),
                status=result.status,
                action=guidance_action(result.status),
                evidence=tuple(result.evidence),
            )
            snapshot = self._prepend_guidance(message)
        LOGGER.info("Guidance for %s: %s (%s)", active.id, message.status.value, "; ".join(message.evidence))
        self._notify(snapshot)
        return message

    def evaluate(self, context: MarketContext) -> GuidanceResult | None:
        active = self.active_trade
        if active is None or active.state not in GUIDED_STATES:
            return None
        result = evaluate_guidance(active, context, self.guidance_config)
        self.record_guidance(result)
        return result
