from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Mapping, Protocol, Sequence


class TradeState(str, Enum):
    SELECTED = "SELECTED"
    CONFIRMING = "CONFIRMING"
    MANAGING = "MANAGING"
    CLOSED = "CLOSED"


class GuidanceStatus(str, Enum):
    HOLD = "HOLD"
    CAUTION = "CAUTION"
    EXIT = "EXIT"


DIRECTIONS = ("LONG", "SHORT")


def _float_or_none(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True, slots=True)
class EntryZone:
    min: float
    max: float

    @property
    def midpoint(self) -> float:
        return (self.min + self.max) / 2


@dataclass(frozen=True, slots=True)
class ScenarioTarget:
    price: float
    label: str = ""


@dataclass(frozen=True, slots=True)
class ScenarioMeta:
    tags: tuple[str, ...] = ()
    family: str = ""
    regime: str = ""
    risk: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScenarioMeta":
        return cls(
            tags=tuple(str(tag) for tag in data.get("tags") or ()),
            family=str(data.get("family") or ""),
            regime=str(data.get("regime") or ""),
            risk=str(data.get("risk") or ""),
        )


@dataclass(frozen=True, slots=True)
class TradeScenario:
    """Candidate setup produced upstream (chart analysis or manual entry)."""

    id: str
    symbol: str
    direction: str
    entry_zone: EntryZone
    targets: tuple[ScenarioTarget, ...] = ()
    stop_loss: float | None = None
    invalidation: float | None = None
    type: str = ""
    timeframe: str = ""
    confidence_score: float | None = None
    meta: ScenarioMeta | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TradeScenario":
        zone = data.get("entryZone") or data.get("entry_zone") or {}
        targets: list[ScenarioTarget] = []
        for item in data.get("targets") or ():
            if isinstance(item, Mapping):
                price = _float_or_none(item.get("price"))
                label = str(item.get("label") or item.get("description") or item.get("desc") or "")
            else:
                price, label = _float_or_none(item), ""
            if price is not None:
                targets.append(ScenarioTarget(price=price, label=label))
        confidence = data.get("confidence")
        confidence_score = _float_or_none(
            confidence.get("score") if isinstance(confidence, Mapping) else data.get("confidence_score")
        )
        meta = data.get("meta")
        return cls(
            id=str(data.get("id") or ""),
            symbol=str(data.get("symbol") or ""),
            direction=str(data.get("direction") or "").upper(),
            entry_zone=EntryZone(min=float(zone.get("min", 0.0)), max=float(zone.get("max", 0.0))),
            targets=tuple(targets),
            stop_loss=_float_or_none(data.get("stopLoss", data.get("stop_loss"))),
            invalidation=_float_or_none(data.get("invalidation")),
            type=str(data.get("type") or ""),
            timeframe=str(data.get("timeframe") or ""),
            confidence_score=confidence_score,
            meta=ScenarioMeta.from_dict(meta) if isinstance(meta, Mapping) else None,
        )


@dataclass(frozen=True, slots=True)
class PersonaProfile:
    preferred_families: tuple[str, ...] = ()
    preferred_regimes: tuple[str, ...] = ()
    risk_tolerance: str = ""


@dataclass(frozen=True, slots=True)
class RankedScenario:
    scenario: TradeScenario
    score: float
    why: tuple[str, ...] = ()


class ScenarioRanker(Protocol):
    """Orders scenarios for a trader profile, best first."""

    def rank(
        self,
        scenarios: Sequence[TradeScenario],
        profile: PersonaProfile,
        weights: Mapping[str, float],
    ) -> list[RankedScenario]:
        ...


@dataclass(frozen=True, slots=True)
class GuidanceMessage:
    timestamp: int
    status: GuidanceStatus
    action: str
    evidence: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "status": self.status.value,
            "action": self.action,
            "evidence": list(self.evidence),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GuidanceMessage":
        if not isinstance(data, Mapping):
            raise TypeError(f"Expected a guidance object, got {type(data).__name__}")
        return cls(
            timestamp=int(data["timestamp"]),
            status=GuidanceStatus(data["status"]),
            action=str(data.get("action") or ""),
            evidence=tuple(str(item) for item in data.get("evidence") or ()),
        )


_SAVED_KEYS = {
    "id": "id",
    "scenario_id": "scenarioId",
    "symbol": "symbol",
    "direction": "direction",
    "setup_name": "setupName",
    "timeframe": "timeframe",
    "entry_price": "entryPrice",
    "stop_loss_price": "stopLossPrice",
    "targets": "targets",
    "saved_at": "savedAt",
    "contract_type": "contractType",
}


@dataclass(frozen=True, slots=True)
class SavedTrade:
    id: str
    scenario_id: str
    symbol: str
    direction: str
    setup_name: str
    timeframe: str
    entry_price: float
    stop_loss_price: float
    targets: tuple[float, ...]
    saved_at: int
    contract_type: str

    def to_dict(self) -> dict[str, Any]:
        payload = {wire: getattr(self, attr) for attr, wire in _SAVED_KEYS.items()}
        payload["targets"] = list(self.targets)
        return payload

    @staticmethod
    def _saved_kwargs(data: Mapping[str, Any]) -> dict[str, Any]:
        if not isinstance(data, Mapping):
            raise TypeError(f"Expected a trade object, got {type(data).__name__}")
        direction = str(data["direction"]).upper()
        if direction not in DIRECTIONS:
            raise ValueError(f"Unsupported direction {direction}")
        return {
            "id": str(data["id"]),
            "scenario_id": str(data["scenarioId"]),
            "symbol": str(data.get("symbol") or ""),
            "direction": direction,
            "setup_name": str(data.get("setupName") or ""),
            "timeframe": str(data.get("timeframe") or ""),
            "entry_price": float(data["entryPrice"]),
            "stop_loss_price": float(data["stopLossPrice"]),
            "targets": tuple(float(item) for item in data.get("targets") or ()),
            "saved_at": int(data["savedAt"]),
            "contract_type": str(data.get("contractType") or "MNQ").upper(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SavedTrade":
        return cls(**cls._saved_kwargs(data))


@dataclass(frozen=True, slots=True)
class ActiveTrade(SavedTrade):
    state: TradeState
    max_risk_amount: float
    position_size: int
    entered_at: int | None = None
    guidance: tuple[GuidanceMessage, ...] = field(default=())

    @property
    def is_long(self) -> bool:
        return self.direction == "LONG"

    @classmethod
    def from_saved(
        cls,
        saved: SavedTrade,
        *,
        state: TradeState,
        max_risk_amount: float,
        position_size: int,
    ) -> "ActiveTrade":
        base = {item.name: getattr(saved, item.name) for item in fields(SavedTrade)}
        return cls(**base, state=state, max_risk_amount=max_risk_amount, position_size=position_size)

    def to_dict(self) -> dict[str, Any]:
        payload = SavedTrade.to_dict(self)
        payload.update(
            {
                "state": self.state.value,
                "maxRiskAmount": self.max_risk_amount,
                "positionSize": self.position_size,
                "guidance": [message.to_dict() for message in self.guidance],
            }
        )
        if self.entered_at is not None:
            payload["enteredAt"] = self.entered_at
        return payload

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ActiveTrade":
        base = SavedTrade._saved_kwargs(data)
        entered_at = data.get("enteredAt")
        return cls(
            **base,
            state=TradeState(data["state"]),
            max_risk_amount=float(data["maxRiskAmount"]),
            position_size=int(data["positionSize"]),
            entered_at=int(entered_at) if entered_at is not None else None,
            guidance=tuple(GuidanceMessage.from_dict(item) for item in data.get("guidance") or ()),
        )
