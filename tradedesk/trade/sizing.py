from __future__ import annotations

import math
from typing import Mapping

DEFAULT_POINT_VALUES: dict[str, float] = {"MNQ": 2.0, "NQ": 20.0}


def point_value(contract_type: str, point_values: Mapping[str, float] | None = None) -> float:
    table = point_values or DEFAULT_POINT_VALUES
    key = contract_type.strip().upper()
    if key not in table:
        raise ValueError(f"Unknown contract type {contract_type}")
    return float(table[key])


def risk_per_contract(
    entry_price: float,
    stop_price: float,
    contract_type: str,
    point_values: Mapping[str, float] | None = None,
) -> float | None:
    """Dollar risk of one contract, ``None`` when entry equals stop."""
    distance = abs(entry_price - stop_price)
    if distance <= 0:
        return None
    return distance * point_value(contract_type, point_values)


def auto_position_size(max_risk_amount: float, per_contract: float | None) -> int:
    if per_contract is None or per_contract <= 0:
        return 1
    return max(1, math.floor(max_risk_amount / per_contract))


def total_risk(position_size: int, per_contract: float | None) -> float:
    if per_contract is None:
        return 0.0
    return position_size * per_contract


def risk_exceeded(position_size: int, per_contract: float | None, max_risk_amount: float) -> bool:
    return total_risk(position_size, per_contract) > max_risk_amount


def r_multiple(side: str, entry_price: float, stop_price: float, current_price: float) -> float:
    risk = abs(entry_price - stop_price)
    if risk == 0:
        return 0.0
    if side == "LONG":
        return (current_price - entry_price) / risk
    return (entry_price - current_price) / risk


def unrealized_pnl(
    side: str,
    entry_price: float,
    current_price: float,
    position_size: int,
    contract_type: str,
    *,
    entered: bool,
    point_values: Mapping[str, float] | None = None,
) -> float:
    if not entered:
        return 0.0
    move = current_price - entry_price if side == "LONG" else entry_price - current_price
    return move * point_value(contract_type, point_values) * position_size
