from typing import Any, Dict, List, Optional, Sequence, Tuple
import logging

from .data import ChargingSession
from .stats import monthly_counts, operator_share

logger = logging.getLogger(__name__)


def top_operators(sessions: Sequence[ChargingSession], n: int = 2) -> List[str]:
    return [row["operator"] for row in operator_share(sessions)[:n]]


def default_pair(sessions: Sequence[ChargingSession]) -> Tuple[Optional[str], Optional[str]]:
    """The two busiest operators; missing slots stay None."""
    top = top_operators(sessions, 2)
    first = top[0] if top else None
    second = top[1] if len(top) > 1 else None
    return first, second


def resolve_pair(
    sessions: Sequence[ChargingSession],
    first: Optional[str] = None,
    second: Optional[str] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """Fill unset comparison slots with the busiest operators not already chosen."""
    if first and second:
        return first, second
    if not first and not second:
        return default_pair(sessions)
    chosen = first or second
    other = next((op for op in top_operators(sessions, 3) if op != chosen), None)
    return (first, other) if first else (other, second)


def market_share(energy_a: float, energy_b: float) -> float:
    total = energy_a + energy_b
    if total <= 0:
        return 0.0
    return energy_a / total * 100


def compare_operators(
    sessions: Sequence[ChargingSession],
    first: Optional[str],
    second: Optional[str],
) -> Dict[str, Any]:
    """Head-to-head energy share and monthly sessions for two operators."""
    result: Dict[str, Any] = {
        "operators": [first, second],
        "market_share_pct": 0.0,
        "energy_kwh": {},
        "sessions": {},
        "growth": [],
    }
    if not first or not second:
        logger.debug("Operator pair incomplete: %s / %s", first, second)
        return result

    pair = [first, second]
    selected = [s for s in sessions if s.operator in pair]
    energy = {op: sum(s.charge_amount for s in selected if s.operator == op) for op in pair}
    counts = {op: sum(1 for s in selected if s.operator == op) for op in pair}

    result["market_share_pct"] = market_share(energy[first], energy[second])
    result["energy_kwh"] = energy
    result["sessions"] = counts
    result["growth"] = monthly_counts(selected, list(dict.fromkeys(pair)))
    return result
