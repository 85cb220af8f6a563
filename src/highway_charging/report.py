"""Assemble the JSON payloads consumed by the dashboard pages."""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Sequence

from .analyze import compare_operators, resolve_pair
from .data import ChargingSession
from .decode import HIGHWAY_CHOICES
from .filters import FilterState, filter_view
from .stats import (
    ESTIMATED_PRICE_PER_KWH,
    highway_share,
    monthly_growth,
    operator_financials,
    overview,
    station_rollup,
    time_patterns,
)

logger = logging.getLogger(__name__)


def _error_payload(error: Any) -> Dict[str, Any] | None:
    if error is None:
        return None
    return {
        "kind": error.kind.value,
        "message": error.message,
        "settings_required": error.settings_required,
    }


def status_payload(state: Any, snapshot: Any = None) -> Dict[str, Any]:
    """Describe a controller state for the presentation layer."""
    error = getattr(state, "error", None)
    warning = getattr(state, "warning", None)
    return {
        "state": state.name,
        "loading": state.name == "loading",
        "error": _error_payload(error),
        "warning": _error_payload(warning),
        "settings_required": bool(error is not None and error.settings_required),
        "total_count": snapshot.total_count if snapshot is not None else 0,
        "last_updated": (
            snapshot.last_updated.isoformat(timespec="seconds")
            if snapshot is not None
            else None
        ),
        "session_count": len(snapshot.sessions) if snapshot is not None else 0,
    }


def build_dashboard(
    sessions: Sequence[ChargingSession],
    filters: FilterState,
    total_count: int,
    *,
    pair: tuple[Optional[str], Optional[str]] | None = None,
    price_per_kwh: float = ESTIMATED_PRICE_PER_KWH,
) -> Dict[str, Any]:
    """Every page's aggregates for one filtered view of the sessions."""
    filtered, operators = filter_view(sessions, filters)
    logger.debug("Building dashboard from %d of %d sessions", len(filtered), len(sessions))
    first, second = resolve_pair(filtered, *(pair or (None, None)))
    return {
        "filters": filters.to_dict(),
        "operators": operators,
        "highways": HIGHWAY_CHOICES,
        "overview": overview(filtered, total_count, price_per_kwh),
        "operator_comparison": {
            "financials": operator_financials(filtered, price_per_kwh),
            "growth": monthly_growth(filtered),
        },
        "regional": {
            **station_rollup(filtered, price_per_kwh=price_per_kwh),
            "highways": highway_share(filtered),
        },
        "time_patterns": time_patterns(filtered),
        "competitive": compare_operators(filtered, first, second),
    }


def build_report(controller: Any, filters: FilterState | None = None) -> str:
    """Status plus dashboard for the controller's current snapshot, as JSON."""
    snapshot = controller.snapshot
    sessions = snapshot.sessions if snapshot is not None else ()
    total = snapshot.total_count if snapshot is not None else 0
    report = {
        "status": status_payload(controller.state, snapshot),
        "dashboard": build_dashboard(sessions, filters or FilterState(), total),
    }
    return json.dumps(report, ensure_ascii=False, indent=2)
