from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Sequence

from .data import ChargingSession
from .decode import highway_label

# KRW, average highway fast-charging tariff
ESTIMATED_PRICE_PER_KWH = 300

TOP_STATIONS = 5
GROWTH_MONTHS = 3

WEEKDAY_NAMES = ["일", "월", "화", "수", "목", "금", "토"]
WEEKEND_DAYS = {0, 6}


def _month_key(ts: datetime) -> str:
    return f"{ts.year}-{ts.month:02d}"


def _weekday(ts: datetime) -> int:
    """Weekday index with Sunday as 0."""
    return (ts.weekday() + 1) % 7


def _count_by(values: Iterable[str]) -> List[tuple[str, int]]:
    counts: Dict[str, int] = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    # sorted() is stable, so ties keep first-seen order
    return sorted(counts.items(), key=lambda item: item[1], reverse=True)


def operator_share(sessions: Iterable[ChargingSession]) -> List[Dict[str, Any]]:
    return [
        {"operator": name, "sessions": count}
        for name, count in _count_by(s.operator for s in sessions)
    ]


def connector_mix(sessions: Iterable[ChargingSession]) -> List[Dict[str, Any]]:
    return [
        {"connector_type": name, "sessions": count}
        for name, count in _count_by(s.connector_type for s in sessions)
    ]


def highway_share(sessions: Iterable[ChargingSession]) -> List[Dict[str, Any]]:
    return [
        {"highway": name, "label": highway_label(name), "sessions": count}
        for name, count in _count_by(s.highway for s in sessions)
    ]


def daily_sessions(sessions: Iterable[ChargingSession]) -> List[Dict[str, Any]]:
    counts: Dict[date, int] = {}
    for s in sessions:
        day = s.start_time.date()
        counts[day] = counts.get(day, 0) + 1
    return [
        {"date": day.isoformat(), "sessions": counts[day]} for day in sorted(counts)
    ]


def day_span(daily: Sequence[Dict[str, Any]]) -> int:
    """Inclusive number of days between the first and last daily bucket."""
    if len(daily) < 2:
        return 1
    first = date.fromisoformat(daily[0]["date"])
    last = date.fromisoformat(daily[-1]["date"])
    return max((last - first).days + 1, 1)


def overview(
    sessions: Sequence[ChargingSession],
    total_chargers: int,
    price_per_kwh: float = ESTIMATED_PRICE_PER_KWH,
) -> Dict[str, Any]:
    """Headline KPIs for the overview page."""
    count = len(sessions)
    total_energy = sum(s.charge_amount for s in sessions)
    total_hours = sum(s.duration_hours for s in sessions)
    daily = daily_sessions(sessions)
    span = day_span(daily)
    capacity_hours = total_chargers * 24 * span
    return {
        "sessions": count,
        "total_chargers": total_chargers,
        "total_energy_kwh": total_energy,
        "total_duration_hours": total_hours,
        "day_span": span,
        "utilization_pct": total_hours / capacity_hours * 100 if capacity_hours > 0 else 0.0,
        "avg_charge_min": total_hours * 60 / count if count else 0.0,
        "avg_charge_kwh": total_energy / count if count else 0.0,
        "estimated_revenue": total_energy * price_per_kwh,
        "operator_share": operator_share(sessions),
        "connector_mix": connector_mix(sessions),
        "daily": daily,
    }


def operator_financials(
    sessions: Iterable[ChargingSession],
    price_per_kwh: float = ESTIMATED_PRICE_PER_KWH,
) -> List[Dict[str, Any]]:
    totals: Dict[str, Dict[str, float]] = {}
    for s in sessions:
        entry = totals.setdefault(
            s.operator, {"sessions": 0, "total_energy_kwh": 0.0, "total_duration_hours": 0.0}
        )
        entry["sessions"] += 1
        entry["total_energy_kwh"] += s.charge_amount
        entry["total_duration_hours"] += s.duration_hours

    rows = [
        {
            "operator": name,
            "sessions": int(entry["sessions"]),
            "total_energy_kwh": entry["total_energy_kwh"],
            "total_duration_hours": entry["total_duration_hours"],
            "revenue": entry["total_energy_kwh"] * price_per_kwh,
            "avg_energy_kwh": (
                entry["total_energy_kwh"] / entry["sessions"] if entry["sessions"] else 0.0
            ),
        }
        for name, entry in totals.items()
    ]
    rows.sort(key=lambda row: row["revenue"], reverse=True)
    return rows


def growth_window_start(latest: datetime, months: int = GROWTH_MONTHS) -> datetime:
    """Midnight on the first day of the month ``months - 1`` before ``latest``."""
    index = latest.year * 12 + latest.month - 1 - (months - 1)
    return datetime(index // 12, index % 12 + 1, 1)


def monthly_counts(
    sessions: Iterable[ChargingSession], operators: Sequence[str]
) -> List[Dict[str, Any]]:
    """Session counts per ``YYYY-MM`` for each operator, zero-filled."""
    buckets: Dict[str, Dict[str, int]] = {}
    for s in sessions:
        month = buckets.setdefault(_month_key(s.start_time), {})
        month[s.operator] = month.get(s.operator, 0) + 1
    return [
        {"month": key, "counts": {op: buckets[key].get(op, 0) for op in operators}}
        for key in sorted(buckets)
    ]


def monthly_growth(sessions: Sequence[ChargingSession]) -> Dict[str, Any]:
    if not sessions:
        return {"start": None, "operators": [], "months": []}
    latest = max(s.start_time for s in sessions)
    since = growth_window_start(latest)
    recent = [s for s in sessions if s.start_time >= since]
    operators = list(dict.fromkeys(s.operator for s in recent))
    return {
        "start": since.isoformat(timespec="seconds"),
        "operators": operators,
        "months": monthly_counts(recent, operators),
    }


def station_rollup(
    sessions: Iterable[ChargingSession],
    limit: int = TOP_STATIONS,
    price_per_kwh: float = ESTIMATED_PRICE_PER_KWH,
) -> Dict[str, Any]:
    """Per-station totals with the busiest and quietest stations."""
    stations: Dict[str, Dict[str, Any]] = {}
    for s in sessions:
        entry = stations.get(s.station_id)
        if entry is None:
            entry = stations[s.station_id] = {
                "station_id": s.station_id,
                "location": s.location,
                "highway": s.highway,
                "highway_label": highway_label(s.highway),
                "lat": s.lat,
                "lng": s.lng,
                "sessions": 0,
                "total_energy_kwh": 0.0,
            }
        entry["sessions"] += 1
        entry["total_energy_kwh"] += s.charge_amount

    for entry in stations.values():
        entry["estimated_revenue"] = entry["total_energy_kwh"] * price_per_kwh

    ranked = sorted(stations.values(), key=lambda e: e["sessions"], reverse=True)
    bottom = ranked[-limit:] if limit > 0 else []
    return {
        "stations": list(stations.values()),
        "top": ranked[:limit],
        "bottom": list(reversed(bottom)),
    }


def time_patterns(sessions: Iterable[ChargingSession]) -> Dict[str, Any]:
    heatmap = [[0] * 24 for _ in range(7)]
    peak_times = {"morning": 0, "afternoon": 0, "night": 0}
    day_types = {"weekday": 0, "weekend": 0}

    for s in sessions:
        day = _weekday(s.start_time)
        hour = s.start_time.hour
        heatmap[day][hour] += 1

        if 6 <= hour < 12:
            peak_times["morning"] += 1
        elif 12 <= hour < 18:
            peak_times["afternoon"] += 1
        else:
            peak_times["night"] += 1

        if day in WEEKEND_DAYS:
            day_types["weekend"] += 1
        else:
            day_types["weekday"] += 1

    cells = [
        {"weekday": day, "day": WEEKDAY_NAMES[day], "hour": hour, "sessions": heatmap[day][hour]}
        for day in range(7)
        for hour in range(24)
    ]
    return {
        "heatmap": heatmap,
        "cells": cells,
        "max_cell": max(max(row) for row in heatmap),
        "peak_times": peak_times,
        "day_types": day_types,
    }
