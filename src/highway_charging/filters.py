from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import FrozenSet, Iterable, List, Sequence, Tuple

from .data import ChargingSession

DEFAULT_RANGE_DAYS = 30


@dataclass(frozen=True)
class FilterState:
    """User-selected restrictions on the session collection."""

    # Inclusive bounds on session start; None leaves the side open
    start: datetime | None = None
    end: datetime | None = None
    # Empty sets mean no restriction
    operators: FrozenSet[str] = field(default_factory=frozenset)
    highways: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def last_days(cls, days: int = DEFAULT_RANGE_DAYS, now: datetime | None = None) -> "FilterState":
        if now is None:
            now = datetime.now()
        return cls(start=now - timedelta(days=days), end=now)

    @classmethod
    def from_query(
        cls,
        start_date: date | None = None,
        end_date: date | None = None,
        operators: Iterable[str] | None = None,
        highways: Iterable[str] | None = None,
    ) -> "FilterState":
        """Build a state from calendar dates; the end date covers its whole day."""
        start = datetime.combine(start_date, time.min) if start_date else None
        end = datetime.combine(end_date, time.max) if end_date else None
        return cls(
            start=start,
            end=end,
            operators=frozenset(op for op in operators or () if op),
            highways=frozenset(hw for hw in highways or () if hw),
        )

    def matches(self, session: ChargingSession) -> bool:
        if self.start is not None and session.start_time < self.start:
            return False
        if self.end is not None and session.start_time > self.end:
            return False
        if self.operators and session.operator not in self.operators:
            return False
        if self.highways and session.highway not in self.highways:
            return False
        return True

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(timespec="seconds") if self.start else None,
            "end": self.end.isoformat(timespec="seconds") if self.end else None,
            "operators": sorted(self.operators),
            "highways": sorted(self.highways),
        }


def apply_filters(
    sessions: Sequence[ChargingSession], state: FilterState
) -> List[ChargingSession]:
    return [s for s in sessions if state.matches(s)]


def distinct_operators(sessions: Iterable[ChargingSession]) -> List[str]:
    """Sorted operator names, taken from the unfiltered collection."""
    return sorted({s.operator for s in sessions})


def filter_view(
    sessions: Sequence[ChargingSession], state: FilterState
) -> Tuple[List[ChargingSession], List[str]]:
    return apply_filters(sessions, state), distinct_operators(sessions)
