"""Half-open time intervals and a sorted interval-keyed map.

``Interval`` orders by start then end, so a plain ``list`` of intervals can
be kept sorted with :mod:`bisect`. ``IntervalMap`` uses that to keep its
keys sorted on every insertion and to answer containment queries.
"""

from __future__ import annotations

import bisect
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Generic, Iterator, List, Tuple, TypeVar

from .errors import ParseError

V = TypeVar("V")


def parse_rfc3339(s: str) -> datetime:
    """Parse an RFC3339 timestamp returned by Google into an aware UTC datetime.

    Raises:
        ParseError: if ``s`` is not a timestamp or carries no UTC offset.
    """
    if not isinstance(s, str) or not s:
        raise ParseError(f"'{s}' cannot be converted to time")
    text = s.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ParseError(f"'{s}' cannot be converted to time: {exc}") from exc
    if dt.tzinfo is None:
        raise ParseError(f"'{s}' cannot be converted to time: missing UTC offset")
    return dt.astimezone(timezone.utc)


def iso_z(dt: datetime) -> str:
    """Return an RFC3339 timestamp in UTC with a Z suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, order=True)
class Interval:
    """A half-open time range ``[start, end)``.

    ``start <= end`` is not checked. Comparison operators order intervals
    by ``start`` and then by ``end``.
    """

    start: datetime
    end: datetime

    @classmethod
    def parse(cls, start: str, end: str) -> "Interval":
        return cls(parse_rfc3339(start), parse_rfc3339(end))

    def less(self, other: "Interval") -> bool:
        return self < other

    def overlaps(self, other: "Interval") -> bool:
        # Touching endpoints do not overlap.
        return other.start < self.end and self.start < other.end

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end


class IntervalMap(Generic[V]):
    """Values keyed by ``Interval``, kept sorted by interval order.

    The map only grows. It is not safe to call ``add`` from more than one
    thread at a time, and readers must not run while an ``add`` is in
    flight.
    """

    def __init__(self) -> None:
        self._intervals: List[Interval] = []
        self._values: List[V] = []

    def __len__(self) -> int:
        return len(self._intervals)

    def __iter__(self) -> Iterator[Tuple[Interval, V]]:
        return iter(zip(self._intervals, self._values))

    def add(self, start: datetime, end: datetime, value: V) -> None:
        """Insert ``value`` under ``[start, end)``, after any equal keys."""
        itr = Interval(start, end)
        i = bisect.bisect_right(self._intervals, itr)
        self._intervals.insert(i, itr)
        self._values.insert(i, value)

    def covering(self, start: datetime, end: datetime) -> List[V]:
        """Return values whose interval fully contains ``[start, end)``.

        This is a containment query, not an overlap query. Every
        candidate must start at or before ``start``, which in sorted order
        is a prefix of the map; the prefix is located by binary search and
        then scanned, so intervals that overlap without nesting are
        handled correctly.
        """
        query = Interval(start, end)
        # First index whose start is strictly after the query start.
        hi = bisect.bisect_right(self._intervals, start, key=lambda iv: iv.start)
        return [
            self._values[i]
            for i in range(hi)
            if self._intervals[i].contains(query)
        ]
