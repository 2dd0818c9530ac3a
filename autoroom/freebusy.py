"""Room free/busy data for one assignment run."""

from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional

from .interval import Interval, IntervalMap


class FreeBusyTable:
    """Busy intervals per room calendar within a query window.

    A room missing from the table had no usable free/busy data, which is
    different from a room with no busy intervals. Besides the raw busy
    lists the table indexes the free gaps of every room, so the rooms free
    for a whole interval can be found with one containment query.

    The table is read-only once built.
    """

    def __init__(self, window: Interval, busy: Mapping[str, Iterable[Interval]]) -> None:
        self.window = window
        self._busy: Dict[str, List[Interval]] = {
            email: sorted(intervals) for email, intervals in busy.items()
        }
        self._free: IntervalMap[str] = IntervalMap()
        for email, intervals in self._busy.items():
            for gap in free_gaps(window, intervals):
                self._free.add(gap.start, gap.end, email)

    def __contains__(self, email: str) -> bool:
        return email in self._busy

    def __len__(self) -> int:
        return len(self._busy)

    def busy(self, email: str) -> Optional[List[Interval]]:
        """Return the sorted busy intervals of ``email``, or None without data."""
        return self._busy.get(email)

    def is_free(self, email: str, interval: Interval) -> bool:
        """Report whether no busy interval of ``email`` overlaps ``interval``.

        Raises:
            KeyError: if there is no free/busy data for ``email``.
        """
        return not any(interval.overlaps(b) for b in self._busy[email])

    def rooms_free_for(self, interval: Interval) -> List[str]:
        """Return the rooms with a free gap that contains ``interval``.

        Only intervals inside the query window can be answered; anything
        reaching outside it yields no rooms.
        """
        return sorted(set(self._free.covering(interval.start, interval.end)))


def free_gaps(window: Interval, busy: Iterable[Interval]) -> List[Interval]:
    """Return the non-empty gaps of ``window`` not covered by ``busy``."""
    gaps: List[Interval] = []
    cursor = window.start
    for b in sorted(busy):
        if b.start > cursor:
            gaps.append(Interval(cursor, min(b.start, window.end)))
        cursor = max(cursor, b.end)
        if cursor >= window.end:
            break
    if cursor < window.end:
        gaps.append(Interval(cursor, window.end))
    return [g for g in gaps if g.start < g.end]
