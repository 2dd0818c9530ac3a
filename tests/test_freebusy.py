import pytest

from autoroom.freebusy import FreeBusyTable, free_gaps
from autoroom.interval import Interval

from conftest import span, ts


def test_free_gaps_fill_around_busy_periods():
    gaps = free_gaps(span(8, 18), [span(12, 13), span(9, 10), span(9, 11)])
    assert gaps == [span(8, 9), span(11, 12), span(13, 18)]


def test_free_gaps_clip_to_window():
    gaps = free_gaps(span(8, 18), [span(6, 9), span(17, 20)])
    assert gaps == [span(9, 17)]


def test_fully_busy_room_has_no_gaps():
    assert free_gaps(span(8, 18), [span(7, 19)]) == []


def test_missing_room_is_not_free():
    table = FreeBusyTable(span(8, 18), {"a@x": []})
    assert "a@x" in table
    assert "b@x" not in table
    assert len(table) == 1
    assert table.busy("b@x") is None
    with pytest.raises(KeyError):
        table.is_free("b@x", span(9, 10))


def test_is_free_uses_half_open_overlap():
    table = FreeBusyTable(span(8, 18), {"a@x": [span(10, 11)]})
    assert table.is_free("a@x", span(9, 10))
    assert table.is_free("a@x", span(11, 12))
    assert not table.is_free("a@x", Interval(ts(10, 30), ts(11, 30)))


def test_rooms_free_for_whole_interval():
    table = FreeBusyTable(
        span(8, 18),
        {
            "a@x": [span(10, 11)],
            "b@x": [],
            "c@x": [Interval(ts(9, 30), ts(9, 45))],
        },
    )
    assert table.rooms_free_for(span(9, 10)) == ["a@x", "b@x"]
    assert table.rooms_free_for(span(10, 11)) == ["b@x", "c@x"]
    assert table.rooms_free_for(span(17, 19)) == []
