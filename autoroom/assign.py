"""Greedy room assignment for calendar events.

Events that need a room are walked once in chronological order. Each event
without a room gets the closest free room, where "closest" is measured in
floor and section changes from the rooms of its neighbouring events:

* the previous event's room, including one booked earlier in this pass;
* the next event's room, but only if it was booked before the pass began.

The result is locally optimal with respect to already-fixed neighbouring
assignments. It makes no attempt at a global minimum of total distance,
and no event is revisited once it has a room.
"""

from __future__ import annotations

import bisect
import enum
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence

from .config import AssignmentConfig
from .errors import NoPreferenceConfigured, ParseError
from .freebusy import FreeBusyTable
from .interval import Interval
from .models import Attendee, Event, Resource

logger = logging.getLogger(__name__)

ROOM_TAG = "#room"
ROOM_TAG_DONE = "#addedroom"

# Distances in approximate meters.
SUBSEQUENT_CHANGE_OF_SECTION = 5
FIRST_CHANGE_OF_SECTION = 5
SUBSEQUENT_CHANGE_OF_FLOOR = 10
FIRST_CHANGE_OF_FLOOR = FIRST_CHANGE_OF_SECTION + SUBSEQUENT_CHANGE_OF_FLOOR

MAX_DISTANCE = sys.maxsize


class Booker(Protocol):
    """Calendar writes needed to book a room."""

    def insert(self, body: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...

    def patch(self, event_id: str, body: Dict[str, Any]) -> Optional[Dict[str, Any]]: ...


class BookingAction(enum.Enum):
    HOLD = "hold"  # standalone room hold event created
    ATTENDEE = "attendee"  # room added to the event's attendees


@dataclass
class Booking:
    event: Event
    room: Resource
    action: BookingAction
    retagged: bool = False


@dataclass
class AssignmentResult:
    bookings: List[Booking] = field(default_factory=list)
    unassigned: List[Event] = field(default_factory=list)
    # Room per event after the pass, aligned with the input events.
    rooms: List[Optional[Resource]] = field(default_factory=list)


def has_room_tag(event: Event) -> bool:
    return ROOM_TAG in event.summary or ROOM_TAG in event.description


def retag(text: str) -> str:
    return text.replace(ROOM_TAG, ROOM_TAG_DONE)


def needs_room(event: Event) -> bool:
    """Decide whether ``event`` should have a room.

    All-day, cancelled and transparent events never do. An event tagged
    with ``#room`` always does. Otherwise the event needs a room when more
    than one human is going, unless the calendar owner has declined or not
    answered.
    """
    if not event.start.dateTime:
        return False
    if event.status == "cancelled":
        return False
    if event.transparency == "transparent":
        return False
    if has_room_tag(event):
        return True

    humans = 0
    for a in event.attendees:
        if a.self_ and a.responseStatus in ("declined", "needsAction"):
            return False
        if not a.resource and a.responseStatus != "declined":
            humans += 1
    return humans > 1


def select_events(events: Iterable[Event]) -> List[Event]:
    return [e for e in events if needs_room(e)]


def sort_catalog(resources: Iterable[Resource]) -> List[Resource]:
    """Return ``resources`` sorted by email for ``existing_room`` lookups."""
    return sorted(resources, key=lambda r: r.resourceEmail)


def existing_room(event: Event, catalog: Sequence[Resource]) -> Optional[Resource]:
    """Return the conference room already booked for ``event``, if any.

    ``catalog`` must be sorted by email. Only accepted resource attendees
    that are conference rooms of the catalog count.
    """
    room = None
    for a in event.attendees:
        if not a.resource or a.responseStatus != "accepted" or not a.email:
            continue
        i = bisect.bisect_left(catalog, a.email, key=lambda r: r.resourceEmail)
        if i < len(catalog) and catalog[i].resourceEmail == a.email and catalog[i].bookable:
            room = catalog[i]
    return room


def _int_or_raise(value: Optional[str], what: str) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise ParseError(f"{what} '{value}' cannot be converted to int") from exc


def distance(r1: Optional[Resource], r2: Optional[Resource]) -> int:
    """Return the walking cost between two rooms.

    Floor and section changes are costed independently and summed; the
    first change of each costs more than subsequent ones. A missing room
    on either side is ``MAX_DISTANCE`` away.

    Raises:
        ParseError: if a floor or section name is not an integer.
    """
    if r1 is None or r2 is None:
        return MAX_DISTANCE

    d = 0
    f1, f2 = _int_or_raise(r1.floorName, "floor"), _int_or_raise(r2.floorName, "floor")
    s1, s2 = _int_or_raise(r1.floorSection, "section"), _int_or_raise(r2.floorSection, "section")
    if f1 != f2:
        d += FIRST_CHANGE_OF_FLOOR
        d += (abs(f1 - f2) - 1) * SUBSEQUENT_CHANGE_OF_FLOOR
    if s1 != s2:
        d += FIRST_CHANGE_OF_SECTION
        d += (abs(s1 - s2) - 1) * SUBSEQUENT_CHANGE_OF_SECTION
    return d


def preferred_location(config: AssignmentConfig) -> Resource:
    return Resource(
        resourceEmail="",
        floorName=str(config.preferred_floor),
        floorSection=str(config.preferred_section),
    )


def rank_rooms(
    candidates: Sequence[Resource],
    prev_room: Optional[Resource],
    next_room: Optional[Resource],
    config: AssignmentConfig,
    summary: str = "",
) -> List[Resource]:
    """Order ``candidates`` from nearest to farthest.

    Each candidate is ranked by its distance to the nearer of the two
    neighbouring rooms. Without either neighbour, the configured preferred
    floor and section is the only anchor. Ties keep catalog order.

    Raises:
        NoPreferenceConfigured: if there is no neighbour and no preference.
    """
    if prev_room is None and next_room is None:
        if not config.has_preference:
            raise NoPreferenceConfigured(summary)
        anchor = preferred_location(config)
        return sorted(candidates, key=lambda r: distance(anchor, r))
    return sorted(candidates, key=lambda r: min(distance(r, prev_room), distance(r, next_room)))


def event_interval(event: Event) -> Interval:
    return Interval.parse(event.start.dateTime, event.end.dateTime)


def _dump_attendee(a: Attendee) -> Dict[str, Any]:
    return a.model_dump(by_alias=True, exclude_none=True, exclude_defaults=True)


def room_hold(event: Event, attendee: Attendee) -> Dict[str, Any]:
    """Build a standalone event holding the room for ``event``."""
    hold = {
        "summary": f"Room for '{retag(event.summary)}'",
        "description": retag(event.description),
        "attendees": [_dump_attendee(attendee)],
        "start": event.start.model_dump(exclude_none=True),
        "end": event.end.model_dump(exclude_none=True),
        "attachments": event.attachments,
        "colorId": event.colorId,
        "conferenceData": event.conferenceData,
        "hangoutLink": event.hangoutLink,
        "location": event.location,
        "transparency": event.transparency,
        "visibility": event.visibility,
    }
    return {k: v for k, v in hold.items() if v is not None}


class AssignmentEngine:
    """Books rooms for a chronologically ordered list of events.

    ``catalog`` is every room of the building; only conference rooms are
    candidates. ``freebusy`` must cover the time span of the events.
    """

    def __init__(
        self,
        catalog: Iterable[Resource],
        freebusy: FreeBusyTable,
        config: AssignmentConfig,
        booker: Booker,
    ) -> None:
        self.catalog = sort_catalog(catalog)
        self.candidates = [r for r in self.catalog if r.bookable]
        self.freebusy = freebusy
        self.config = config
        self.booker = booker

    def existing_rooms(self, events: Sequence[Event]) -> List[Optional[Resource]]:
        return [existing_room(e, self.catalog) for e in events]

    def run(self, events: Sequence[Event]) -> AssignmentResult:
        """Assign rooms to ``events`` in one forward pass.

        Events left without a room are reported in the result, not raised.
        """
        rooms = self.existing_rooms(events)
        booked_before = list(rooms)
        result = AssignmentResult(rooms=rooms)

        for i, event in enumerate(events):
            if rooms[i] is not None:
                continue
            prev_room = rooms[i - 1] if i > 0 else None
            next_room = booked_before[i + 1] if i < len(events) - 1 else None

            ranked = rank_rooms(self.candidates, prev_room, next_room, self.config, event.summary)
            room = self.first_free(ranked, event_interval(event))
            if room is None:
                logger.warning("No free room for %s", event.summary)
                result.unassigned.append(event)
                continue
            result.bookings.append(self.book(event, room))
            rooms[i] = room
        return result

    def first_free(self, ranked: Sequence[Resource], interval: Interval) -> Optional[Resource]:
        """Return the first room in ``ranked`` that is free for ``interval``.

        A room without free/busy data is skipped rather than assumed free.
        """
        for room in ranked:
            if room.resourceEmail not in self.freebusy:
                logger.info("failed to find free/busy calendar for %s", room.resourceEmail)
                continue
            if self.freebusy.is_free(room.resourceEmail, interval):
                return room
        return None

    def book(self, event: Event, room: Resource) -> Booking:
        """Write the booking of ``room`` for ``event`` through the booker.

        Tagged events, and events whose attendee list was cut short by the
        API, get a separate room hold so the original's attendees are never
        rewritten from a partial list. Untruncated tagged events also have
        their tag marked done.
        """
        attendee = Attendee(email=room.resourceEmail)
        if event.attendeesOmitted or has_room_tag(event):
            hold = room_hold(event, attendee)
            logger.info("Creating %s - %s", hold["summary"], room.display_name)
            self.booker.insert(hold)
            booking = Booking(event, room, BookingAction.HOLD)
            if not event.attendeesOmitted:
                logger.info("Removing %s tag from %s", ROOM_TAG, event.summary)
                self.booker.patch(
                    event.id,
                    {"summary": retag(event.summary), "description": retag(event.description)},
                )
                booking.retagged = True
        else:
            logger.info("Adding %s for %s", room.display_name, event.summary)
            attendees = [_dump_attendee(a) for a in event.attendees]
            attendees.append(_dump_attendee(attendee))
            self.booker.patch(event.id, {"attendees": attendees})
            booking = Booking(event, room, BookingAction.ATTENDEE)
        event.attendees.append(attendee)
        return booking


def log_plan(
    events: Sequence[Event],
    rooms: Sequence[Optional[Resource]],
    freebusy: Optional[FreeBusyTable] = None,
) -> None:
    """Log each event with its current room; ``*`` marks a truncated attendee list."""
    logger.info("Going to:")
    for i, (event, room) in enumerate(zip(events, rooms)):
        line = f"  {i + 1}: {room.display_name if room else '(none)'} ({event.summary})"
        if event.attendeesOmitted:
            line += "*"
        if room is None and freebusy is not None:
            free = freebusy.rooms_free_for(event_interval(event))
            line += f" [{len(free)} rooms free]"
        logger.info(line)
