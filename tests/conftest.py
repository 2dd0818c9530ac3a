from datetime import datetime, timezone

import httplib2
import pytest
from googleapiclient.errors import HttpError

from autoroom.interval import Interval, iso_z
from autoroom.models import Event, Resource

DAY = datetime(2024, 5, 6, tzinfo=timezone.utc)


def ts(hour, minute=0):
    return DAY.replace(hour=hour, minute=minute)


def iso(hour, minute=0):
    return iso_z(ts(hour, minute))


def span(start_h, end_h):
    return Interval(ts(start_h), ts(end_h))


def room(email, floor, section, category="CONFERENCE_ROOM"):
    return Resource(
        resourceEmail=email,
        generatedResourceName=email.split("@")[0],
        resourceCategory=category,
        floorName=str(floor),
        floorSection=str(section),
    )


def human(email, status="accepted", is_self=False):
    return {"email": email, "responseStatus": status, "self": is_self}


def meeting(event_id, start_h, end_h, summary="Sync", attendees=None, **extra):
    if attendees is None:
        attendees = [human("me@example.com", is_self=True), human("you@example.com")]
    body = {
        "id": event_id,
        "summary": summary,
        "start": {"dateTime": iso(start_h)},
        "end": {"dateTime": iso(end_h)},
        "attendees": attendees,
    }
    body.update(extra)
    return Event.model_validate(body)


def http_error(status):
    return HttpError(httplib2.Response({"status": status}), b'{"error": {"message": "boom"}}')


class FakeRequest:
    def __init__(self, response=None, errors=()):
        self.response = response if response is not None else {}
        self.errors = list(errors)
        self.calls = 0
        self.index = 0

    def execute(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.response


class FakePages:
    """A paginated ``list``/``list_next`` collection."""

    def __init__(self, pages):
        self.pages = pages
        self.list_kwargs = None

    def _request(self, index):
        req = FakeRequest(self.pages[index] if self.pages else {})
        req.index = index
        return req

    def list(self, **kwargs):
        self.list_kwargs = kwargs
        return self._request(0)

    def list_next(self, previous_request, previous_response):
        index = previous_request.index + 1
        if index >= len(self.pages):
            return None
        return self._request(index)


class FakeEvents(FakePages):
    def __init__(self, pages=()):
        super().__init__(list(pages))
        self.inserted = []
        self.patched = []

    def insert(self, calendarId, body, sendUpdates):
        self.inserted.append((calendarId, body, sendUpdates))
        return FakeRequest(dict(body, id="hold-%d" % len(self.inserted)))

    def patch(self, calendarId, eventId, body, sendUpdates):
        self.patched.append((calendarId, eventId, body, sendUpdates))
        return FakeRequest(dict(body, id=eventId))


class FakeFreeBusy:
    """Answers free/busy queries, dropping busy periods that start after ``timeMax``."""

    def __init__(self, calendars):
        self.calendars = calendars
        self.bodies = []

    def query(self, body):
        self.bodies.append(body)
        ids = [item["id"] for item in body["items"]]
        found = {}
        for cid in ids:
            if cid not in self.calendars:
                continue
            cal = dict(self.calendars[cid])
            cal["busy"] = [b for b in cal.get("busy", []) if b["start"] < body["timeMax"]]
            found[cid] = cal
        return FakeRequest({"calendars": found})


class FakeCalendarService:
    def __init__(self, event_pages=(), calendars=None):
        self._events = FakeEvents(event_pages)
        self._freebusy = FakeFreeBusy(calendars or {})

    def events(self):
        return self._events

    def freebusy(self):
        return self._freebusy


class FakeResources:
    def __init__(self, building_pages, room_pages):
        self._buildings = FakePages(building_pages)
        self._calendars = FakePages(room_pages)

    def buildings(self):
        return self._buildings

    def calendars(self):
        return self._calendars


class FakeDirectoryService:
    def __init__(self, building_pages=(), room_pages=()):
        self._resources = FakeResources(list(building_pages), list(room_pages))

    def resources(self):
        return self._resources


class RecordingBooker:
    def __init__(self):
        self.inserted = []
        self.patched = []

    def insert(self, body):
        self.inserted.append(body)
        return body

    def patch(self, event_id, body):
        self.patched.append((event_id, body))
        return body


@pytest.fixture
def booker():
    return RecordingBooker()
