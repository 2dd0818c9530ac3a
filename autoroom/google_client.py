"""Google Workspace client utilities for autoroom.

This module provides helpers to load service account credentials and to
perform directory, event and free/busy operations against Google
Workspace. Reads are retried with exponential back-off on transient
errors; anything that still fails surfaces as ``UpstreamFailure`` so the
caller decides what to do with it.

The functions here are synchronous. Callers that need concurrency run them
on worker threads, each with its own service object, since the underlying
HTTP client is not thread-safe.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .config import Settings
from .errors import CredentialsError, UpstreamFailure
from .interval import Interval, iso_z
from .models import Building, Event, Resource

logger = logging.getLogger(__name__)

# Scopes required for this application: read the room directory, read
# free/busy and calendars, and write events on the operated calendar.
SCOPES: Tuple[str, ...] = (
    "https://www.googleapis.com/auth/admin.directory.resource.calendar.readonly",
    "https://www.googleapis.com/auth/calendar.readonly",
    "https://www.googleapis.com/auth/calendar.events",
)

RETRY_STATUSES = (429, 500, 502, 503, 504)

# Tried and failed upstream: 50, 25.
FREEBUSY_BATCH_SIZE = 20


def _load_sa_info(raw: str) -> dict:
    """Load service account credentials from a JSON string or a file path.

    Raises:
        CredentialsError: if the file cannot be read or is not JSON.
    """
    raw = raw.strip()
    try:
        # Detect inline JSON by looking for a brace at the start.
        if raw.startswith("{"):
            return json.loads(raw)
        with open(raw, "r", encoding="utf-8") as fh:
            return json.load(fh)
    except OSError as exc:
        raise CredentialsError(f"reading service account key: {exc}") from exc
    except ValueError as exc:
        raise CredentialsError(f"service account key is not valid JSON: {exc}") from exc


def get_delegated_credentials(settings: Settings) -> service_account.Credentials:
    """Return service account credentials impersonating the configured user.

    Domain-wide delegation lets the tool act on the impersonated user's
    calendar; that user is the "self" attendee when classifying events.
    """
    sa_info = _load_sa_info(settings.google_service_account_json)
    try:
        creds = service_account.Credentials.from_service_account_info(sa_info, scopes=SCOPES)
    except ValueError as exc:
        raise CredentialsError(f"service account key: {exc}") from exc
    return creds.with_subject(settings.google_impersonate_user)


def get_directory_service(settings: Settings):
    """Build and return an Admin SDK Directory service client."""
    creds = get_delegated_credentials(settings)
    return build("admin", "directory_v1", credentials=creds, cache_discovery=False)


def get_calendar_service(settings: Settings):
    """Build and return a Calendar service client."""
    creds = get_delegated_credentials(settings)
    return build("calendar", "v3", credentials=creds, cache_discovery=False)


def execute_with_retry(
    request,
    what: str,
    *,
    max_retries: int = 3,
    backoff_seconds: float = 1.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Execute a Google API request, retrying rate-limit and 5xx errors.

    Raises:
        UpstreamFailure: if the request fails with a non-transient error,
            still fails after ``max_retries`` retries, or its credentials
            cannot be refreshed.
    """
    attempt = 0
    while True:
        try:
            return request.execute()
        except HttpError as exc:
            attempt += 1
            status = getattr(exc.resp, "status", None)
            if attempt <= max_retries and status in RETRY_STATUSES:
                delay = backoff_seconds * (2 ** (attempt - 1))
                logger.warning(
                    "%s transient error (status=%s), retrying in %.1fs (attempt %s/%s)",
                    what,
                    status,
                    delay,
                    attempt,
                    max_retries,
                )
                sleep(delay)
                continue
            logger.error("%s failed after %s attempts: %s", what, attempt, exc)
            raise UpstreamFailure(f"{what}: {exc}") from exc
        except GoogleAuthError as exc:
            # Not retried.
            logger.error("%s: authorisation failed: %s", what, exc)
            raise UpstreamFailure(f"{what}: authorisation failed: {exc}") from exc


def _pages(collection, what: str, **kwargs) -> Iterator[Dict[str, Any]]:
    """Yield every response page of ``collection.list(**kwargs)``."""
    request = collection.list(**kwargs)
    while request is not None:
        response = execute_with_retry(request, what)
        yield response
        request = collection.list_next(previous_request=request, previous_response=response)


def for_each_event(
    service,
    calendar_id: str,
    time_min: datetime,
    time_max: datetime,
    visit: Callable[[Event], None],
) -> None:
    """Call ``visit`` on each event of ``calendar_id`` in ``[time_min, time_max)``.

    Recurring events are expanded and events arrive ordered by start time.
    An exception raised by ``visit`` stops the enumeration and propagates.
    """
    pages = _pages(
        service.events(),
        "listing events",
        calendarId=calendar_id,
        showDeleted=False,
        singleEvents=True,
        timeMin=iso_z(time_min),
        timeMax=iso_z(time_max),
        orderBy="startTime",
    )
    for page in pages:
        for item in page.get("items", []):
            visit(Event.model_validate(item))


class DirectorySource:
    """Paginated enumeration of buildings and calendar resources."""

    def __init__(self, service, customer: str = "my_customer") -> None:
        self.service = service
        self.customer = customer

    def for_each_building(self, visit: Callable[[Building], None]) -> None:
        pages = _pages(self.service.resources().buildings(), "listing buildings", customer=self.customer)
        for page in pages:
            for item in page.get("buildings", []):
                visit(Building.model_validate(item))

    def for_each_resource(self, building_id: str, visit: Callable[[Resource], None]) -> None:
        """Visit the conference rooms of ``building_id`` (all buildings if empty)."""
        query = "resourceCategory=CONFERENCE_ROOM"
        if building_id:
            query = f"buildingId={building_id} AND {query}"
        pages = _pages(
            self.service.resources().calendars(),
            "listing rooms",
            customer=self.customer,
            query=query,
        )
        for page in pages:
            for item in page.get("items", []):
                visit(Resource.model_validate(item))


def query_freebusy(
    service,
    emails: Sequence[str],
    time_min: datetime,
    time_max: datetime,
    *,
    batch_size: int = FREEBUSY_BATCH_SIZE,
) -> Dict[str, List[Interval]]:
    """Retrieve busy intervals for many room calendars within a time window.

    Calendars are queried ``batch_size`` at a time. A calendar reported as
    ``notFound`` is left out of the result; any other per-calendar error
    raises ``UpstreamFailure``.

    Returns:
        A mapping from calendar ID to its busy intervals.
    """
    result: Dict[str, List[Interval]] = {}
    for i in range(0, len(emails), batch_size):
        chunk = emails[i : i + batch_size]
        body = {
            "timeMin": iso_z(time_min),
            "timeMax": iso_z(time_max),
            "items": [{"id": cid} for cid in chunk],
        }
        response = execute_with_retry(service.freebusy().query(body=body), "free/busy query")
        calendars: Dict[str, Any] = response.get("calendars", {})
        for cid, data in calendars.items():
            errors = data.get("errors", [])
            reasons = [e.get("reason") for e in errors]
            bad = [e for e in errors if e.get("reason") != "notFound"]
            if bad:
                logger.error("free/busy (%s): %s", cid, bad)
                raise UpstreamFailure(f"free/busy ({cid}): {bad}")
            if "notFound" in reasons:
                continue
            result[cid] = [Interval.parse(b["start"], b["end"]) for b in data.get("busy", [])]
    return result


class CalendarBooker:
    """Writes room bookings to a calendar.

    In dry-run mode every write is logged and skipped. Attendees are never
    notified of changes.
    """

    def __init__(self, service, calendar_id: str = "primary", dry_run: bool = False) -> None:
        self.service = service
        self.calendar_id = calendar_id
        self.dry_run = dry_run

    def insert(self, body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if self.dry_run:
            return None
        request = self.service.events().insert(calendarId=self.calendar_id, body=body, sendUpdates="none")
        return _execute_write(request, "creating room hold")

    def patch(self, event_id: str, body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if self.dry_run:
            return None
        request = self.service.events().patch(
            calendarId=self.calendar_id, eventId=event_id, body=body, sendUpdates="none"
        )
        return _execute_write(request, f"patching event {event_id}")


def _execute_write(request, what: str) -> Dict[str, Any]:
    # Writes are not idempotent, so they are not retried.
    try:
        return request.execute()
    except HttpError as exc:
        logger.error("%s failed: %s", what, exc)
        raise UpstreamFailure(f"{what}: {exc}") from exc
    except GoogleAuthError as exc:
        logger.error("%s: authorisation failed: %s", what, exc)
        raise UpstreamFailure(f"{what}: authorisation failed: {exc}") from exc
