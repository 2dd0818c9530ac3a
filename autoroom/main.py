"""Command line entry point for autoroom.

One run books rooms for the events of the next ``--next`` hours:

1. resolve the ``--building`` query through the cached building index;
2. load the building's room catalog (also cached);
3. fetch room free/busy on a worker thread while the calendar's events are
   enumerated and classified;
4. run the assignment pass and report events left without a room.

Errors from the library are handled here and nowhere else: each one is
logged with what the operator can do about it and mapped to an exit code.
"""

from __future__ import annotations

import argparse
import logging
import sys
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from .assign import AssignmentEngine, AssignmentResult, log_plan, needs_room
from .buildings import load_building_index, load_resources, search_buildings
from .cache import CacheSpace
from .config import AssignmentConfig, Settings
from .errors import (
    AmbiguousResult,
    AutoroomError,
    CredentialsError,
    EmptyInput,
    NoPreferenceConfigured,
    ParseError,
)
from .freebusy import FreeBusyTable
from .google_client import (
    CalendarBooker,
    DirectorySource,
    for_each_event,
    get_calendar_service,
    get_directory_service,
    query_freebusy,
)
from .interval import Interval
from .models import Event, Resource

logger = logging.getLogger("autoroom")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_NEEDS_INPUT = 2

# Free/busy is fetched this far past the lookahead window.
FREEBUSY_MARGIN = timedelta(days=1)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="autoroom", description="Book meeting rooms for upcoming events.")
    p.add_argument("--building", help="building in which to book rooms (e.g. 'tor-111')")
    p.add_argument("--floor", type=int, help="preferred floor")
    p.add_argument("--section", type=int, help="preferred section")
    p.add_argument("--next", dest="lookahead_hours", type=float, help="process events for the next N hours (default: 24)")
    p.add_argument("--calendar", dest="calendar_id", help="calendar ID to operate on (default: primary)")
    p.add_argument("--dry-run", dest="dry_run", action="store_true", default=None, help="don't actually change anything")
    p.add_argument("--credentials", dest="google_service_account_json", help="service account JSON file or inline JSON")
    p.add_argument("--user", dest="google_impersonate_user", help="Workspace user whose calendar is processed")
    p.add_argument("--cache-dir", dest="cache_dir", help="cache directory")
    p.add_argument("-v", "--verbose", action="store_true", help="log debug output")
    return p


def load_settings(args: argparse.Namespace) -> Settings:
    """Load settings from the environment, overridden by any given flags."""
    overrides: Dict[str, Any] = {
        k: v for k, v in vars(args).items() if v is not None and k != "verbose"
    }
    return Settings(**overrides)


def fetch_freebusy(settings: Settings, catalog: Sequence[Resource], window: Interval) -> FreeBusyTable:
    service = get_calendar_service(settings)
    emails = [r.resourceEmail for r in catalog]
    busy = query_freebusy(
        service, emails, window.start, window.end, batch_size=settings.freebusy_batch_size
    )
    table = FreeBusyTable(window, busy)
    logger.info("Fetched free/busy for %d of %d rooms", len(table), len(emails))
    return table


def run(settings: Settings, now: Optional[datetime] = None) -> AssignmentResult:
    """Book rooms according to ``settings``; see the module docstring."""
    if settings.dry_run:
        logger.info("Dry run")
    start = now or datetime.now(timezone.utc)
    end = start + timedelta(hours=settings.lookahead_hours)
    # Events starting before ``end`` may run past it.
    window = Interval(start, end + FREEBUSY_MARGIN)
    logger.info("From %s to %s", start, end)

    directory = DirectorySource(get_directory_service(settings), settings.google_customer)
    cache = CacheSpace(settings.cache_dir)
    max_age = timedelta(days=settings.cache_max_age_days)

    index = load_building_index(cache, directory, max_age)
    try:
        building_id = search_buildings(index, settings.building)
    finally:
        index.close()
    logger.info("Inferred building ID: %s", building_id)

    catalog = load_resources(cache, directory, building_id, max_age)

    events: List[Event] = []

    def collect(event: Event) -> None:
        if needs_room(event):
            events.append(event)

    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="freebusy") as pool:
        freebusy_future = pool.submit(fetch_freebusy, settings, catalog, window)
        calendar = get_calendar_service(settings)
        for_each_event(calendar, settings.calendar_id, start, end, collect)
        freebusy = freebusy_future.result()

    booker = CalendarBooker(calendar, settings.calendar_id, dry_run=settings.dry_run)
    engine = AssignmentEngine(catalog, freebusy, AssignmentConfig.from_settings(settings), booker)
    log_plan(events, engine.existing_rooms(events), freebusy)
    result = engine.run(events)

    logger.info("Booked %d rooms for %d events", len(result.bookings), len(events))
    for event in result.unassigned:
        logger.warning("No room booked for %s (%s)", event.summary, event.start.dateTime)
    return result


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO, format=LOG_FORMAT)

    try:
        settings = load_settings(args)
    except ValidationError as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_NEEDS_INPUT
    if not settings.building:
        logger.error("must provide --building (or ROOM_BUILDING)")
        return EXIT_NEEDS_INPUT

    try:
        run(settings)
    except AmbiguousResult as exc:
        logger.error("searching for office '%s': %s; refine --building", exc.query, exc)
        return EXIT_NEEDS_INPUT
    except EmptyInput as exc:
        logger.error("searching for office '%s': %s", settings.building, exc)
        return EXIT_NEEDS_INPUT
    except NoPreferenceConfigured as exc:
        logger.error("%s", exc)
        return EXIT_NEEDS_INPUT
    except CredentialsError as exc:
        logger.error("%s; check --credentials (or GOOGLE_SERVICE_ACCOUNT_JSON)", exc)
        return EXIT_NEEDS_INPUT
    except ParseError as exc:
        logger.error("Unexpected data from Google: %s", exc)
        return EXIT_FAILURE
    except AutoroomError as exc:
        logger.error("%s", exc)
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130
    return EXIT_OK


def cli() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli()
