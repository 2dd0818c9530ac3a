import sqlite3

import pytest

from autoroom import main as cli
from autoroom.config import Settings
from autoroom.errors import AmbiguousResult, NoPreferenceConfigured, UpstreamFailure
from autoroom.interval import iso_z

from conftest import FakeCalendarService, FakeDirectoryService, human, iso, ts


def _has_fts5():
    conn = sqlite3.connect(":memory:")
    try:
        conn.execute("CREATE VIRTUAL TABLE t USING fts5(x)")
        return True
    except sqlite3.OperationalError:
        return False
    finally:
        conn.close()


@pytest.fixture
def env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("GOOGLE_SERVICE_ACCOUNT_JSON", "{}")
    monkeypatch.setenv("GOOGLE_IMPERSONATE_USER", "me@example.com")
    monkeypatch.setenv("CACHE_DIR", str(tmp_path / "cache"))
    for name in ("ROOM_BUILDING", "ROOM_FLOOR", "ROOM_SECTION", "DRY_RUN"):
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def _fail_with(exc):
    def run(settings, now=None):
        raise exc

    return run


def test_flags_override_environment(env):
    args = cli.build_parser().parse_args(["--building", "tor-111", "--floor", "3", "--next", "48", "--dry-run"])
    settings = cli.load_settings(args)
    assert settings.building == "tor-111"
    assert settings.floor == 3
    assert settings.section is None
    assert settings.lookahead_hours == 48
    assert settings.dry_run is True
    assert settings.calendar_id == "primary"
    assert settings.freebusy_batch_size == 20


def test_missing_credentials_need_operator_input(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("GOOGLE_SERVICE_ACCOUNT_JSON", raising=False)
    monkeypatch.delenv("GOOGLE_IMPERSONATE_USER", raising=False)
    assert cli.main(["--building", "tor-111"]) == cli.EXIT_NEEDS_INPUT


@pytest.mark.parametrize("key", ["missing.json", "{}"])
def test_unusable_key_needs_operator_input(env, key, caplog):
    if key.endswith(".json"):
        key = str(env / key)
    assert cli.main(["--building", "tor-111", "--credentials", key]) == cli.EXIT_NEEDS_INPUT
    assert any("--credentials" in r.getMessage() for r in caplog.records)


def test_missing_building_needs_operator_input(env):
    assert cli.main([]) == cli.EXIT_NEEDS_INPUT


@pytest.mark.parametrize(
    "exc, code",
    [
        (AmbiguousResult("tor", 4), cli.EXIT_NEEDS_INPUT),
        (NoPreferenceConfigured("Sync"), cli.EXIT_NEEDS_INPUT),
        (UpstreamFailure("free/busy query: 500"), cli.EXIT_FAILURE),
    ],
)
def test_errors_map_to_exit_codes(env, monkeypatch, exc, code):
    monkeypatch.setattr(cli, "run", _fail_with(exc))
    assert cli.main(["--building", "tor"]) == code


def test_successful_run_exits_zero(env, monkeypatch):
    monkeypatch.setattr(cli, "run", lambda settings, now=None: None)
    assert cli.main(["--building", "tor-111"]) == cli.EXIT_OK


@pytest.mark.skipif(not _has_fts5(), reason="sqlite3 built without FTS5")
def test_run_books_rooms_end_to_end(env, monkeypatch):
    directory = FakeDirectoryService(
        building_pages=[
            {"buildings": [{"buildingId": "tor-111", "buildingName": "Toronto Richmond"}]},
            {"buildings": [{"buildingId": "nyc-9", "buildingName": "New York Ninth"}]},
        ],
        room_pages=[
            {
                "items": [
                    {"resourceEmail": "r11@example.com", "floorName": "1", "floorSection": "1",
                     "resourceCategory": "CONFERENCE_ROOM", "generatedResourceName": "TOR-1-R11"},
                    {"resourceEmail": "r12@example.com", "floorName": "1", "floorSection": "2",
                     "resourceCategory": "CONFERENCE_ROOM", "generatedResourceName": "TOR-1-R12"},
                ]
            }
        ],
    )
    team = [human("me@example.com", is_self=True), human("you@example.com")]
    events = [
        {"id": "e1", "summary": "Standup", "start": {"dateTime": iso(9)}, "end": {"dateTime": iso(10)},
         "attendees": team},
        {"id": "e2", "summary": "Lunch", "start": {"date": "2024-05-06"}, "end": {"date": "2024-05-07"}},
    ]
    calendar = FakeCalendarService(
        event_pages=[{"items": events}],
        calendars={
            "r11@example.com": {"busy": [{"start": iso(9), "end": iso(10)}]},
            "r12@example.com": {"busy": []},
        },
    )
    monkeypatch.setattr(cli, "get_directory_service", lambda settings: directory)
    monkeypatch.setattr(cli, "get_calendar_service", lambda settings: calendar)

    settings = Settings(building="tor-111", floor=1, section=1)
    result = cli.run(settings, now=ts(0))

    assert [b.room.resourceEmail for b in result.bookings] == ["r12@example.com"]
    assert directory.resources().calendars().list_kwargs["query"].startswith("buildingId=tor-111")
    (cal_id, event_id, body, send) = calendar.events().patched[0]
    assert (cal_id, event_id, send) == ("primary", "e1", "none")
    assert body["attendees"][-1] == {"email": "r12@example.com"}
    assert (env / "cache" / "buildings").is_dir()
    assert (env / "cache" / "rooms-tor-111" / "resources.json").is_file()


@pytest.mark.skipif(not _has_fts5(), reason="sqlite3 built without FTS5")
def test_dry_run_changes_nothing(env, monkeypatch):
    directory = FakeDirectoryService(
        building_pages=[{"buildings": [{"buildingId": "tor-111"}]}],
        room_pages=[{"items": [{"resourceEmail": "r11@example.com", "floorName": "1", "floorSection": "1",
                                "resourceCategory": "CONFERENCE_ROOM"}]}],
    )
    events = [{"id": "e1", "summary": "Pairing #room", "start": {"dateTime": iso(9)}, "end": {"dateTime": iso(10)}}]
    calendar = FakeCalendarService(event_pages=[{"items": events}], calendars={"r11@example.com": {"busy": []}})
    monkeypatch.setattr(cli, "get_directory_service", lambda settings: directory)
    monkeypatch.setattr(cli, "get_calendar_service", lambda settings: calendar)

    settings = Settings(building="tor-111", floor=1, section=1, dry_run=True, lookahead_hours=12)
    result = cli.run(settings, now=ts(0))

    assert len(result.bookings) == 1
    assert calendar.events().inserted == []
    assert calendar.events().patched == []
    assert calendar.events().list_kwargs["timeMax"] == iso(12)
    assert calendar.freebusy().bodies[0]["timeMax"] == iso_z(ts(12) + cli.FREEBUSY_MARGIN)


@pytest.mark.skipif(not _has_fts5(), reason="sqlite3 built without FTS5")
def test_event_running_past_lookahead_avoids_rooms_busy_later(env, monkeypatch):
    directory = FakeDirectoryService(
        building_pages=[{"buildings": [{"buildingId": "tor-111"}]}],
        room_pages=[
            {
                "items": [
                    {"resourceEmail": "r11@example.com", "floorName": "1", "floorSection": "1",
                     "resourceCategory": "CONFERENCE_ROOM"},
                    {"resourceEmail": "r12@example.com", "floorName": "1", "floorSection": "2",
                     "resourceCategory": "CONFERENCE_ROOM"},
                ]
            }
        ],
    )
    team = [human("me@example.com", is_self=True), human("you@example.com")]
    events = [{"id": "e1", "summary": "Offsite prep", "start": {"dateTime": iso(11)},
               "end": {"dateTime": iso(14)}, "attendees": team}]
    calendar = FakeCalendarService(
        event_pages=[{"items": events}],
        calendars={
            "r11@example.com": {"busy": [{"start": iso(13), "end": iso(15)}]},
            "r12@example.com": {"busy": []},
        },
    )
    monkeypatch.setattr(cli, "get_directory_service", lambda settings: directory)
    monkeypatch.setattr(cli, "get_calendar_service", lambda settings: calendar)

    settings = Settings(building="tor-111", floor=1, section=1, lookahead_hours=12)
    result = cli.run(settings, now=ts(0))

    # The preferred room is free until 13:00 but the event lasts until 14:00.
    assert [b.room.resourceEmail for b in result.bookings] == ["r12@example.com"]
