"""Exception types raised by the room assignment library.

Library code raises these and never terminates the process; the command
line entry point in ``autoroom.main`` is the only place that turns them
into an exit status.
"""

from __future__ import annotations


class AutoroomError(Exception):
    """Base class for all errors raised by ``autoroom``."""


class ParseError(AutoroomError, ValueError):
    """A timestamp or number from an upstream payload could not be parsed."""


class EmptyInput(AutoroomError):
    """A scoring function was given no values to score."""


class AmbiguousResult(AutoroomError):
    """A search did not produce a single confident result."""

    def __init__(self, query: str, total: int) -> None:
        self.query = query
        self.total = total
        super().__init__(f"{total} buildings found for '{query}'")


class NoPreferenceConfigured(AutoroomError):
    """No neighbouring booking and no preferred floor/section to rank rooms by."""

    def __init__(self, event_summary: str = "") -> None:
        self.event_summary = event_summary
        msg = "must provide --floor and --section (insufficient existing bookings to infer)"
        if event_summary:
            msg = f"{msg} for '{event_summary}'"
        super().__init__(msg)


class UpstreamFailure(AutoroomError):
    """Paging, indexing, free/busy or authorisation calls against Google failed."""


class CredentialsError(AutoroomError):
    """The service account key could not be read or is not a valid key."""
