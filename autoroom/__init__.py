# Package initializer for the room booking tool.

"""
The `autoroom` package books meeting rooms for Google Calendar events.

Modules:

- ``config``: application settings loaded from environment variables.
- ``models``: Pydantic models for Google Workspace payloads.
- ``interval``: half-open time intervals and a sorted interval map.
- ``batch``: adaptive micro-batching between queues.
- ``cache``: on-disk cache entries with max-age freshness.
- ``google_client``: helpers for interacting with Google APIs.
- ``freebusy``: room free/busy data for one run.
- ``buildings``: building search index and room catalogs.
- ``assign``: the greedy room assignment pass.
- ``main``: the command line entry point.

"""
