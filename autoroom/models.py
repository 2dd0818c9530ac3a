"""Pydantic models for the Google Workspace payloads used by autoroom.

Field names follow the Directory and Calendar API JSON so that API
responses can be validated directly. Fields the tool does not use are
ignored, except on ``Event`` where unknown fields are kept so that a
patched or copied event loses nothing.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

CONFERENCE_ROOM = "CONFERENCE_ROOM"


class Resource(BaseModel):
    """A calendar resource (room) from the Directory API."""

    model_config = ConfigDict(extra="ignore")

    resourceEmail: str
    resourceId: Optional[str] = None
    resourceName: Optional[str] = None
    generatedResourceName: Optional[str] = None
    resourceCategory: Optional[str] = None
    buildingId: Optional[str] = None
    floorName: Optional[str] = None
    floorSection: Optional[str] = None
    capacity: Optional[int] = None

    @property
    def display_name(self) -> str:
        return self.generatedResourceName or self.resourceName or self.resourceEmail

    @property
    def bookable(self) -> bool:
        return self.resourceCategory == CONFERENCE_ROOM


class Building(BaseModel):
    """A building from the Directory API."""

    model_config = ConfigDict(extra="ignore")

    buildingId: str
    buildingName: Optional[str] = None
    description: Optional[str] = None
    floorNames: List[str] = []
    address: Optional[dict] = None

    def search_text(self) -> str:
        """Return the text indexed for full-text search."""
        parts = [self.buildingId, self.buildingName or "", self.description or ""]
        if self.address:
            for key in ("addressLines", "locality", "administrativeArea", "postalCode", "regionCode"):
                value = self.address.get(key)
                if isinstance(value, list):
                    parts.extend(str(v) for v in value)
                elif value:
                    parts.append(str(value))
        return " ".join(p for p in parts if p)


class EventTime(BaseModel):
    """Start or end of a calendar event. All-day events only carry ``date``."""

    model_config = ConfigDict(extra="allow")

    dateTime: Optional[str] = None
    date: Optional[str] = None
    timeZone: Optional[str] = None


class Attendee(BaseModel):
    """An event attendee, human or resource."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    email: Optional[str] = None
    responseStatus: Optional[str] = None
    self_: bool = Field(default=False, alias="self")
    resource: bool = False


class Event(BaseModel):
    """A calendar event from the Calendar API."""

    model_config = ConfigDict(extra="allow")

    id: str
    summary: str = ""
    description: str = ""
    status: Optional[str] = None
    transparency: Optional[str] = None
    visibility: Optional[str] = None
    start: EventTime = Field(default_factory=EventTime)
    end: EventTime = Field(default_factory=EventTime)
    attendees: List[Attendee] = []
    attendeesOmitted: bool = False

    attachments: Optional[List[Any]] = None
    colorId: Optional[str] = None
    conferenceData: Optional[Any] = None
    hangoutLink: Optional[str] = None
    location: Optional[str] = None


class SearchHit(BaseModel):
    """One ranked result of a full-text search."""

    id: str
    score: float
