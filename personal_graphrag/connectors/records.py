"""Personal data records produced by connectors."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any


@dataclass
class Contact:
    """Address book contact."""

    id: str
    last_modified: datetime
    given_name: str | None = None
    family_name: str | None = None
    organization_name: str | None = None
    job_title: str | None = None
    email_addresses: list[str] = field(default_factory=list)
    phone_numbers: list[str] = field(default_factory=list)
    note: str | None = None

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.given_name, self.family_name) if p)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "full_name": self.full_name,
            "given_name": self.given_name,
            "family_name": self.family_name,
            "organization_name": self.organization_name,
            "job_title": self.job_title,
            "email_addresses": list(self.email_addresses),
            "phone_numbers": list(self.phone_numbers),
            "note": self.note,
        }


@dataclass
class CalendarEvent:
    """Calendar entry."""

    id: str
    title: str
    start_date: datetime
    end_date: datetime
    last_modified: datetime
    location: str | None = None
    notes: str | None = None
    attendees: list[str] = field(default_factory=list)

    @property
    def duration(self) -> timedelta:
        return self.end_date - self.start_date

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "location": self.location,
            "notes": self.notes,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "attendees": list(self.attendees),
        }


@dataclass
class Photo:
    """Photo library item with whatever metadata the platform exposes."""

    id: str
    taken_at: datetime
    last_modified: datetime
    location: str | None = None
    people: list[str] = field(default_factory=list)
    album: str | None = None
    caption: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "taken_at": self.taken_at.isoformat(),
            "location": self.location,
            "people": list(self.people),
            "album": self.album,
            "caption": self.caption,
        }


@dataclass
class CallLogEntry:
    """Phone call record."""

    id: str
    phone_number: str
    started_at: datetime
    last_modified: datetime
    contact_name: str | None = None
    direction: str = "incoming"
    duration_seconds: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "phone_number": self.phone_number,
            "contact_name": self.contact_name,
            "direction": self.direction,
            "started_at": self.started_at.isoformat(),
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class Document:
    """Text document (note, file, email body)."""

    id: str
    title: str
    content: str
    last_modified: datetime
    mime_type: str = "text/plain"
    owners: list[str] = field(default_factory=list)

    @property
    def word_count(self) -> int:
        return len(self.content.split())

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "mime_type": self.mime_type,
            "owners": list(self.owners),
        }
