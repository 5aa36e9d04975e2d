"""Data models shared across the claim pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field


class ServiceStatus(str, Enum):
    """Runtime status of the fetcher process."""

    STARTING = "starting"
    RUNNING = "running"
    SUSPENDED = "suspended"
    DEGRADED = "degraded"
    STOPPING = "stopping"
    STOPPED = "stopped"


class Disposition(str, Enum):
    """What happens to a message's mailbox flags after a cycle."""

    ACCEPTED = "accepted"  # recorded, stays \Seen
    DEALT_WITH = "dealt_with"  # flagged, left unread for a human
    RETRY = "retry"  # flags cleared, re-offered next cycle
    REPLIED = "replied"  # test mode, no flag changes


@dataclass(frozen=True)
class RallyWindow:
    """Start/finish of the rally and the timezone claims are expressed in."""

    title: str
    start: datetime
    finish: datetime
    tz: ZoneInfo

    @property
    def single_day(self) -> bool:
        return self.start.date() == self.finish.date()

    @property
    def offset(self) -> str:
        """UTC offset of the rally start, e.g. ``+01:00``."""
        minutes = int((self.start.utcoffset() or timedelta(0)).total_seconds()) // 60
        sign = "-" if minutes < 0 else "+"
        hours, minutes = divmod(abs(minutes), 60)
        return f"{sign}{hours:02d}:{minutes:02d}"


@dataclass(frozen=True)
class ParsedClaim:
    """Structured claim extracted from a subject line (or body)."""

    ok: bool = False
    entrant_id: int = 0
    bonus_id: str = ""
    odometer: int = 0
    odometer_valid: bool = False
    claim_time: datetime | None = None
    hhmm: str = ""
    time_valid: bool = False
    hour: int = 0
    minute: int = 0
    extra: str = ""


@dataclass(frozen=True)
class EntrantContact:
    """An entrant's name and every address registered for them or their team."""

    entrant_id: int
    rider_name: str
    addresses: tuple[str, ...] = ()


@dataclass(frozen=True)
class EntrantCheck:
    """Two independent answers: is this a real entrant, may this sender claim for them."""

    known: bool
    authorized: bool


@dataclass
class PhotoResult:
    """Summary of the photos extracted from one message."""

    ok: bool = True
    count: int = 0
    photo_ids: list[int] = field(default_factory=list)
    photo_time: datetime | None = None
    files: list[Path] = field(default_factory=list)
    rejected: bool = False  # failure will repeat on every retry

    @property
    def joined_ids(self) -> str:
        return ",".join(str(i) for i in self.photo_ids)


@dataclass
class ClaimOutcome:
    """A parsed claim plus everything learned about it while processing."""

    uid: int
    subject: str
    sender: str
    claim: ParsedClaim
    subject_from_body: bool = False
    claim_time: datetime | None = None
    entrant_known: bool = False
    address_authorized: bool = False
    bonus_description: str = ""
    photos: PhotoResult = field(default_factory=PhotoResult)
    first_seen: datetime | None = None
    strict_ok: bool = False

    @property
    def bonus_known(self) -> bool:
        return self.bonus_description != ""

    @property
    def photo_present(self) -> int:
        """Photo count, negated when some photos could not be stored."""
        if self.photos.ok:
            return self.photos.count
        return -self.photos.count

    @property
    def claim_is_good(self) -> bool:
        return (
            self.claim.ok
            and self.entrant_known
            and self.address_authorized
            and self.bonus_known
            and self.claim.time_valid
        )


@dataclass(frozen=True)
class ClaimRecord:
    """One row of the ``ebclaims`` table."""

    logged_at: datetime
    message_date: datetime
    entrant_id: int
    bonus_id: str
    odometer: int
    received_at: datetime
    email_id: int
    claim_hour: int
    claim_minute: int
    claim_time: datetime
    subject: str
    extra: str
    strict_ok: bool
    photo_time: datetime | None
    first_seen: datetime
    photo_ids: str


class HealthStatus(BaseModel):
    """Response model for the /health endpoint."""

    service_name: str = Field(description="Name of the fetcher instance")
    status: ServiceStatus = Field(description="Current service status")
    uptime_seconds: float = Field(description="Seconds since the service started")
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Fetcher-specific details (last cycle time, counters)",
    )
