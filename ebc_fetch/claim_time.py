"""Turn a claim's time of day into an absolute timestamp."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, tzinfo
from typing import TYPE_CHECKING

import structlog

from .models import ParsedClaim, RallyWindow

if TYPE_CHECKING:
    from .store import ScoreMasterStore

logger = structlog.get_logger()


def format_db_time(stamp: datetime) -> str:
    """Offset-qualified ISO-8601, the only form timestamps are stored in."""
    return stamp.isoformat(timespec="seconds")


def parse_db_time(value: str, tz: tzinfo) -> datetime | None:
    """Read a stored timestamp back; naive values are taken as rally-local."""
    try:
        stamp = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=tz)
    return stamp


def _at(day: date, hour: int, minute: int, tz: tzinfo) -> datetime:
    return datetime.combine(day, time(hour, minute), tzinfo=tz)


def calc_claim_date(hour: int, minute: int, sent_at: datetime, window: RallyWindow) -> datetime:
    """Place *hour*:*minute* on a calendar day.

    A single-day rally uses its own date. Otherwise the message's sent date
    (in rally time) is used, stepping back a day when that would put the
    claim more than an hour after the message was sent; this is the
    late-night claim sent just after midnight.
    """
    if window.single_day:
        day = window.start.date()
    else:
        day = sent_at.astimezone(window.tz).date()

    candidate = _at(day, hour, minute, window.tz)
    if candidate - sent_at > timedelta(hours=1) and candidate.date() != window.start.date():
        candidate = _at(day - timedelta(days=1), hour, minute, window.tz)
    return candidate


class ClaimTimeResolver:
    """Resolve claim timestamps, reusing the original time for resends."""

    def __init__(self, store: ScoreMasterStore, window: RallyWindow) -> None:
        self._store = store
        self._window = window

    async def resolve(self, claim: ParsedClaim, sent_at: datetime) -> datetime:
        if claim.claim_time is not None:
            return claim.claim_time

        stored = await self._store.find_resent_claim_time(
            claim.entrant_id,
            claim.bonus_id,
            claim.odometer,
            claim.hour,
            claim.minute,
        )
        previous = parse_db_time(stored, self._window.tz) if stored else None
        if previous is not None:
            logger.debug(
                "claim_resend_detected",
                entrant_id=claim.entrant_id,
                bonus_id=claim.bonus_id,
                claim_time=format_db_time(previous),
            )
            return previous

        return calc_claim_date(claim.hour, claim.minute, sent_at, self._window)
