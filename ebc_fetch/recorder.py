"""ClaimRecorder: writes one accepted claim to ``ebclaims``."""

from __future__ import annotations

from datetime import datetime, tzinfo

import structlog
from sqlalchemy.exc import SQLAlchemyError

from .errors import PersistenceFailure
from .models import ClaimOutcome, ClaimRecord
from .store import ScoreMasterStore

logger = structlog.get_logger()


class ClaimRecorder:
    """Turns a validated outcome into an immutable claim row."""

    def __init__(self, store: ScoreMasterStore, tz: tzinfo) -> None:
        self._store = store
        self._tz = tz

    def build_record(
        self,
        outcome: ClaimOutcome,
        message_date: datetime,
        received_at: datetime,
    ) -> ClaimRecord:
        claim = outcome.claim
        assert outcome.claim_time is not None, "claim time not resolved"
        return ClaimRecord(
            logged_at=datetime.now(self._tz),
            message_date=message_date.astimezone(self._tz),
            entrant_id=claim.entrant_id,
            bonus_id=claim.bonus_id,
            odometer=claim.odometer,
            received_at=received_at,
            email_id=outcome.uid,
            claim_hour=claim.hour,
            claim_minute=claim.minute,
            claim_time=outcome.claim_time,
            subject=outcome.subject,
            extra=claim.extra,
            strict_ok=outcome.strict_ok,
            photo_time=outcome.photos.photo_time,
            first_seen=outcome.first_seen or received_at,
            photo_ids=outcome.photos.joined_ids,
        )

    async def record(
        self,
        outcome: ClaimOutcome,
        message_date: datetime,
        received_at: datetime,
    ) -> int:
        """Insert the claim; raises :class:`PersistenceFailure` so the
        message is offered again next cycle."""
        record = self.build_record(outcome, message_date, received_at)
        try:
            rowid = await self._store.insert_claim(record)
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"claim insert failed: {exc}", uid=outcome.uid) from exc

        logger.info(
            "claim_recorded",
            uid=outcome.uid,
            claim_id=rowid,
            entrant_id=record.entrant_id,
            bonus_id=record.bonus_id,
            claim_time=record.claim_time.isoformat(),
            photos=record.photo_ids,
        )
        return rowid
