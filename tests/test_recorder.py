"""Tests for ebc_fetch.recorder."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from ebc_fetch.db import Claim
from ebc_fetch.errors import PersistenceFailure
from ebc_fetch.models import ClaimOutcome, ParsedClaim, PhotoResult
from ebc_fetch.recorder import ClaimRecorder
from ebc_fetch.store import ScoreMasterStore
from tests.conftest import RALLY_TZ

UTC_SENT = datetime(2023, 6, 10, 13, 40, tzinfo=timezone.utc)
RECEIVED = datetime(2023, 6, 10, 14, 41, tzinfo=timezone(timedelta(hours=1)))


def _outcome(**overrides) -> ClaimOutcome:
    fields = dict(
        uid=42,
        subject="1 BB1 12345 1432 at the pier",
        sender="alice@example.com",
        claim=ParsedClaim(
            ok=True,
            entrant_id=1,
            bonus_id="BB1",
            odometer=12345,
            odometer_valid=True,
            hhmm="1432",
            time_valid=True,
            hour=14,
            minute=32,
            extra="at the pier",
        ),
        claim_time=datetime(2023, 6, 10, 14, 32, tzinfo=RALLY_TZ),
        entrant_known=True,
        address_authorized=True,
        bonus_description="Big Bridge",
        photos=PhotoResult(count=2, photo_ids=[3, 4]),
    )
    fields.update(overrides)
    return ClaimOutcome(**fields)


class TestBuildRecord:
    def test_fields(self):
        record = ClaimRecorder(MagicMock(), RALLY_TZ).build_record(_outcome(), UTC_SENT, RECEIVED)
        assert record.message_date == datetime(2023, 6, 10, 14, 40, tzinfo=RALLY_TZ)
        assert record.message_date.tzinfo is RALLY_TZ
        assert record.received_at == RECEIVED
        assert record.email_id == 42
        assert (record.claim_hour, record.claim_minute) == (14, 32)
        assert record.extra == "at the pier"
        assert record.photo_ids == "3,4"

    def test_first_seen_defaults_to_received(self):
        recorder = ClaimRecorder(MagicMock(), RALLY_TZ)
        assert recorder.build_record(_outcome(), UTC_SENT, RECEIVED).first_seen == RECEIVED
        earlier = RECEIVED - timedelta(minutes=3)
        record = recorder.build_record(_outcome(first_seen=earlier), UTC_SENT, RECEIVED)
        assert record.first_seen == earlier


class TestRecord:
    @pytest.mark.asyncio
    async def test_inserts_row(self, store: ScoreMasterStore):
        rowid = await ClaimRecorder(store, RALLY_TZ).record(_outcome(), UTC_SENT, RECEIVED)

        async with AsyncSession(store.engine) as session:
            row = await session.get(Claim, rowid)
        assert row is not None
        assert row.extra_field == "at the pier"
        assert row.photo_id == "3,4"
        assert row.date_time == "2023-06-10T14:40:00+01:00"
        assert row.first_time == "2023-06-10T14:41:00+01:00"

    @pytest.mark.asyncio
    async def test_database_error_is_transient(self, store: ScoreMasterStore):
        locked = OperationalError("INSERT", {}, Exception("database is locked"))
        with patch.object(store, "insert_claim", AsyncMock(side_effect=locked)):
            with pytest.raises(PersistenceFailure) as exc_info:
                await ClaimRecorder(store, RALLY_TZ).record(_outcome(), UTC_SENT, RECEIVED)
        assert exc_info.value.uid == 42
        assert not exc_info.value.permanent
