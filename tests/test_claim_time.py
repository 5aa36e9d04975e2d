"""Tests for ebc_fetch.claim_time."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from ebc_fetch.claim_time import ClaimTimeResolver, calc_claim_date, format_db_time, parse_db_time
from ebc_fetch.models import ClaimRecord, ParsedClaim, RallyWindow
from ebc_fetch.store import ScoreMasterStore
from tests.conftest import RALLY_TZ


def _claim(hour: int, minute: int, **kw) -> ParsedClaim:
    defaults = dict(
        ok=True,
        entrant_id=1,
        bonus_id="BB1",
        odometer=12345,
        odometer_valid=True,
        hhmm=f"{hour:02d}{minute:02d}",
        time_valid=True,
        hour=hour,
        minute=minute,
    )
    defaults.update(kw)
    return ParsedClaim(**defaults)


def _record(claim_time: datetime, *, email_id: int = 1) -> ClaimRecord:
    now = datetime(2023, 6, 10, 15, 0, tzinfo=RALLY_TZ)
    return ClaimRecord(
        logged_at=now,
        message_date=now,
        entrant_id=1,
        bonus_id="BB1",
        odometer=12345,
        received_at=now,
        email_id=email_id,
        claim_hour=claim_time.hour,
        claim_minute=claim_time.minute,
        claim_time=claim_time,
        subject="1 BB1 12345 1432",
        extra="",
        strict_ok=True,
        photo_time=None,
        first_seen=now,
        photo_ids="",
    )


class TestCalcClaimDate:
    def test_same_day(self, window: RallyWindow):
        sent = datetime(2023, 6, 10, 14, 40, tzinfo=RALLY_TZ)
        assert calc_claim_date(14, 32, sent, window) == datetime(2023, 6, 10, 14, 32, tzinfo=RALLY_TZ)

    def test_late_night_claim_sent_after_midnight(self, window: RallyWindow):
        sent = datetime(2023, 6, 11, 0, 10, tzinfo=RALLY_TZ)
        assert calc_claim_date(23, 55, sent, window) == datetime(2023, 6, 10, 23, 55, tzinfo=RALLY_TZ)

    def test_no_shift_back_before_rally_start_day(self, window: RallyWindow):
        # Candidate is on the start date already; it stays put.
        sent = datetime(2023, 6, 10, 9, 0, tzinfo=RALLY_TZ)
        assert calc_claim_date(11, 0, sent, window) == datetime(2023, 6, 10, 11, 0, tzinfo=RALLY_TZ)

    def test_within_an_hour_stays_on_sent_day(self, window: RallyWindow):
        sent = datetime(2023, 6, 11, 9, 30, tzinfo=RALLY_TZ)
        assert calc_claim_date(10, 15, sent, window) == datetime(2023, 6, 11, 10, 15, tzinfo=RALLY_TZ)

    def test_sent_time_is_converted_to_rally_zone(self, window: RallyWindow):
        # 23:30 UTC on the 10th is 00:30 BST on the 11th.
        sent = datetime(2023, 6, 10, 23, 30, tzinfo=timezone.utc)
        assert calc_claim_date(0, 20, sent, window) == datetime(2023, 6, 11, 0, 20, tzinfo=RALLY_TZ)

    def test_single_day_rally_uses_rally_date(self):
        window = RallyWindow(
            title="Day run",
            start=datetime(2023, 6, 10, 8, 0, tzinfo=RALLY_TZ),
            finish=datetime(2023, 6, 10, 20, 0, tzinfo=RALLY_TZ),
            tz=RALLY_TZ,
        )
        sent = datetime(2023, 6, 12, 9, 0, tzinfo=RALLY_TZ)
        assert calc_claim_date(15, 5, sent, window) == datetime(2023, 6, 10, 15, 5, tzinfo=RALLY_TZ)

    def test_keeps_wall_clock_across_dst_change(self):
        window = RallyWindow(
            title="Autumn",
            start=datetime(2023, 10, 28, 8, 0, tzinfo=RALLY_TZ),
            finish=datetime(2023, 10, 29, 18, 0, tzinfo=RALLY_TZ),
            tz=RALLY_TZ,
        )
        sent = datetime(2023, 10, 29, 0, 5, tzinfo=timezone.utc)
        result = calc_claim_date(23, 50, sent, window)
        assert (result.day, result.hour, result.minute) == (28, 23, 50)
        assert result.utcoffset() == timedelta(hours=1)


class TestDbTime:
    def test_format_is_offset_qualified(self):
        stamp = datetime(2023, 6, 10, 14, 32, 5, 123456, tzinfo=RALLY_TZ)
        assert format_db_time(stamp) == "2023-06-10T14:32:05+01:00"

    def test_round_trip_and_naive(self):
        assert parse_db_time("2023-06-10T14:32:00+01:00", RALLY_TZ) == datetime(
            2023, 6, 10, 14, 32, tzinfo=RALLY_TZ
        )
        assert parse_db_time("2023-06-10T14:32", RALLY_TZ).tzinfo is RALLY_TZ
        assert parse_db_time("not a time", RALLY_TZ) is None


class TestClaimTimeResolver:
    @pytest.mark.asyncio
    async def test_explicit_timestamp_wins(self, store: ScoreMasterStore, window: RallyWindow):
        explicit = datetime(2023, 6, 10, 7, 15, tzinfo=timezone(timedelta(hours=3)))
        resolver = ClaimTimeResolver(store, window)
        claim = _claim(7, 15, claim_time=explicit)
        sent = datetime(2023, 6, 10, 14, 0, tzinfo=RALLY_TZ)
        assert await resolver.resolve(claim, sent) == explicit

    @pytest.mark.asyncio
    async def test_computed_when_not_seen_before(self, store: ScoreMasterStore, window: RallyWindow):
        resolver = ClaimTimeResolver(store, window)
        sent = datetime(2023, 6, 10, 14, 40, tzinfo=RALLY_TZ)
        assert await resolver.resolve(_claim(14, 32), sent) == datetime(
            2023, 6, 10, 14, 32, tzinfo=RALLY_TZ
        )

    @pytest.mark.asyncio
    async def test_resend_reuses_stored_time(self, store: ScoreMasterStore, window: RallyWindow):
        original = datetime(2023, 6, 10, 23, 55, tzinfo=RALLY_TZ)
        await store.insert_claim(_record(original))

        resolver = ClaimTimeResolver(store, window)
        # Resent two days later; recomputing would give the 11th.
        sent = datetime(2023, 6, 12, 8, 0, tzinfo=RALLY_TZ)
        first = await resolver.resolve(_claim(23, 55), sent)
        second = await resolver.resolve(_claim(23, 55), sent + timedelta(hours=5))
        assert first == original
        assert second == original

    @pytest.mark.asyncio
    async def test_resend_picks_earliest(self, store: ScoreMasterStore, window: RallyWindow):
        await store.insert_claim(_record(datetime(2023, 6, 11, 14, 32, tzinfo=RALLY_TZ), email_id=2))
        await store.insert_claim(_record(datetime(2023, 6, 10, 14, 32, tzinfo=RALLY_TZ), email_id=3))

        resolver = ClaimTimeResolver(store, window)
        sent = datetime(2023, 6, 11, 15, 0, tzinfo=RALLY_TZ)
        assert await resolver.resolve(_claim(14, 32), sent) == datetime(
            2023, 6, 10, 14, 32, tzinfo=RALLY_TZ
        )

    @pytest.mark.asyncio
    async def test_different_odometer_is_not_a_resend(
        self, store: ScoreMasterStore, window: RallyWindow
    ):
        await store.insert_claim(_record(datetime(2023, 6, 10, 14, 32, tzinfo=RALLY_TZ)))
        resolver = ClaimTimeResolver(store, window)
        sent = datetime(2023, 6, 11, 14, 40, tzinfo=RALLY_TZ)
        result = await resolver.resolve(_claim(14, 32, odometer=99999), sent)
        assert result == datetime(2023, 6, 11, 14, 32, tzinfo=RALLY_TZ)
