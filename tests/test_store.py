"""Tests for ebc_fetch.store."""

from __future__ import annotations

from datetime import datetime

import pytest
from sqlalchemy import text, update
from sqlalchemy.ext.asyncio import AsyncSession

from ebc_fetch.db import RallyParams
from ebc_fetch.store import RallyConfigError, ScoreMasterStore
from tests.conftest import RALLY_TZ


class TestRallyWindow:
    @pytest.mark.asyncio
    async def test_load(self, store: ScoreMasterStore):
        window = await store.load_rally_window()
        assert window.title == "Test Rally"
        assert window.start == datetime(2023, 6, 10, 8, 0, tzinfo=RALLY_TZ)
        assert window.finish == datetime(2023, 6, 11, 18, 0, tzinfo=RALLY_TZ)
        assert window.tz.key == "Europe/London"
        assert window.offset == "+01:00"
        assert not window.single_day

    @pytest.mark.asyncio
    async def test_bad_timezone(self, store: ScoreMasterStore):
        async with AsyncSession(store.engine) as session, session.begin():
            await session.execute(update(RallyParams).values(local_tz="Mars/Olympus"))
        with pytest.raises(RallyConfigError, match="Mars/Olympus"):
            await store.load_rally_window()

    @pytest.mark.asyncio
    async def test_bad_start_time(self, store: ScoreMasterStore):
        async with AsyncSession(store.engine) as session, session.begin():
            await session.execute(update(RallyParams).values(start_time="someday"))
        with pytest.raises(RallyConfigError):
            await store.load_rally_window()


class TestEntrants:
    @pytest.mark.asyncio
    async def test_fetch_entrant_with_team(self, store: ScoreMasterStore):
        contact = await store.fetch_entrant(7)
        assert contact is not None
        assert contact.rider_name == "Bob Rider"
        assert contact.addresses[0] == "bob@example.com"
        assert "carol@example.com" in contact.addresses

    @pytest.mark.asyncio
    async def test_fetch_entrant_missing(self, store: ScoreMasterStore):
        assert await store.fetch_entrant(99) is None

    @pytest.mark.asyncio
    async def test_list_entrant_addresses(self, store: ScoreMasterStore):
        addresses = await store.list_entrant_addresses()
        assert "alice@example.com" in addresses
        assert len(addresses) == 4

    @pytest.mark.asyncio
    async def test_bonus_description(self, store: ScoreMasterStore):
        assert await store.fetch_bonus_description("23B") == "Lighthouse"
        assert await store.fetch_bonus_description("23b") == ""


class TestSeedData:
    @pytest.mark.asyncio
    async def test_rows_land_in_named_columns(self, store: ScoreMasterStore):
        async with store.engine.connect() as conn:
            entrants = (
                await conn.execute(text("SELECT EntrantID, Email, TeamID FROM entrants ORDER BY EntrantID"))
            ).all()
            bonuses = (await conn.execute(text("SELECT BonusID, Points FROM bonuses ORDER BY BonusID"))).all()

        assert [tuple(r) for r in entrants] == [
            (1, "alice@example.com", 0),
            (7, "Bob <bob@example.com>", 5),
            (8, "carol@example.com", 5),
            (9, "nameless@example.com", 0),
        ]
        assert [tuple(r) for r in bonuses] == [("23B", 20), ("BB1", 100), ("BB3", 50)]
