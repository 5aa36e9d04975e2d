"""ScoreMaster database access through async SQLAlchemy."""

from __future__ import annotations

import email.utils
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog
from sqlalchemy import case, delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .claim_time import format_db_time
from .config import DatabaseConfig
from .db import Bonus, Claim, Entrant, Photo, RallyParams
from .models import ClaimRecord, EntrantContact, RallyWindow

logger = structlog.get_logger()


class RallyConfigError(ValueError):
    """The ``rallyparams`` row is missing or unusable."""


def _split_addresses(field: str | None) -> list[str]:
    if not field:
        return []
    return [addr for _, addr in email.utils.getaddresses([field]) if addr]


def _rally_time(value: str, tz: ZoneInfo) -> datetime:
    stamp = datetime.fromisoformat(value)
    if stamp.tzinfo is None:
        stamp = stamp.replace(tzinfo=tz)
    return stamp.astimezone(tz)


class PhotoTransaction:
    """Photo-row operations bound to one open transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def insert_photo(self, entrant_id: int, bonus_id: str, email_id: int) -> int:
        photo = Photo(entrant_id=entrant_id, bonus_id=bonus_id, email_id=email_id)
        self._session.add(photo)
        await self._session.flush()
        return photo.rowid

    async def set_image_path(self, photo_id: int, path: str) -> None:
        await self._session.execute(
            update(Photo).where(Photo.rowid == photo_id).values(image=path)
        )


class ScoreMasterStore:
    """Reads rally, entrant and bonus data; writes claims and photos."""

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._engine: AsyncEngine | None = None
        self._session: async_sessionmaker[AsyncSession] | None = None

    async def start(self) -> None:
        """Create the engine and session factory."""
        self._engine = create_async_engine(self._config.url, echo=False)
        self._session = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        logger.info("store_started", url=self._engine.url.render_as_string(hide_password=True))

    async def stop(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session = None
            logger.info("store_stopped")

    @property
    def engine(self) -> AsyncEngine:
        assert self._engine is not None, "Store not started"
        return self._engine

    def _sessions(self) -> async_sessionmaker[AsyncSession]:
        assert self._session is not None, "Store not started"
        return self._session

    # ------------------------------------------------------------------
    # Rally data
    # ------------------------------------------------------------------

    async def load_rally_window(self) -> RallyWindow:
        """Read the rally title, start, finish and timezone."""
        async with self._sessions()() as session:
            params = await session.scalar(select(RallyParams).limit(1))
        if params is None:
            raise RallyConfigError("rallyparams has no row")
        try:
            tz = ZoneInfo(params.local_tz)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise RallyConfigError(f"timezone {params.local_tz!r} cannot be loaded") from exc
        try:
            start = _rally_time(params.start_time, tz)
            finish = _rally_time(params.finish_time, tz)
        except (TypeError, ValueError) as exc:
            raise RallyConfigError(f"rally start/finish cannot be parsed: {exc}") from exc
        return RallyWindow(title=params.rally_title or "", start=start, finish=finish, tz=tz)

    async def fetch_entrant(self, entrant_id: int) -> EntrantContact | None:
        """The entrant plus the addresses of every member of their team."""
        async with self._sessions()() as session:
            team_id = await session.scalar(
                select(Entrant.team_id).where(Entrant.entrant_id == entrant_id)
            )
            if team_id is None:
                return None
            condition = Entrant.entrant_id == entrant_id
            if team_id > 0:
                condition = or_(condition, Entrant.team_id == team_id)
            rows = (
                await session.scalars(
                    select(Entrant)
                    .where(condition)
                    .order_by(case((Entrant.entrant_id == entrant_id, 0), else_=1))
                )
            ).all()

        addresses: list[str] = []
        for row in rows:
            addresses.extend(_split_addresses(row.email))
        return EntrantContact(
            entrant_id=entrant_id,
            rider_name=rows[0].rider_name or "",
            addresses=tuple(addresses),
        )

    async def list_entrant_addresses(self) -> list[str]:
        """Every address registered for any entrant."""
        async with self._sessions()() as session:
            fields = (await session.scalars(select(Entrant.email))).all()
        addresses: list[str] = []
        for field in fields:
            addresses.extend(_split_addresses(field))
        return addresses

    async def fetch_bonus_description(self, bonus_id: str) -> str:
        """Brief description of *bonus_id*, or ``""`` when no such bonus."""
        async with self._sessions()() as session:
            desc = await session.scalar(select(Bonus.brief_desc).where(Bonus.bonus_id == bonus_id))
        return desc or ""

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    async def find_resent_claim_time(
        self,
        entrant_id: int,
        bonus_id: str,
        odometer: int,
        hour: int,
        minute: int,
    ) -> str | None:
        """Stored ClaimTime of an earlier, identical claim, if any."""
        async with self._sessions()() as session:
            return await session.scalar(
                select(Claim.claim_time)
                .where(
                    Claim.entrant_id == entrant_id,
                    Claim.bonus_id == bonus_id,
                    Claim.odo_reading == odometer,
                    Claim.claim_hh == hour,
                    Claim.claim_mm == minute,
                )
                .order_by(Claim.claim_time, Claim.date_time)
                .limit(1)
            )

    async def insert_claim(self, record: ClaimRecord) -> int:
        row = Claim(
            logged_at=format_db_time(record.logged_at),
            date_time=format_db_time(record.message_date),
            entrant_id=record.entrant_id,
            bonus_id=record.bonus_id,
            odo_reading=record.odometer,
            final_time=format_db_time(record.received_at),
            email_id=record.email_id,
            claim_hh=record.claim_hour,
            claim_mm=record.claim_minute,
            claim_time=format_db_time(record.claim_time),
            subject=record.subject,
            extra_field=record.extra,
            strict_ok=record.strict_ok,
            attachment_time=format_db_time(record.photo_time) if record.photo_time else None,
            first_time=format_db_time(record.first_seen),
            photo_id=record.photo_ids,
        )
        async with self._sessions()() as session:
            async with session.begin():
                session.add(row)
                await session.flush()
                return row.rowid

    # ------------------------------------------------------------------
    # Photos
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def photo_transaction(self) -> AsyncIterator[PhotoTransaction]:
        """One transaction per photo: commits on exit, rolls back on error."""
        async with self._sessions()() as session:
            async with session.begin():
                yield PhotoTransaction(session)

    async def delete_photo(self, photo_id: int) -> None:
        async with self._sessions()() as session:
            async with session.begin():
                await session.execute(delete(Photo).where(Photo.rowid == photo_id))
