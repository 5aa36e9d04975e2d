"""Shared test fixtures for the ebc_fetch test suite."""

from __future__ import annotations

import asyncio
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from ebc_fetch.config import (
    ClaimsConfig,
    DatabaseConfig,
    FetcherConfig,
    ImapConfig,
    PhotoConfig,
    ResponderConfig,
    RetryConfig,
    SmtpConfig,
)
from ebc_fetch.db import Base, Bonus, Entrant, RallyParams
from ebc_fetch.errors import AcknowledgeFailure, FetchStreamFailure
from ebc_fetch.interface import FetchedMessage, MailboxInterface
from ebc_fetch.models import RallyWindow
from ebc_fetch.store import ScoreMasterStore

RALLY_TZ = ZoneInfo("Europe/London")
MONITORED = "claims@rally.example"

ENTRANTS = [
    {"entrant_id": 1, "rider_name": "Alice Rider", "email": "alice@example.com", "team_id": 0},
    {"entrant_id": 7, "rider_name": "Bob Rider", "email": "Bob <bob@example.com>", "team_id": 5},
    {"entrant_id": 8, "rider_name": "Carol Pillion", "email": "carol@example.com", "team_id": 5},
    {"entrant_id": 9, "rider_name": "", "email": "nameless@example.com", "team_id": 0},
]
BONUSES = [
    {"bonus_id": "BB1", "brief_desc": "Big Bridge", "points": 100},
    {"bonus_id": "BB3", "brief_desc": "Bell Tower", "points": 50},
    {"bonus_id": "23B", "brief_desc": "Lighthouse", "points": 20},
]


# ------------------------------------------------------------------
# Configuration
# ------------------------------------------------------------------


@pytest.fixture
def imap_config() -> ImapConfig:
    return ImapConfig(
        host="imap.test.com",
        port=993,
        use_ssl=True,
        username=MONITORED,
        password="testpass",
        mailbox="INBOX",
        poll_interval_seconds=0.01,
        max_fetch=0,
    )


@pytest.fixture
def claims_config() -> ClaimsConfig:
    return ClaimsConfig()


@pytest.fixture
def photo_config(tmp_path: Path) -> PhotoConfig:
    (tmp_path / "sm" / "images" / "ebcimg").mkdir(parents=True)
    return PhotoConfig(root=str(tmp_path / "sm"), folder="images/ebcimg")


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=3,
        initial_wait_seconds=0.01,
        max_wait_seconds=0.02,
        multiplier=1.0,
    )


@pytest.fixture
def database_config(tmp_path: Path) -> DatabaseConfig:
    return DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'ScoreMaster.db'}")


@pytest.fixture
def fetcher_config(
    imap_config: ImapConfig,
    claims_config: ClaimsConfig,
    photo_config: PhotoConfig,
    database_config: DatabaseConfig,
    retry_config: RetryConfig,
) -> FetcherConfig:
    return FetcherConfig(
        name="ebcfetch-test",
        health_port=18080,
        log_json=False,
        imap=imap_config,
        claims=claims_config,
        photos=photo_config,
        database=database_config,
        smtp=SmtpConfig(host="smtp.test.com", username=MONITORED, password="smtppass"),
        responder=ResponderConfig(good="Looks good", bad="Needs work", literal="TEST"),
        retry=retry_config,
    )


# ------------------------------------------------------------------
# Rally data
# ------------------------------------------------------------------


@pytest.fixture
def window() -> RallyWindow:
    """Two-day rally: Sat 10 Jun 08:00 to Sun 11 Jun 18:00, UK time."""
    return RallyWindow(
        title="Test Rally",
        start=datetime(2023, 6, 10, 8, 0, tzinfo=RALLY_TZ),
        finish=datetime(2023, 6, 11, 18, 0, tzinfo=RALLY_TZ),
        tz=RALLY_TZ,
    )


@pytest.fixture
async def store(database_config: DatabaseConfig):
    """A started store over a seeded, file-backed SQLite database."""
    s = ScoreMasterStore(database_config)
    await s.start()
    async with s.engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSession(s.engine) as session, session.begin():
        session.add(
            RallyParams(
                rally_title="Test Rally",
                start_time="2023-06-10T08:00",
                finish_time="2023-06-11T18:00",
                local_tz="Europe/London",
            )
        )
        session.add_all(Entrant(**row) for row in ENTRANTS)
        session.add_all(Bonus(**row) for row in BONUSES)
    yield s
    await s.stop()


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def _build_claim_email(
    *,
    subject: str = "1 BB1 12345 1432",
    from_addr: str = "alice@example.com",
    body: str = "Sent from my phone",
    date: str = "Sat, 10 Jun 2023 14:40:00 +0100",
    photos: list[tuple[str, bytes]] | None = None,
    inline: list[tuple[str, bytes]] | None = None,
    received: list[str] | None = None,
) -> bytes:
    """Build a claim email; *photos* are attachments, *inline* embedded images."""
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = MONITORED
    msg["Message-ID"] = "<claim-001@example.com>"
    msg["Date"] = date
    for header in received or []:
        msg["Received"] = header
    msg.set_content(body)

    for filename, payload in photos or []:
        msg.add_attachment(payload, maintype="image", subtype="jpeg", filename=filename)
    for filename, payload in inline or []:
        msg.add_attachment(
            payload,
            maintype="image",
            subtype="heic",
            disposition="inline",
            filename=filename,
            cid="<photo@example.com>",
        )
    return msg.as_bytes()


def _received_at(text: str = "Sat, 10 Jun 2023 14:41:00 +0100") -> datetime:
    from email.utils import parsedate_to_datetime

    return parsedate_to_datetime(text)


# ------------------------------------------------------------------
# Fake mailbox
# ------------------------------------------------------------------


class FakeMailbox(MailboxInterface):
    """In-memory mailbox that records flag updates.

    ``fail_after`` stops the stream after that many messages, raising
    ``fail_with`` if given; UIDs in ``missing`` come back without a body
    and are skipped. ``store_failures`` makes that many ``store_flags``
    calls fail first.
    """

    def __init__(
        self,
        messages: dict[int, bytes] | None = None,
        *,
        fail_after: int | None = None,
        fail_with: Exception | None = None,
        missing: set[int] | None = None,
        store_failures: int = 0,
    ) -> None:
        self.messages = dict(messages or {})
        self.fail_after = fail_after
        self.fail_with = fail_with
        self.missing = set(missing or ())
        self.store_failures = store_failures
        self.connected = False
        self.connects = 0
        self.flag_calls: list[tuple[list[int], list[str]]] = []

    async def connect(self) -> None:
        self.connected = True
        self.connects += 1

    async def disconnect(self) -> None:
        self.connected = False

    async def is_connected(self) -> bool:
        return self.connected

    async def search(self) -> list[int]:
        return sorted(self.messages)

    async def fetch_into(self, uids, queue: asyncio.Queue) -> None:
        try:
            for n, uid in enumerate(uids):
                if self.fail_after is not None and n >= self.fail_after:
                    raise self.fail_with or FetchStreamFailure(f"connection reset at uid {uid}")
                if uid in self.missing:
                    continue
                await queue.put(
                    FetchedMessage(uid=uid, raw_bytes=self.messages[uid], internal_date=_received_at())
                )
        finally:
            await queue.put(None)

    async def store_flags(self, uids, flags) -> None:
        if self.store_failures > 0:
            self.store_failures -= 1
            self.connected = False
            raise AcknowledgeFailure("connection dropped")
        self.flag_calls.append((list(uids), list(flags)))


@pytest.fixture
def claim_eml_bytes() -> bytes:
    return _build_claim_email()
