"""Async IMAP client wrapping stdlib imaplib with asyncio.to_thread."""

from __future__ import annotations

import asyncio
import imaplib
import re
from datetime import datetime, timedelta, timezone

import structlog

from .config import ImapConfig
from .errors import AcknowledgeFailure, FetchStreamFailure
from .interface import FetchedMessage, MailboxInterface

logger = structlog.get_logger()

# IMAP month names are fixed English abbreviations, whatever the locale
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")

_SYSTEM_FLAG_KEYS = {
    "\\seen": "UNSEEN",
    "\\flagged": "UNFLAGGED",
    "\\answered": "UNANSWERED",
    "\\deleted": "UNDELETED",
    "\\draft": "UNDRAFT",
}

_INTERNALDATE_RE = re.compile(
    rb'INTERNALDATE "\s*(\d{1,2})-(\w{3})-(\d{4}) (\d\d):(\d\d):(\d\d) ([+-])(\d\d)(\d\d)"'
)


def imap_date(value: datetime) -> str:
    """``dd-Mon-YYYY`` as IMAP SEARCH expects."""
    return f"{value.day:02d}-{_MONTHS[value.month - 1]}-{value.year}"


def build_search_criteria(config: ImapConfig) -> list[str]:
    """Messages carrying none of ``select_flags``, within the sent-date window."""
    criteria: list[str] = []
    for flag in config.select_flags:
        key = _SYSTEM_FLAG_KEYS.get(flag.lower())
        criteria.extend([key] if key else ["UNKEYWORD", flag])
    if config.not_before is not None:
        criteria.extend(["SENTSINCE", imap_date(config.not_before)])
    if config.not_after is not None:
        criteria.extend(["SENTBEFORE", imap_date(config.not_after)])
    return criteria or ["ALL"]


def parse_internaldate(response: bytes) -> datetime | None:
    """Extract the server receive time from a FETCH response line."""
    match = _INTERNALDATE_RE.search(response)
    if not match:
        return None
    day, mon, year, hh, mm, ss, sign, oh, om = (g.decode() for g in match.groups())
    try:
        month = _MONTHS.index(mon.title()) + 1
    except ValueError:
        return None
    offset = timedelta(hours=int(oh), minutes=int(om))
    if sign == "-":
        offset = -offset
    return datetime(
        int(year), month, int(day), int(hh), int(mm), int(ss), tzinfo=timezone(offset)
    )


class AsyncImapClient(MailboxInterface):
    """Async-friendly IMAP client.

    All blocking ``imaplib`` operations are wrapped with
    ``asyncio.to_thread()`` to avoid blocking the event loop.
    """

    def __init__(self, config: ImapConfig) -> None:
        self._config = config
        self._conn: imaplib.IMAP4_SSL | imaplib.IMAP4 | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect, login, and select the configured mailbox."""
        await asyncio.to_thread(self._connect_sync)
        logger.info(
            "imap_connected",
            host=self._config.host,
            mailbox=self._config.mailbox,
        )

    def _connect_sync(self) -> None:
        if self._config.use_ssl:
            self._conn = imaplib.IMAP4_SSL(self._config.host, self._config.port)
        else:
            self._conn = imaplib.IMAP4(self._config.host, self._config.port)
        self._conn.login(self._config.username, self._config.password.get_secret_value())
        status, data = self._conn.select(self._config.mailbox)
        if status != "OK":
            raise imaplib.IMAP4.error(f"cannot select {self._config.mailbox}: {data!r}")

    async def disconnect(self) -> None:
        """Close mailbox and logout."""
        if self._conn is not None:
            await asyncio.to_thread(self._disconnect_sync)
            self._conn = None
            logger.info("imap_disconnected")

    def _disconnect_sync(self) -> None:
        assert self._conn is not None
        try:
            self._conn.close()
        except (imaplib.IMAP4.error, OSError):
            pass
        try:
            self._conn.logout()
        except (imaplib.IMAP4.error, OSError):
            pass

    async def is_connected(self) -> bool:
        """Check connection liveness with a NOOP command."""
        if self._conn is None:
            return False
        try:
            status, _ = await asyncio.to_thread(self._conn.noop)
            return status == "OK"
        except (imaplib.IMAP4.error, OSError):
            return False

    # ------------------------------------------------------------------
    # Message retrieval
    # ------------------------------------------------------------------

    async def search(self) -> list[int]:
        assert self._conn is not None, "Not connected"
        criteria = build_search_criteria(self._config)
        try:
            status, data = await asyncio.to_thread(self._conn.uid, "SEARCH", None, *criteria)
        except (imaplib.IMAP4.error, OSError) as exc:
            raise FetchStreamFailure(f"search failed: {exc}") from exc
        if status != "OK":
            raise FetchStreamFailure(f"search returned {status}")
        if not data or not data[0]:
            return []
        uids = sorted(int(u) for u in data[0].split())
        logger.debug("imap_search_complete", criteria=" ".join(criteria), found=len(uids))
        return uids

    async def fetch_into(
        self, uids: list[int], queue: asyncio.Queue[FetchedMessage | None]
    ) -> None:
        assert self._conn is not None, "Not connected"
        try:
            for uid in uids:
                try:
                    message = await asyncio.to_thread(self._fetch_one, uid)
                except (imaplib.IMAP4.error, OSError) as exc:
                    raise FetchStreamFailure(f"fetch of uid {uid} failed: {exc}") from exc
                if message is None:
                    # expunged meanwhile; the controller releases it with the rest
                    logger.warning("imap_fetch_empty", uid=uid)
                    continue
                await queue.put(message)
        finally:
            await queue.put(None)

    def _fetch_one(self, uid: int) -> FetchedMessage | None:
        # BODY[] (not PEEK) so the message is \Seen from here on
        assert self._conn is not None
        status, data = self._conn.uid("FETCH", str(uid), "(UID INTERNALDATE BODY[])")
        if status != "OK":
            raise imaplib.IMAP4.error(f"fetch of uid {uid} returned {status}")
        if not data or not isinstance(data[0], tuple):
            return None
        header, raw_bytes = data[0][0], data[0][1]
        return FetchedMessage(
            uid=uid,
            raw_bytes=raw_bytes,
            internal_date=parse_internaldate(header),
        )

    # ------------------------------------------------------------------
    # Flags
    # ------------------------------------------------------------------

    async def store_flags(self, uids: list[int], flags: list[str]) -> None:
        if self._conn is None:
            raise AcknowledgeFailure("not connected")
        uid_set = ",".join(str(u) for u in uids)
        flag_list = f"({' '.join(flags)})"
        try:
            status, data = await asyncio.to_thread(
                self._conn.uid, "STORE", uid_set, "FLAGS.SILENT", flag_list
            )
        except (imaplib.IMAP4.error, OSError) as exc:
            raise AcknowledgeFailure(f"store failed: {exc}") from exc
        if status != "OK":
            raise AcknowledgeFailure(f"store returned {status}: {data!r}")
        logger.debug("imap_flags_stored", uids=uid_set, flags=flag_list)
