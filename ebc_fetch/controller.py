"""FetchRecoveryController: one poll cycle, from search to acknowledge.

Mailbox flags are the only queue state. A fetched message is ``\\Seen``;
after the batch the controller writes back which messages a human must
look at (``\\Flagged``) and which should simply be offered again (flags
cleared). Every UID fetched in a cycle ends up recorded, flagged or
released; none is lost if the stream breaks part-way.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog

from .config import ImapConfig, RetryConfig
from .errors import AcknowledgeFailure, ClaimIngestError, FetchStreamFailure
from .interface import FetchedMessage, MailboxInterface
from .models import Disposition
from .pipeline import ClaimPipeline
from .retry import with_retry

logger = structlog.get_logger()

DEALT_WITH_FLAGS = ["\\Flagged"]
RELEASE_FLAGS: list[str] = []


@dataclass
class FetchCycle:
    """UID bookkeeping for a single cycle."""

    batch: list[int] = field(default_factory=list)
    current_uid: int = 0
    last_good_uid: int = 0
    delivered: list[int] = field(default_factory=list)
    accepted: set[int] = field(default_factory=set)
    replied: set[int] = field(default_factory=set)
    dealt_with: set[int] = field(default_factory=set)
    skipped: set[int] = field(default_factory=set)
    stream_failed: bool = False

    def classify(self, uid: int, disposition: Disposition) -> None:
        if disposition is Disposition.ACCEPTED:
            self.accepted.add(uid)
            self.last_good_uid = max(self.last_good_uid, uid)
        elif disposition is Disposition.REPLIED:
            self.replied.add(uid)
        elif disposition is Disposition.DEALT_WITH:
            self.dealt_with.add(uid)
        else:
            self.skipped.add(uid)

    def backtrack(self) -> list[int]:
        """Release everything after the last recorded claim that may not
        have been fully handled: the message in hand and all undelivered
        ones."""
        delivered = set(self.delivered)
        candidates = [u for u in self.batch if u not in delivered]
        if self.current_uid:
            candidates.append(self.current_uid)
        released = sorted({u for u in candidates if u > self.last_good_uid})
        for uid in released:
            self.dealt_with.discard(uid)
            self.skipped.add(uid)
        return released

    def release_undelivered(self) -> list[int]:
        """Batch UIDs the mailbox skipped without failing the stream."""
        delivered = set(self.delivered)
        missing = [u for u in self.batch if u not in delivered]
        self.skipped.update(missing)
        return missing

    def summary(self) -> dict[str, int]:
        return {
            "fetched": len(self.delivered),
            "accepted": len(self.accepted),
            "replied": len(self.replied),
            "dealt_with": len(self.dealt_with),
            "skipped": len(self.skipped),
        }


class FetchRecoveryController:
    """Drives the mailbox through one cycle at a time."""

    def __init__(
        self,
        mailbox: MailboxInterface,
        imap: ImapConfig,
        retry: RetryConfig,
    ) -> None:
        self._mailbox = mailbox
        self._imap = imap
        self._retry = retry

    async def run_cycle(self, pipeline: ClaimPipeline) -> FetchCycle:
        """Search, stream, process in order, then acknowledge."""
        cycle = FetchCycle()
        try:
            uids = await self._mailbox.search()
        except FetchStreamFailure as exc:
            logger.error("search_failed", error=str(exc))
            return cycle

        if self._imap.max_fetch > 0:
            uids = uids[: self._imap.max_fetch]
        if not uids:
            return cycle
        cycle.batch = uids
        logger.info("fetch_batch_started", count=len(uids), first_uid=uids[0], last_uid=uids[-1])

        queue: asyncio.Queue[FetchedMessage | None] = asyncio.Queue(maxsize=len(uids) + 1)
        fetcher = asyncio.create_task(self._mailbox.fetch_into(uids, queue))

        while (message := await queue.get()) is not None:
            cycle.current_uid = message.uid
            cycle.delivered.append(message.uid)
            cycle.classify(message.uid, await self._handle(pipeline, message))

        try:
            await fetcher
        except Exception as exc:
            # any stream error, IMAP or not, leaves the rest of the batch unknown
            cycle.stream_failed = True
            released = cycle.backtrack()
            logger.error(
                "fetch_stream_failed",
                error=str(exc),
                kind=type(exc).__name__,
                current_uid=cycle.current_uid,
                last_good_uid=cycle.last_good_uid,
                released=released,
            )
        else:
            missing = cycle.release_undelivered()
            if missing:
                logger.warning("messages_not_delivered", uids=missing)

        if not pipeline.test_mode:
            await self.acknowledge(cycle)
        logger.info("fetch_batch_finished", **cycle.summary())
        return cycle

    async def _handle(self, pipeline: ClaimPipeline, message: FetchedMessage) -> Disposition:
        log = logger.bind(uid=message.uid)
        try:
            return await pipeline.process(message)
        except ClaimIngestError as exc:
            if exc.permanent:
                log.info("claim_dealt_with", reason=exc.reason, kind=type(exc).__name__)
                return Disposition.DEALT_WITH
            log.warning("claim_skipped", reason=exc.reason, kind=type(exc).__name__)
            return Disposition.RETRY
        except Exception:
            log.exception("claim_processing_error")
            return Disposition.RETRY

    async def acknowledge(self, cycle: FetchCycle) -> None:
        """Flag dealt-with messages, then release skipped ones."""
        await self._store(cycle.dealt_with, DEALT_WITH_FLAGS, "dealt_with")
        await self._store(cycle.skipped, RELEASE_FLAGS, "skipped")

    async def _store(self, uids: Iterable[int], flags: list[str], kind: str) -> None:
        ordered = sorted(uids)
        if not ordered:
            return

        @with_retry(self._retry, retryable_exceptions=(AcknowledgeFailure,))
        async def store() -> None:
            if not await self._mailbox.is_connected():
                await self._reconnect()
            await self._mailbox.store_flags(ordered, flags)

        try:
            await store()
        except AcknowledgeFailure as exc:
            logger.error("acknowledge_abandoned", kind=kind, uids=ordered, error=str(exc))
            return
        logger.info("acknowledged", kind=kind, uids=ordered)

    async def _reconnect(self) -> None:
        try:
            await self._mailbox.disconnect()
            await self._mailbox.connect()
        except Exception as exc:
            raise AcknowledgeFailure(f"reconnect failed: {exc}") from exc
