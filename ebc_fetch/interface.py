"""MailboxInterface, the contract the fetch controller drives."""

from __future__ import annotations

import abc
import asyncio
from dataclasses import dataclass
from datetime import datetime


@dataclass
class FetchedMessage:
    """Raw message as delivered by the mailbox."""

    uid: int
    raw_bytes: bytes
    internal_date: datetime | None = None


class MailboxInterface(abc.ABC):
    """A single mailbox session.

    UIDs are the only identity the controller keeps; flags are the only
    state it writes back.
    """

    @abc.abstractmethod
    async def connect(self) -> None: ...

    @abc.abstractmethod
    async def disconnect(self) -> None: ...

    @abc.abstractmethod
    async def is_connected(self) -> bool: ...

    @abc.abstractmethod
    async def search(self) -> list[int]:
        """UIDs of messages waiting to be processed, oldest first.

        Raises :class:`~ebc_fetch.errors.FetchStreamFailure` if the
        search itself fails.
        """

    @abc.abstractmethod
    async def fetch_into(
        self, uids: list[int], queue: asyncio.Queue[FetchedMessage | None]
    ) -> None:
        """Put each message on *queue* in order, then ``None``.

        The ``None`` sentinel is always delivered, even when retrieval
        stops early; in that case :class:`~ebc_fetch.errors.FetchStreamFailure`
        is raised after it.
        """

    @abc.abstractmethod
    async def store_flags(self, uids: list[int], flags: list[str]) -> None:
        """Replace the flags of *uids* with *flags*.

        Raises :class:`~ebc_fetch.errors.AcknowledgeFailure`.
        """
