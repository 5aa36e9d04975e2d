"""Why a message did not become a recorded claim.

Permanent rejections leave the message flagged and unread for a human;
transient failures release it so the next cycle offers it again.
"""

from __future__ import annotations


class ClaimIngestError(Exception):
    """Base class for everything the pipeline raises about one message."""

    permanent: bool = True

    def __init__(self, reason: str, *, uid: int | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.uid = uid


class ParseRejection(ClaimIngestError):
    """The message, or its subject/body, did not yield a valid claim."""


class AuthorizationRejection(ClaimIngestError):
    """Unknown entrant or bonus, or a sender not registered for the entrant."""


class AttachmentFailure(ClaimIngestError):
    """A photo could not be stored this time (disk or database)."""

    permanent = False


class PhotoRejection(ClaimIngestError):
    """A photo that can never be stored: undecodable, or refused by the converter."""


class PersistenceFailure(ClaimIngestError):
    """The claim row (or a lookup it depends on) could not be written or read."""

    permanent = False


class FetchStreamFailure(Exception):
    """Message retrieval aborted part-way through a batch."""


class AcknowledgeFailure(Exception):
    """Mailbox flags could not be updated."""
