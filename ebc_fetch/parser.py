"""MIME parser: walks a claim email to extract the subject, text body,
sender, transit headers, attachments and embedded images.
"""

from __future__ import annotations

import email
import email.message
import email.policy
import email.utils
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class ParsedAttachment:
    """A single attached or embedded file.

    ``payload`` is None when the part's body could not be decoded.
    """

    filename: str
    content_type: str
    content_disposition: str
    payload: bytes | None


@dataclass
class ParsedEmail:
    """Structured representation of a claim email."""

    message_id: str
    subject: str
    from_address: str
    date: datetime | None
    body_text: str | None
    received: list[str] = field(default_factory=list)
    attachments: list[ParsedAttachment] = field(default_factory=list)
    embedded: list[ParsedAttachment] = field(default_factory=list)


def parse_header_date(value: str) -> datetime | None:
    """RFC 2822 date → aware datetime, or None if unparseable."""
    if not value:
        return None
    try:
        stamp = email.utils.parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError):
        return None
    if stamp.tzinfo is None:
        return None
    return stamp


def earliest_transit_time(received_at: datetime, received_headers: list[str]) -> datetime:
    """Earliest of the server receive time and every Received/X-Received stamp.

    The stamp is the text after the last ``;`` of each header.
    """
    earliest = received_at
    for header in received_headers:
        stamp = parse_header_date(header.rsplit(";", 1)[-1])
        if stamp is not None and stamp < earliest:
            earliest = stamp
    return earliest


class MimeParser:
    """Stateless parser: raw RFC 822 bytes → ParsedEmail."""

    def parse(self, raw_bytes: bytes) -> ParsedEmail:
        msg = email.message_from_bytes(raw_bytes, policy=email.policy.default)

        attachments, embedded = self._extract_files(msg)
        received = [str(v) for v in msg.get_all("X-Received", [])]
        received += [str(v) for v in msg.get_all("Received", [])]

        return ParsedEmail(
            message_id=str(msg.get("Message-ID", "")),
            subject=str(msg.get("Subject", "")).strip(),
            from_address=str(msg.get("From", "")),
            date=parse_header_date(str(msg.get("Date", ""))),
            body_text=self._extract_text(msg),
            received=received,
            attachments=attachments,
            embedded=embedded,
        )

    def _extract_text(self, msg: email.message.Message) -> str | None:
        """First plain-text part that is not an attachment."""
        for part in msg.walk():
            if part.is_multipart():
                continue
            if part.get_content_type() != "text/plain":
                continue
            if part.get_content_disposition() == "attachment":
                continue
            try:
                content = part.get_content()
            except (LookupError, UnicodeError):
                raw = part.get_payload(decode=True) or b""
                content = raw.decode("utf-8", errors="replace")
            return content.strip()
        return None

    def _extract_files(
        self, msg: email.message.Message
    ) -> tuple[list[ParsedAttachment], list[ParsedAttachment]]:
        """Split non-body parts into attachments and embedded (inline) files."""
        attachments: list[ParsedAttachment] = []
        embedded: list[ParsedAttachment] = []

        for part in msg.walk():
            if part.is_multipart():
                continue

            disposition = part.get_content_disposition()
            filename = part.get_filename()
            is_text = part.get_content_maintype() == "text"

            if disposition == "attachment" or (disposition is None and filename and not is_text):
                target = attachments
            elif not is_text and (disposition == "inline" or part.get("Content-ID")):
                target = embedded
            else:
                continue

            payload = part.get_payload(decode=True)
            target.append(
                ParsedAttachment(
                    filename=filename or "",
                    content_type=str(part.get("Content-Type", "")),
                    content_disposition=str(part.get("Content-Disposition", "")),
                    payload=payload if isinstance(payload, bytes) else None,
                )
            )

        return attachments, embedded
