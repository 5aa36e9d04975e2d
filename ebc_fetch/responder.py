"""Test-mode diagnostic reply.

While a rally is in test mode every claim email is answered with a short
HTML report showing how each field was understood, so entrants can check
their phone's claim format before the event starts.
"""

from __future__ import annotations

import asyncio
import email.utils
import html
import smtplib
import ssl
from email.message import EmailMessage

import structlog

from .config import ResponderConfig, SmtpConfig
from .models import ClaimOutcome, RallyWindow

logger = structlog.get_logger()

LABEL_STYLE = "font-weight: bold; padding-right: 1em;"
YES_STYLE = "color: green;"
NO_STYLE = "color: red;"


def yesno(value: bool) -> str:
    if value:
        return f' <span style="{YES_STYLE}">&#x2714;</span>'
    return f' <span style="{NO_STYLE}">&#x2718;</span>'


class DiagnosticResponder:
    """Renders and sends the per-claim test report."""

    def __init__(
        self,
        smtp: SmtpConfig,
        wording: ResponderConfig,
        *,
        sender: str,
        max_extra_photos: int = 0,
    ) -> None:
        self._smtp = smtp
        self._wording = wording
        self._sender = sender
        self._max_photos = 1 + max_extra_photos

    def is_good(self, outcome: ClaimOutcome) -> bool:
        return outcome.claim_is_good and 0 < outcome.photo_present <= self._max_photos

    def subject_for(self, outcome: ClaimOutcome) -> str:
        if self._wording.subject:
            return self._wording.subject
        verdict = self._wording.good if self.is_good(outcome) else self._wording.bad
        return f"EBC test: {verdict}"

    def render(self, outcome: ClaimOutcome, window: RallyWindow) -> str:
        w = self._wording
        claim = outcome.claim
        rows: list[tuple[str, str]] = []

        subject = html.escape(outcome.subject)
        if outcome.subject_from_body:
            subject += " &#x2611;"
        rows.append(("Subject", subject + yesno(claim.ok)))

        rows.append(("Entrant#", str(claim.entrant_id) + yesno(outcome.entrant_known)))
        if outcome.entrant_known:
            note = w.good_email if outcome.address_authorized else w.bad_email
            rows.append(
                ("Email = Entrant Email", yesno(outcome.address_authorized) + " " + html.escape(note))
            )

        bonus = html.escape(claim.bonus_id)
        if outcome.bonus_known:
            bonus += " - " + html.escape(outcome.bonus_description)
        rows.append(("Bonus", bonus + yesno(outcome.bonus_known)))

        rows.append(("Odo", str(claim.odometer) + yesno(claim.odometer_valid)))

        when = yesno(claim.time_valid)
        if outcome.claim_time is not None:
            stamp = outcome.claim_time
            when += f" {stamp.strftime('%a %b %d %H:%M:%S %Z %Y')} / {stamp.isoformat()}"
        rows.append((f"hhmm '{html.escape(claim.hhmm)}'", when))

        if claim.extra:
            rows.append(("&#x270D;", html.escape(claim.extra)))

        count = outcome.photo_present
        photo = f" x {count} " if count > 1 else ""
        photo += yesno(0 < count <= self._max_photos)
        if count > self._max_photos:
            photo += f"  (max = {self._max_photos})"
        rows.append(("Photo", photo))

        verdict = w.good if self.is_good(outcome) else w.bad
        parts = [
            f"<p>{html.escape(verdict)} [ {html.escape(window.title)} "
            f"(TZ={window.tz.key} {window.offset}) {html.escape(w.literal)} ]</p>",
            "<table>",
        ]
        for label, value in rows:
            parts.append(f'<tr><td style="{LABEL_STYLE}">{label}</td><td>{value}</td></tr>')
        parts.append("</table>")
        if w.advice:
            parts.append(f"<p>{w.advice}</p>")
        return "".join(parts)

    def build_message(self, outcome: ClaimOutcome, window: RallyWindow) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = self._sender
        msg["To"] = outcome.sender
        if self._wording.bcc:
            msg["Bcc"] = self._wording.bcc
        msg["Subject"] = self.subject_for(outcome)
        msg["Date"] = email.utils.formatdate(localtime=True)
        msg["Message-ID"] = email.utils.make_msgid()
        msg.set_content("This report needs an HTML-capable mail reader.")
        msg.add_alternative(self.render(outcome, window), subtype="html")
        return msg

    async def send(self, outcome: ClaimOutcome, window: RallyWindow) -> bool:
        """Send the report; failures are logged, never raised."""
        if not self._smtp.host or not self._smtp.password.get_secret_value():
            logger.error("test_reply_not_configured", uid=outcome.uid)
            return False

        msg = self.build_message(outcome, window)
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("test_reply_failed", uid=outcome.uid, to=outcome.sender, error=str(exc))
            return False

        logger.info("test_reply_sent", uid=outcome.uid, to=outcome.sender, good=self.is_good(outcome))
        return True

    def _send_sync(self, msg: EmailMessage) -> None:
        cfg = self._smtp
        context = ssl.create_default_context()
        if cfg.port == 465:
            smtp: smtplib.SMTP = smtplib.SMTP_SSL(
                cfg.host, cfg.port, context=context, timeout=cfg.timeout_seconds
            )
        else:
            smtp = smtplib.SMTP(cfg.host, cfg.port, timeout=cfg.timeout_seconds)
        with smtp:
            if cfg.port != 465:
                smtp.starttls(context=context)
            smtp.login(cfg.username, cfg.password.get_secret_value())
            smtp.send_message(msg)
