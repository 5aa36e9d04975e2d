"""Per-message claim pipeline.

parse → resolve time → validate → photos → record (or reply in test mode).
Anything that stops a message becoming a claim is raised as a
:class:`~ebc_fetch.errors.ClaimIngestError`; the controller decides what
that means for the message's flags.
"""

from __future__ import annotations

from datetime import datetime

import structlog
from sqlalchemy.exc import SQLAlchemyError

from .claim_time import ClaimTimeResolver
from .config import ClaimsConfig, PhotoConfig
from .errors import (
    AttachmentFailure,
    AuthorizationRejection,
    ParseRejection,
    PersistenceFailure,
    PhotoRejection,
)
from .interface import FetchedMessage
from .models import ClaimOutcome, Disposition, RallyWindow
from .parser import MimeParser, ParsedEmail, earliest_transit_time
from .photos import AttachmentProcessor
from .recorder import ClaimRecorder
from .responder import DiagnosticResponder
from .store import ScoreMasterStore
from .subject import SubjectParser
from .validator import EntrantBonusValidator

logger = structlog.get_logger()


class ClaimPipeline:
    """Processes one message at a time against a fixed rally window."""

    def __init__(
        self,
        store: ScoreMasterStore,
        claims: ClaimsConfig,
        photos: PhotoConfig,
        window: RallyWindow,
        *,
        monitored_address: str,
        responder: DiagnosticResponder | None = None,
    ) -> None:
        self._claims = claims
        self._window = window
        self._responder = responder
        self._mime = MimeParser()
        self._subjects = SubjectParser(claims.subject_pattern, claims.strict_pattern, window.tz)
        self._times = ClaimTimeResolver(store, window)
        self._validator = EntrantBonusValidator(
            store,
            monitored_address=monitored_address,
            match_email=claims.match_email,
            test_mode=claims.test_mode,
        )
        self._photos = AttachmentProcessor(store, photos, window.tz, test_mode=claims.test_mode)
        self._recorder = ClaimRecorder(store, window.tz)

    @property
    def test_mode(self) -> bool:
        return self._claims.test_mode

    async def process(self, message: FetchedMessage) -> Disposition:
        """Run one message through the pipeline.

        Returns ACCEPTED (claim row written) or REPLIED (test mode);
        every other result is raised.
        """
        try:
            parsed = self._mime.parse(message.raw_bytes)
        except (ValueError, LookupError, TypeError) as exc:
            raise ParseRejection(f"unreadable message: {exc}", uid=message.uid) from exc

        received_at = message.internal_date or parsed.date or datetime.now(self._window.tz)
        sent_at = parsed.date or received_at

        try:
            outcome = await self.evaluate(message.uid, parsed, sent_at)
            outcome.first_seen = earliest_transit_time(received_at, parsed.received)

            if self.test_mode:
                outcome.photos = await self._photos.process(
                    parsed, outcome.claim.entrant_id, outcome.claim.bonus_id, message.uid
                )
                if self._responder is not None:
                    await self._responder.send(outcome, self._window)
                return Disposition.REPLIED

            self._gate(outcome)

            outcome.photos = await self._photos.process(
                parsed, outcome.claim.entrant_id, outcome.claim.bonus_id, message.uid
            )
            if not outcome.photos.ok:
                await self._photos.discard(outcome.photos, message.uid)
                reason = f"{outcome.photos.count} photo(s), storage failed"
                if outcome.photos.rejected:
                    raise PhotoRejection(reason, uid=message.uid)
                raise AttachmentFailure(reason, uid=message.uid)

            try:
                await self._recorder.record(outcome, sent_at, received_at)
            except PersistenceFailure:
                await self._photos.discard(outcome.photos, message.uid)
                raise
        except SQLAlchemyError as exc:
            raise PersistenceFailure(f"database unavailable: {exc}", uid=message.uid) from exc
        return Disposition.ACCEPTED

    async def evaluate(self, uid: int, parsed: ParsedEmail, sent_at: datetime) -> ClaimOutcome:
        """Parse and validate without side effects."""
        subject = parsed.subject
        claim = self._subjects.parse(subject)
        from_body = False
        if not subject and self._claims.allow_body and parsed.body_text:
            body_claim = self._subjects.parse(parsed.body_text)
            if body_claim.ok:
                subject, claim, from_body = parsed.body_text, body_claim, True

        log = logger.bind(uid=uid)
        log.debug("claim_parsed", subject=subject, ok=claim.ok, from_body=from_body)

        outcome = ClaimOutcome(
            uid=uid,
            subject=subject,
            sender=parsed.from_address,
            claim=claim,
            subject_from_body=from_body,
        )
        if claim.time_valid or claim.claim_time is not None:
            outcome.claim_time = await self._times.resolve(claim, sent_at)

        check = await self._validator.check_entrant(claim.entrant_id, parsed.from_address)
        outcome.entrant_known = check.known
        outcome.address_authorized = check.authorized
        outcome.bonus_description = await self._validator.check_bonus(claim.bonus_id)

        if self._claims.check_strict:
            outcome.strict_ok = self._subjects.parse(subject, strict=True).ok
        return outcome

    def _gate(self, outcome: ClaimOutcome) -> None:
        """Live-mode acceptance rules; raises a permanent rejection."""
        if not outcome.claim.ok or outcome.claim_time is None:
            raise ParseRejection(f"not a claim: {outcome.subject!r}", uid=outcome.uid)
        if not outcome.entrant_known:
            raise AuthorizationRejection(
                f"unknown entrant {outcome.claim.entrant_id}", uid=outcome.uid
            )
        if not outcome.address_authorized:
            raise AuthorizationRejection(
                f"{outcome.sender} may not claim for entrant {outcome.claim.entrant_id}",
                uid=outcome.uid,
            )
        if not outcome.bonus_known:
            raise AuthorizationRejection(f"unknown bonus {outcome.claim.bonus_id}", uid=outcome.uid)
