"""EBC fetch: turns rally bonus-claim emails into ScoreMaster claims.

Public API re-exported here for convenience::

    from ebc_fetch import FetcherConfig, FetcherService
"""

from .claim_time import ClaimTimeResolver, calc_claim_date
from .config import (
    ClaimsConfig,
    DatabaseConfig,
    FetcherConfig,
    ImapConfig,
    PhotoConfig,
    ResponderConfig,
    RetryConfig,
    SmtpConfig,
)
from .controller import FetchCycle, FetchRecoveryController
from .errors import (
    AcknowledgeFailure,
    AttachmentFailure,
    AuthorizationRejection,
    ClaimIngestError,
    FetchStreamFailure,
    ParseRejection,
    PersistenceFailure,
    PhotoRejection,
)
from .imap_client import AsyncImapClient
from .interface import FetchedMessage, MailboxInterface
from .logging import setup_logging
from .models import ClaimOutcome, Disposition, ParsedClaim, RallyWindow, ServiceStatus
from .parser import MimeParser, ParsedAttachment, ParsedEmail
from .photos import AttachmentProcessor
from .pipeline import ClaimPipeline
from .recorder import ClaimRecorder
from .responder import DiagnosticResponder
from .service import FetcherService
from .store import ScoreMasterStore
from .subject import SubjectParser
from .validator import EntrantBonusValidator

__all__ = [
    "AcknowledgeFailure",
    "AsyncImapClient",
    "AttachmentFailure",
    "AttachmentProcessor",
    "AuthorizationRejection",
    "ClaimIngestError",
    "ClaimOutcome",
    "ClaimPipeline",
    "ClaimRecorder",
    "ClaimTimeResolver",
    "ClaimsConfig",
    "DatabaseConfig",
    "DiagnosticResponder",
    "Disposition",
    "EntrantBonusValidator",
    "FetchCycle",
    "FetchRecoveryController",
    "FetchStreamFailure",
    "FetchedMessage",
    "FetcherConfig",
    "FetcherService",
    "ImapConfig",
    "MailboxInterface",
    "MimeParser",
    "ParseRejection",
    "ParsedAttachment",
    "ParsedClaim",
    "ParsedEmail",
    "PersistenceFailure",
    "PhotoConfig",
    "PhotoRejection",
    "RallyWindow",
    "ResponderConfig",
    "RetryConfig",
    "ScoreMasterStore",
    "ServiceStatus",
    "SmtpConfig",
    "SubjectParser",
    "calc_claim_date",
    "setup_logging",
]
