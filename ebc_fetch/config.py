"""Fetcher configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Claim settings are re-read once per sleep interval, so flipping
``CLAIMS_TEST_MODE`` or ``CLAIMS_DONT_RUN`` takes effect at the next cycle.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings

from .subject import DEFAULT_LENIENT_PATTERN, DEFAULT_STRICT_PATTERN, compile_claim_pattern


class ImapConfig(BaseSettings):
    """IMAP server connection and search settings."""

    model_config = {"env_prefix": "IMAP_"}

    host: str = Field(default="", description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use SSL/TLS connection")
    username: str = Field(default="", description="IMAP login username (the monitored address)")
    password: SecretStr = Field(default=SecretStr(""), description="IMAP login password")
    mailbox: str = Field(default="INBOX", description="IMAP mailbox/folder to poll")
    poll_interval_seconds: float = Field(
        default=20.0,
        description="Seconds to sleep between poll cycles",
    )
    select_flags: list[str] = Field(
        default_factory=lambda: ["\\Seen", "\\Flagged"],
        description="Only messages carrying none of these flags are offered",
    )
    not_before: datetime | None = Field(
        default=None,
        description="Ignore messages sent before this date",
    )
    not_after: datetime | None = Field(
        default=None,
        description="Ignore messages sent on or after this date",
    )
    max_fetch: int = Field(
        default=25,
        description="Maximum messages fetched per cycle (0 = unlimited)",
    )


class ClaimsConfig(BaseSettings):
    """Claim parsing and acceptance policy."""

    model_config = {"env_prefix": "CLAIMS_"}

    subject_pattern: str = Field(
        default=DEFAULT_LENIENT_PATTERN,
        description="Lenient claim regex with named groups entrant, bonus, odo, time[, extra]",
    )
    strict_pattern: str = Field(
        default=DEFAULT_STRICT_PATTERN,
        description="Strict claim regex used for the secondary format check",
    )
    allow_body: bool = Field(
        default=False,
        description="Parse the text body when the Subject is empty",
    )
    match_email: bool = Field(
        default=True,
        description="Require the sender to be a registered address for the entrant",
    )
    test_mode: bool = Field(
        default=False,
        description="Reply with a diagnostic report instead of recording claims",
    )
    dont_run: bool = Field(default=False, description="Suspend monitoring")
    check_strict: bool = Field(
        default=False,
        description="Record whether each subject also satisfies the strict pattern",
    )
    max_extra_photos: int = Field(
        default=0,
        description="Photos allowed beyond the first before a test reply flags the claim",
    )

    @field_validator("subject_pattern", "strict_pattern")
    @classmethod
    def _check_pattern(cls, value: str) -> str:
        compile_claim_pattern(value)
        return value


class PhotoConfig(BaseSettings):
    """Where photos land and how non-JPEG images are converted."""

    model_config = {"env_prefix": "PHOTOS_"}

    root: str = Field(default="sm", description="ScoreMaster installation directory")
    folder: str = Field(default="images/ebcimg", description="Image folder relative to root")
    standard_extension: str = Field(default=".jpg", description="Extension stored as-is")
    convert_heic: bool = Field(default=False, description="Convert non-standard images")
    converter: str = Field(default="heic2jpg", description="Converter executable (input, output)")


class DatabaseConfig(BaseSettings):
    """ScoreMaster database settings."""

    model_config = {"env_prefix": "DATABASE_"}

    url: str = Field(
        default="sqlite+aiosqlite:///sm/ScoreMaster.db",
        description="Async SQLAlchemy URL of the ScoreMaster database",
    )


class SmtpConfig(BaseSettings):
    """Outbound mail settings for test-mode replies."""

    model_config = {"env_prefix": "SMTP_"}

    host: str = Field(default="", description="SMTP server hostname")
    port: int = Field(default=587, description="SMTP server port")
    username: str = Field(default="", description="SMTP login username")
    password: SecretStr = Field(default=SecretStr(""), description="SMTP login password")
    timeout_seconds: float = Field(default=10.0, description="Connect/send timeout")


class ResponderConfig(BaseSettings):
    """Wording of the test-mode diagnostic reply."""

    model_config = {"env_prefix": "RESPONDER_"}

    subject: str = Field(default="", description="Fixed reply subject (blank = verdict)")
    good: str = Field(default="Claim accepted", description="Verdict for a good claim")
    bad: str = Field(default="Claim has problems", description="Verdict for a bad claim")
    advice: str = Field(default="", description="Paragraph appended to every reply")
    literal: str = Field(default="TEST MODE", description="Banner shown beside the rally title")
    bcc: str = Field(default="", description="Copy every reply to this address")
    good_email: str = Field(default="", description="Note when the sender is registered")
    bad_email: str = Field(default="", description="Note when the sender is not registered")


class RetryConfig(BaseSettings):
    """Retry / backoff settings for mailbox flag updates, driven by Tenacity."""

    model_config = {"env_prefix": "RETRY_"}

    max_attempts: int = Field(default=10, description="Maximum flag-update attempts")
    initial_wait_seconds: float = Field(default=1.0, description="Initial backoff wait")
    max_wait_seconds: float = Field(default=30.0, description="Maximum backoff wait")
    multiplier: float = Field(default=2.0, description="Exponential backoff multiplier")


class FetcherConfig(BaseSettings):
    """Root configuration for a fetcher instance.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "FETCHER_"}

    name: str = Field(default="ebcfetch", description="Service name used in logs and health")
    health_port: int = Field(default=8080, description="Port for the health endpoints")
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=True, description="JSON log lines (False = console)")

    imap: ImapConfig = Field(default_factory=ImapConfig)
    claims: ClaimsConfig = Field(default_factory=ClaimsConfig)
    photos: PhotoConfig = Field(default_factory=PhotoConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    smtp: SmtpConfig = Field(default_factory=SmtpConfig)
    responder: ResponderConfig = Field(default_factory=ResponderConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    def monitoring_ok(self) -> bool:
        """True when the mailbox can and should be polled."""
        return (
            not self.claims.dont_run
            and bool(self.imap.host)
            and bool(self.imap.username)
            and bool(self.imap.password.get_secret_value())
        )
