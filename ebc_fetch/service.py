"""FetcherService: wires up the store, mailbox and health server and runs
the poll loop."""

from __future__ import annotations

import asyncio
import imaplib
import time
from datetime import UTC, datetime

import structlog
import uvicorn
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from .config import ClaimsConfig, FetcherConfig
from .controller import FetchCycle, FetchRecoveryController
from .health import create_health_app
from .imap_client import AsyncImapClient
from .interface import MailboxInterface
from .logging import setup_logging
from .models import RallyWindow, ServiceStatus
from .photos import check_converter
from .pipeline import ClaimPipeline
from .responder import DiagnosticResponder
from .shutdown import install_signal_handlers, sleep_or_shutdown
from .store import RallyConfigError, ScoreMasterStore

logger = structlog.get_logger()


class FetcherService:
    """Single-mailbox claim fetcher.

    ``run()`` starts the following concurrently via
    :class:`asyncio.TaskGroup`:

    * FastAPI health server
    * The poll loop (one cycle, sleep, re-read claim settings, repeat)

    Cycles never overlap and no cycle error stops the loop.
    """

    def __init__(
        self,
        config: FetcherConfig,
        *,
        mailbox: MailboxInterface | None = None,
        store: ScoreMasterStore | None = None,
    ) -> None:
        self.config = config
        self.status: ServiceStatus = ServiceStatus.STARTING
        self.start_time: float = time.monotonic()

        self._store = store or ScoreMasterStore(config.database)
        self._mailbox = mailbox or AsyncImapClient(config.imap)
        self._controller = FetchRecoveryController(self._mailbox, config.imap, config.retry)
        self._shutdown_event = asyncio.Event()

        self._cycles: int = 0
        self._claims_accepted: int = 0
        self._last_cycle_time: datetime | None = None
        self._last_error: str | None = None

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def refresh_config(self) -> None:
        """Re-read claim settings from the environment.

        A bad value is logged and the previous settings are kept.
        """
        try:
            claims = ClaimsConfig()
        except ValidationError as exc:
            logger.error("config_reload_rejected", error=str(exc))
            return
        if claims.test_mode != self.config.claims.test_mode:
            logger.info("test_mode_changed", test_mode=claims.test_mode)
        if claims.dont_run != self.config.claims.dont_run:
            logger.info("dont_run_changed", dont_run=claims.dont_run)
        self.config.claims = claims

    def build_pipeline(self, window: RallyWindow) -> ClaimPipeline:
        claims = self.config.claims
        responder = None
        if claims.test_mode:
            responder = DiagnosticResponder(
                self.config.smtp,
                self.config.responder,
                sender=self.config.imap.username,
                max_extra_photos=claims.max_extra_photos,
            )
        return ClaimPipeline(
            self._store,
            claims,
            self.config.photos,
            window,
            monitored_address=self.config.imap.username,
            responder=responder,
        )

    # ------------------------------------------------------------------
    # Poll loop
    # ------------------------------------------------------------------

    async def run_once(self) -> FetchCycle | None:
        """One complete cycle; None when nothing was attempted."""
        if not self.config.monitoring_ok():
            if self.status != ServiceStatus.SUSPENDED:
                logger.warning(
                    "monitoring_suspended",
                    dont_run=self.config.claims.dont_run,
                    imap_configured=bool(self.config.imap.host and self.config.imap.username),
                )
            self.status = ServiceStatus.SUSPENDED
            return None

        try:
            window = await self._store.load_rally_window()
        except (RallyConfigError, SQLAlchemyError) as exc:
            self._degrade("rally_window_unavailable", exc)
            return None

        try:
            await self._mailbox.connect()
        except (imaplib.IMAP4.error, OSError) as exc:
            self._degrade("imap_connect_failed", exc)
            await self._mailbox.disconnect()
            return None

        try:
            cycle = await self._controller.run_cycle(self.build_pipeline(window))
        finally:
            await self._mailbox.disconnect()

        self._cycles += 1
        self._claims_accepted += len(cycle.accepted)
        self._last_cycle_time = datetime.now(UTC)
        self._last_error = None
        self.status = ServiceStatus.RUNNING
        return cycle

    def _degrade(self, event: str, exc: BaseException) -> None:
        self._last_error = str(exc)
        self.status = ServiceStatus.DEGRADED
        logger.error(event, error=str(exc))

    async def _run_poll_loop(self) -> None:
        logger.info(
            "poll_loop_started",
            service=self.config.name,
            test_mode=self.config.claims.test_mode,
            interval=self.config.imap.poll_interval_seconds,
        )
        try:
            while not self._shutdown_event.is_set():
                try:
                    await self.run_once()
                except Exception as exc:
                    self._last_error = str(exc)
                    self.status = ServiceStatus.DEGRADED
                    logger.exception("cycle_failed")
                if await sleep_or_shutdown(
                    self._shutdown_event, self.config.imap.poll_interval_seconds
                ):
                    break
                self.refresh_config()
        finally:
            self._shutdown_event.set()
            logger.info("poll_loop_stopped", service=self.config.name, cycles=self._cycles)

    # ------------------------------------------------------------------
    # Health server
    # ------------------------------------------------------------------

    async def _run_health_server(self) -> None:
        """Start the FastAPI health server and shut it down on signal."""
        app = create_health_app(self)
        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=self.config.health_port,
            log_level="warning",
        )
        server = uvicorn.Server(config)

        serve_task = asyncio.create_task(server.serve())
        await self._shutdown_event.wait()
        server.should_exit = True
        await serve_task

    async def health_check(self) -> dict[str, object]:
        return {
            "imap_host": self.config.imap.host,
            "imap_mailbox": self.config.imap.mailbox,
            "test_mode": self.config.claims.test_mode,
            "cycles": self._cycles,
            "claims_accepted": self._claims_accepted,
            "last_cycle_time": (
                self._last_cycle_time.isoformat() if self._last_cycle_time else None
            ),
            "last_error": self._last_error,
        }

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Poll until SIGTERM / SIGINT::

            asyncio.run(FetcherService(FetcherConfig()).run())
        """
        setup_logging(
            json=self.config.log_json, level=self.config.log_level, service=self.config.name
        )
        install_signal_handlers(self._shutdown_event)
        self.start_time = time.monotonic()

        logger.info("fetcher_starting", service=self.config.name)
        check_converter(self.config.photos)
        await self._store.start()

        try:
            async with asyncio.TaskGroup() as tg:
                tg.create_task(self._run_poll_loop())
                tg.create_task(self._run_health_server())
        except* Exception:
            logger.exception("fetcher_task_group_error", service=self.config.name)
        finally:
            self.status = ServiceStatus.STOPPING
            await self._store.stop()
            self.status = ServiceStatus.STOPPED
            logger.info("fetcher_stopped", service=self.config.name)

    async def run_single(self) -> FetchCycle | None:
        """Run exactly one cycle (``python -m ebc_fetch once``)."""
        setup_logging(
            json=self.config.log_json, level=self.config.log_level, service=self.config.name
        )
        check_converter(self.config.photos)
        await self._store.start()
        try:
            return await self.run_once()
        finally:
            await self._store.stop()
