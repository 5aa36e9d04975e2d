"""Stopping the poll loop cleanly on SIGTERM / SIGINT."""

from __future__ import annotations

import asyncio
import signal

import structlog

logger = structlog.get_logger()

STOP_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    """Set *shutdown_event* on SIGTERM or SIGINT.

    A cycle already in progress finishes (and acknowledges its batch)
    before the poll loop notices the event and exits. A second signal
    is only logged.
    """
    loop = asyncio.get_running_loop()

    def _on_signal(sig: signal.Signals) -> None:
        if shutdown_event.is_set():
            logger.warning("shutdown_already_requested", signal=sig.name)
            return
        logger.info("shutdown_requested", signal=sig.name)
        shutdown_event.set()

    for sig in STOP_SIGNALS:
        loop.add_signal_handler(sig, _on_signal, sig)


async def sleep_or_shutdown(shutdown_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to *seconds*; True if shutdown was requested meanwhile."""
    try:
        await asyncio.wait_for(shutdown_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True
