"""Entry point for the claim fetcher.

Usage::

    python -m ebc_fetch run    # poll until SIGTERM / SIGINT
    python -m ebc_fetch once   # a single fetch cycle, then exit
"""

from __future__ import annotations

import asyncio
import sys


def main() -> None:
    if len(sys.argv) < 2 or sys.argv[1] not in ("run", "once"):
        print("Usage: python -m ebc_fetch <run|once>", file=sys.stderr)
        sys.exit(1)

    from .config import FetcherConfig
    from .service import FetcherService

    service = FetcherService(FetcherConfig())

    if sys.argv[1] == "run":
        asyncio.run(service.run())
    else:
        cycle = asyncio.run(service.run_single())
        sys.exit(0 if cycle is not None else 2)


if __name__ == "__main__":
    main()
