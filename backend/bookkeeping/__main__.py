"""
Entry point for the bookkeeping server

    python -m bookkeeping

Exits 0 after a signal-driven shutdown and 1 when startup fails.
"""
import asyncio
import logging
import os
import sys
from typing import Optional

from bookkeeping.exceptions import FatalStartupError
from bookkeeping.lifecycle import ServerLifecycle
from bookkeeping.utils.structured_logging import setup_structured_logging

logger = logging.getLogger(__name__)


async def main(lifecycle: Optional[ServerLifecycle] = None) -> int:
    lifecycle = lifecycle or ServerLifecycle()
    try:
        return await lifecycle.serve()
    except FatalStartupError as e:
        logger.critical(f"Server cannot start: {e}", exc_info=True)
        return 1


def run() -> None:
    # Console logging until configuration is resolved
    setup_structured_logging(level=os.getenv("LOG_LEVEL", "INFO"), log_to_file=False)
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
