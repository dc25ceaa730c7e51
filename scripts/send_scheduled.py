#!/usr/bin/env python3
"""
Scheduled message sender.
Run frequently by the deployment scheduler (e.g. every minute).
"""
import asyncio
import logging
import sys

from chatcore.config import settings
from chatcore.core.exceptions import StoreUnavailable
from chatcore.services.retention import process_due_scheduled


async def main() -> int:
    """Send everything that is due."""
    logging.basicConfig(level=settings.log_level)
    try:
        await process_due_scheduled()
    except StoreUnavailable as e:
        logging.getLogger(__name__).error(f"Scheduled send run failed: {e.message}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
