#!/usr/bin/env python3
"""
Expired message sweep.
Run periodically by the deployment scheduler (e.g. hourly cron).
"""
import asyncio
import logging
import sys

from chatcore.config import settings
from chatcore.core.exceptions import StoreUnavailable
from chatcore.services.retention import purge_expired_messages


async def main() -> int:
    """Run one sweep."""
    logging.basicConfig(level=settings.log_level)
    try:
        await purge_expired_messages()
    except StoreUnavailable as e:
        logging.getLogger(__name__).error(f"Expiry sweep failed: {e.message}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
