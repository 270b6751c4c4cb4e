"""
Run one monitor check synchronously and print the result.

Usage:
    python scripts/check_monitor.py <monitor_id> [--force-notify-first]
"""

import argparse
import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import async_session_maker, engine
from core.logging import setup_logging
from jobs.handlers import default_summary_service
from monitoring.fetcher import HTTPFetcher
from monitoring.notifier import NotificationService
from monitoring.service import EngineConfig, MonitorService

setup_logging()
logger = logging.getLogger(__name__)


async def check_monitor(monitor_id: int, notify_on_first: bool) -> int:
    config = EngineConfig.from_settings()
    if notify_on_first:
        config = config.copy(update={"notify_on_first_snapshot": True})

    try:
        async with async_session_maker() as session:
            service = MonitorService(
                session,
                fetcher=HTTPFetcher(),
                summary_service=default_summary_service(),
                notification_service=NotificationService(async_session_maker),
                config=config,
            )
            monitor = await service.repo.get_monitor(monitor_id)
            if monitor is None:
                logger.error(f"Monitor {monitor_id} not found")
                return 1

            result = await service.check_monitor(monitor)
    finally:
        await engine.dispose()

    status = "OK" if result.success else "FAILED"
    print(f"[{status}] {monitor.name}: {result.message}")
    if result.change_ids:
        print(f"Changes: {', '.join(str(i) for i in result.change_ids)}")
    return 0 if result.success else 1


def main():
    parser = argparse.ArgumentParser(description="Check a single monitor now")
    parser.add_argument("monitor_id", type=int)
    parser.add_argument(
        "--force-notify-first",
        action="store_true",
        help="Create and send a change even when this is the monitor's first snapshot",
    )
    args = parser.parse_args()
    sys.exit(asyncio.run(check_monitor(args.monitor_id, args.force_notify_first)))


if __name__ == "__main__":
    main()
