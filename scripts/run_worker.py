"""
Run the scheduler and worker pool without the HTTP API.

Stops cleanly on SIGINT/SIGTERM, letting in-flight jobs finish.
"""

import asyncio
import logging
import signal
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.config import settings
from core.database import async_session_maker, engine
from core.logging import setup_logging
from jobs.runtime import BackgroundServices
from jobs.store import JobStore

setup_logging()
logger = logging.getLogger(__name__)


async def run_worker():
    store = JobStore(async_session_maker)
    background = BackgroundServices(store, async_session_maker)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    logger.info(
        f"Starting worker process ({settings.WORKER_CONCURRENCY} worker(s), "
        f"tick every {settings.CHECK_INTERVAL_SECONDS}s)"
    )
    await background.start()
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down worker process")
        await background.stop()
        await engine.dispose()


if __name__ == "__main__":
    try:
        asyncio.run(run_worker())
    except KeyboardInterrupt:
        pass
