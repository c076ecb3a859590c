"""
Cron worker entrypoint.

Runs the registered cron jobs (currently the ROAM integration health check)
on an AsyncIOScheduler until SIGINT/SIGTERM.

    python -m src.cron.worker
"""

from __future__ import annotations

import asyncio
import contextlib
import signal

import newrelic.agent
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from src.cron import discover_and_register_jobs, setup_scheduler
from src.utils.config import get_bridge_environment, get_config_value
from src.utils.logging import get_logger

logger = get_logger(__name__)


def build_scheduler() -> AsyncIOScheduler:
    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,
            "misfire_grace_time": int(get_config_value("CRON_MISFIRE_GRACE_SECONDS", 300)),
        },
    )
    discover_and_register_jobs()
    setup_scheduler(scheduler)
    return scheduler


async def main() -> None:
    newrelic.agent.initialize(environment=get_bridge_environment())
    # No web transactions here, so register explicitly
    newrelic.agent.register_application()

    stop_event = asyncio.Event()

    def _handle_signal() -> None:
        logger.info("Received termination signal; stopping cron worker")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, _handle_signal)

    scheduler = build_scheduler()
    scheduler.start()
    logger.info("APScheduler started", job_count=len(scheduler.get_jobs()))

    try:
        await stop_event.wait()
    finally:
        scheduler.shutdown(wait=False)
        logger.info("APScheduler shut down")


if __name__ == "__main__":
    asyncio.run(main())
