from __future__ import annotations

import newrelic.agent
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from src.utils.logging import get_logger

from .registry import CRON_REGISTRY, CronFunc, filter_jobs_by_tags, load_runtime_overrides

logger = get_logger(__name__)


def setup_scheduler(scheduler: AsyncIOScheduler) -> int:
    """Add every enabled, registered job to ``scheduler``. Returns how many were added.

    Call once, after discover_and_register_jobs().
    """
    overrides = load_runtime_overrides()
    jobs = filter_jobs_by_tags(CRON_REGISTRY)

    def _job_listener(event: JobExecutionEvent) -> None:
        job = scheduler.get_job(event.job_id)
        job_name = job.name if job else event.job_id
        if event.exception:
            logger.error("Cron job failed", job_name=job_name, error=str(event.exception))
        else:
            logger.info(
                "Cron job succeeded",
                job_name=job_name,
                scheduled_run=str(event.scheduled_run_time),
            )

    scheduler.add_listener(_job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    registered = 0
    for job_id, job in jobs.items():
        if not job.enabled:
            logger.info("Cron job disabled (env-gated)", job_id=job_id)
            continue

        crontab = overrides.get(job_id, job.crontab)
        if not crontab:
            logger.warning("Cron job missing crontab; skipping", job_id=job_id)
            continue

        scheduler.add_job(
            _as_background_task(job.func, job.name or job_id),
            trigger=make_trigger(crontab),
            id=job_id,
            name=job.name,
            max_instances=job.max_instances,
            misfire_grace_time=job.misfire_grace_time,
            coalesce=job.coalesce,
            replace_existing=True,
        )
        registered += 1

    logger.info(f"APScheduler: registered {registered} cron job(s)")
    return registered


def _as_background_task(func: CronFunc, name: str) -> CronFunc:
    """Report each run to New Relic as a background transaction named after the job."""

    @newrelic.agent.background_task(name=f"CronWorker/{name}")
    async def _run() -> None:
        try:
            await func()
        except Exception:
            newrelic.agent.notice_error()
            raise

    return _run


def make_trigger(crontab: str) -> CronTrigger:
    parts = crontab.split()
    if len(parts) == 5:
        return CronTrigger.from_crontab(crontab, timezone="UTC")
    if len(parts) == 6:
        # Leading seconds field, which from_crontab does not accept
        second, minute, hour, day, month, day_of_week = parts
        return CronTrigger(
            second=second,
            minute=minute,
            hour=hour,
            day=day,
            month=month,
            day_of_week=day_of_week,
            timezone="UTC",
        )
    raise ValueError(f"Invalid crontab '{crontab}': expected 5 or 6 fields")
