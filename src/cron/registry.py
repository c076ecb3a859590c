from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from src.utils.config import get_config_value_str
from src.utils.logging import get_logger

logger = get_logger(__name__)

CronFunc = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class CronJobDef:
    id: str
    func: CronFunc
    crontab: str | None = None  # five fields, e.g. "*/30 * * * *"
    name: str | None = None
    tags: list[str] = field(default_factory=list)
    max_instances: int = 1
    misfire_grace_time: int = 300
    coalesce: bool = True
    enabled: bool = True


# Filled in by @cron as job modules are imported
CRON_REGISTRY: dict[str, CronJobDef] = {}


def register_job(job_def: CronJobDef) -> None:
    if job_def.id in CRON_REGISTRY:
        raise ValueError(f"Duplicate cron id: {job_def.id}")
    CRON_REGISTRY[job_def.id] = job_def


def load_runtime_overrides() -> dict[str, str]:
    """Per-job schedule overrides, e.g. CRON_OVERRIDES_JSON='{"roam_integration_health": "*/5 * * * *"}'."""
    raw = (get_config_value_str("CRON_OVERRIDES_JSON") or "").strip()
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning("Ignoring unparseable CRON_OVERRIDES_JSON", error=str(e))
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring CRON_OVERRIDES_JSON that is not an object")
        return {}
    return {str(k): str(v) for k, v in data.items()}


def filter_jobs_by_tags(jobs: dict[str, CronJobDef]) -> dict[str, CronJobDef]:
    """Keep jobs sharing a tag with CRON_TAGS (comma-separated); unset keeps everything."""
    wanted = {
        tag.strip() for tag in (get_config_value_str("CRON_TAGS") or "").split(",") if tag.strip()
    }
    if not wanted:
        return jobs
    return {job_id: job for job_id, job in jobs.items() if wanted.intersection(job.tags)}
