from __future__ import annotations

from src.utils.config import get_config_value

from .registry import CronFunc, CronJobDef, register_job


def cron(
    *,
    id: str,
    crontab: str | None = None,
    name: str | None = None,
    tags: list[str] | None = None,
    enabled_env: str | None = None,  # job only runs when this env var is truthy
    max_instances: int = 1,
    misfire_grace_time: int = 300,
    coalesce: bool = True,
):
    """
    Register an async, zero-argument function as a cron job.

    Example:
        @cron(id="roam_integration_health", crontab="*/30 * * * *", tags=["roam"])
        async def roam_integration_health(): ...
    """

    def _wrap(func: CronFunc) -> CronFunc:
        register_job(
            CronJobDef(
                id=id,
                func=func,
                crontab=crontab,
                name=name or id,
                tags=tags or [],
                max_instances=max_instances,
                misfire_grace_time=misfire_grace_time,
                coalesce=coalesce,
                enabled=bool(get_config_value(enabled_env, False)) if enabled_env else True,
            )
        )
        return func

    return _wrap
