"""Periodic health check for connected ROAM integrations.

For each connected tenant this pings the ROAM API with the tenant's key and
makes sure its webhook subscriptions still exist. A revoked key moves the
integration to ``error``; a dropped subscription is recreated.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import asyncpg

from connectors.roam import RoamSubscriptionManager
from src.clients.roam import CredentialRevokedError, RoamClient
from src.credentials.vault import CredentialVault, get_credential_vault, resolve_credential
from src.cron import cron
from src.database.action_audit import ActionAuditRepository, ActionStatus, ActionType
from src.database.roam_integrations import RoamIntegration, RoamIntegrationsRepository
from src.utils.best_effort import best_effort
from src.utils.config import get_control_database_url, get_roam_webhook_url
from src.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

REVOKED_REASON = "API key revoked or invalid (401 from ROAM API during health check)"


@dataclass
class HealthCheckSummary:
    checked: int = 0
    errored: int = 0
    reconnected: int = 0
    errors: list[str] = field(default_factory=list)


async def check_roam_integrations(
    *,
    integrations: RoamIntegrationsRepository,
    audit: ActionAuditRepository,
    roam_client: RoamClient,
    credential_vault: CredentialVault,
    subscriptions: RoamSubscriptionManager | None = None,
) -> HealthCheckSummary:
    """Check every connected integration. Never raises for a single tenant's failure."""
    summary = HealthCheckSummary()

    for integration in await integrations.list_connected():
        summary.checked += 1
        with LogContext(tenant_id=integration.tenant_id):
            try:
                api_key = await resolve_credential(credential_vault, integration.api_key_encrypted)
                await roam_client.list_groups(api_key=api_key)

                if subscriptions is not None and await _subscriptions_missing(
                    subscriptions, integration, api_key
                ):
                    created = await subscriptions.ensure_subscription(api_key)
                    await integrations.update_subscription_ids(
                        integration.tenant_id, [s.id for s in created]
                    )
                    summary.reconnected += 1
                    logger.info(
                        "Recreated ROAM webhook subscriptions",
                        subscription_count=len(created),
                    )

                await integrations.touch_health_check(integration.tenant_id)
            except CredentialRevokedError as e:
                summary.errored += 1
                logger.warning("ROAM credential revoked", error=str(e))
                await _mark_revoked(integrations, audit, integration.tenant_id, summary)
            except Exception as e:
                summary.errors.append(f"{integration.tenant_id}: {e}")
                logger.error("ROAM integration health check failed", error=str(e))

    logger.info(
        "ROAM integration health check complete",
        checked=summary.checked,
        errored=summary.errored,
        reconnected=summary.reconnected,
        failures=len(summary.errors),
    )
    return summary


async def _mark_revoked(
    integrations: RoamIntegrationsRepository,
    audit: ActionAuditRepository,
    tenant_id: str,
    summary: HealthCheckSummary,
) -> None:
    try:
        await integrations.mark_error(tenant_id, REVOKED_REASON)
    except Exception as e:
        summary.errors.append(f"{tenant_id}: failed to mark integration as errored: {e}")
        logger.error("Failed to mark ROAM integration as errored", error=str(e))
        return

    await best_effort(
        audit.record(
            tenant_id,
            ActionType.KEY_REVOKED,
            ActionStatus.COMPLETED,
            {"channel": "roam", "source": "health_check", "reason": REVOKED_REASON},
        ),
        operation="audit_key_revoked",
    )


async def _subscriptions_missing(
    subscriptions: RoamSubscriptionManager,
    integration: RoamIntegration,
    api_key: str | None,
) -> bool:
    if not integration.webhook_subscription_ids:
        return True
    for subscription_id in integration.webhook_subscription_ids:
        if await subscriptions.check_subscription(api_key, subscription_id) is None:
            logger.warning("ROAM webhook subscription missing", subscription_id=subscription_id)
            return True
    return False


@cron(id="roam_integration_health", crontab="*/30 * * * *", tags=["roam"])
async def roam_integration_health() -> None:
    pool = await asyncpg.create_pool(get_control_database_url(), min_size=1, max_size=2)
    roam_client = RoamClient.from_config()
    subscriptions = RoamSubscriptionManager.from_config() if get_roam_webhook_url() else None
    try:
        summary = await check_roam_integrations(
            integrations=RoamIntegrationsRepository(pool),
            audit=ActionAuditRepository(pool),
            roam_client=roam_client,
            credential_vault=get_credential_vault(),
            subscriptions=subscriptions,
        )
        if summary.errors:
            logger.warning("Some ROAM integrations could not be checked", errors=summary.errors)
    finally:
        if subscriptions is not None:
            await subscriptions.client.close()
        await roam_client.close()
        await pool.close()
