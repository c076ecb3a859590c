"""Connect and disconnect a tenant's ROAM integration.

``connect_integration`` is the only path that moves an integration back to
``connected``. It validates the key against ROAM before anything is stored.
"""

from __future__ import annotations

from connectors.roam import RoamSubscriptionManager
from src.clients.roam import RoamClient
from src.credentials.vault import CredentialVault, resolve_credential
from src.database.roam_integrations import RoamIntegration, RoamIntegrationsRepository
from src.utils.best_effort import best_effort
from src.utils.logging import get_logger

logger = get_logger(__name__)


async def connect_integration(
    tenant_id: str,
    *,
    api_key: str,
    integrations: RoamIntegrationsRepository,
    roam_client: RoamClient,
    credential_vault: CredentialVault,
    subscriptions: RoamSubscriptionManager | None = None,
    user_id: str | None = None,
    target_conversation_id: str | None = None,
    mention_only: bool = True,
    meeting_summaries: bool = True,
) -> RoamIntegration:
    """Validate ``api_key``, store it encrypted and subscribe the webhook URL.

    Raises:
        CredentialRevokedError: ROAM rejected the key; nothing is stored
        RoamApiError: ROAM could not be reached or refused the subscription
    """
    await roam_client.list_groups(api_key=api_key)

    integration = await integrations.connect(
        tenant_id,
        api_key_encrypted=await credential_vault.encrypt(api_key),
        user_id=user_id,
        target_conversation_id=target_conversation_id,
        mention_only=mention_only,
        meeting_summaries=meeting_summaries,
    )

    if subscriptions is not None:
        created = await subscriptions.ensure_subscription(api_key)
        subscription_ids = [s.id for s in created]
        await integrations.update_subscription_ids(tenant_id, subscription_ids)
        integration.webhook_subscription_ids = subscription_ids

    logger.info(
        "ROAM integration connected",
        tenant_id=tenant_id,
        subscription_count=len(integration.webhook_subscription_ids),
    )
    return integration


async def disconnect_integration(
    tenant_id: str,
    *,
    integrations: RoamIntegrationsRepository,
    credential_vault: CredentialVault,
    subscriptions: RoamSubscriptionManager | None = None,
) -> bool:
    """Remove platform subscriptions (best effort) and mark the integration disconnected.

    Returns False when the tenant has no integration.
    """
    integration = await integrations.get_by_tenant(tenant_id)
    if integration is None:
        return False

    if subscriptions is not None and integration.webhook_subscription_ids:
        api_key = await best_effort(
            resolve_credential(credential_vault, integration.api_key_encrypted),
            operation="resolve_credential",
            tenant_id=tenant_id,
        )
        for subscription_id in integration.webhook_subscription_ids:
            await best_effort(
                subscriptions.delete_subscription(api_key, subscription_id),
                operation="delete_subscription",
                tenant_id=tenant_id,
                subscription_id=subscription_id,
            )

    await integrations.disconnect(tenant_id)
    logger.info("ROAM integration disconnected", tenant_id=tenant_id)
    return True
