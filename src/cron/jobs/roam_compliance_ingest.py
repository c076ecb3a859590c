"""Daily ingest of ROAM compliance exports into the document vault.

For each connected tenant this fetches the previous UTC day's NDJSON export,
groups the sent text messages by chat and stores every chat with at least
``MIN_MESSAGES_PER_CONVERSATION`` messages as one plain-text vault document.
Indexing then happens on the vault's side.

A failed export fetch ends that tenant's run; a failed document write only
skips that chat. Either way the tenant gets one ``compliance-export`` audit
record, ``partial`` when anything failed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta

import asyncpg

from connectors.roam.roam_compliance import (
    extract_text_messages,
    format_conversation_document,
    group_by_chat,
    parse_compliance_ndjson,
    participants,
)
from src.clients.roam import RoamClient
from src.clients.vault_storage import VaultStorageClient
from src.credentials.vault import CredentialVault, get_credential_vault, resolve_credential
from src.cron import cron
from src.database.action_audit import ActionAuditRepository, ActionStatus, ActionType
from src.database.roam_integrations import RoamIntegrationsRepository
from src.utils.best_effort import best_effort
from src.utils.config import get_control_database_url, get_roam_default_user_id
from src.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

MIN_MESSAGES_PER_CONVERSATION = 3
COMPLIANCE_SOURCE = "roam_compliance"
YESTERDAY = "yesterday"


@dataclass
class ComplianceIngestResult:
    tenant_id: str
    export_date: date
    conversations_ingested: int = 0
    messages_processed: int = 0
    documents_created: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def resolve_export_date(value: str | None = None, *, today: date | None = None) -> date:
    """``"yesterday"`` (the default) or an ISO ``YYYY-MM-DD`` date, in UTC.

    Raises:
        ValueError: If the value is neither.
    """
    if not value or value == YESTERDAY:
        return (today or datetime.now(UTC).date()) - timedelta(days=1)
    return date.fromisoformat(value)


def conversation_filename(export_date: date, conversation_id: str) -> str:
    return f"roam-{export_date.isoformat()}-{conversation_id[:8]}.txt"


async def ingest_daily_compliance(
    *,
    tenant_id: str,
    user_id: str,
    export_date: date,
    roam_client: RoamClient,
    vault_storage: VaultStorageClient,
    audit: ActionAuditRepository,
    api_key: str | None = None,
) -> ComplianceIngestResult:
    """Ingest one tenant's export for one day. Never raises for fetch or storage failures."""
    result = ComplianceIngestResult(tenant_id=tenant_id, export_date=export_date)
    logger.info("Starting ROAM compliance ingest", export_date=export_date.isoformat())

    try:
        ndjson = await roam_client.fetch_compliance_export(export_date.isoformat(), api_key=api_key)
    except Exception as e:
        logger.error("ROAM compliance export fetch failed", error=str(e))
        result.errors.append(f"Fetch failed: {e}")
        await _audit(audit, result)
        return result

    messages = extract_text_messages(parse_compliance_ndjson(ndjson))
    result.messages_processed = len(messages)

    for conversation_id, conversation in group_by_chat(messages).items():
        if len(conversation) < MIN_MESSAGES_PER_CONVERSATION:
            continue
        try:
            document_id = await vault_storage.create_document(
                tenant_id=tenant_id,
                user_id=user_id,
                filename=conversation_filename(export_date, conversation_id),
                content=format_conversation_document(conversation, export_date, conversation_id),
                metadata={
                    "source": COMPLIANCE_SOURCE,
                    "date": export_date.isoformat(),
                    "conversation_id": conversation_id,
                    "message_count": len(conversation),
                    "participants": participants(conversation),
                },
            )
        except Exception as e:
            logger.warning(
                "Failed to store ROAM conversation", conversation_id=conversation_id, error=str(e)
            )
            result.errors.append(f"Chat {conversation_id}: {e}")
            continue

        result.documents_created.append(document_id)
        result.conversations_ingested += 1

    logger.info(
        "ROAM compliance ingest complete",
        conversations_ingested=result.conversations_ingested,
        messages_processed=result.messages_processed,
        failures=len(result.errors),
    )
    await _audit(audit, result)
    return result


async def ingest_connected_tenants(
    *,
    integrations: RoamIntegrationsRepository,
    audit: ActionAuditRepository,
    roam_client: RoamClient,
    vault_storage: VaultStorageClient,
    credential_vault: CredentialVault,
    export_date: date,
    default_user_id: str | None = None,
) -> list[ComplianceIngestResult]:
    results: list[ComplianceIngestResult] = []

    for integration in await integrations.list_connected():
        with LogContext(tenant_id=integration.tenant_id):
            result = ComplianceIngestResult(tenant_id=integration.tenant_id, export_date=export_date)
            user_id = integration.user_id or default_user_id
            if not user_id:
                result.errors.append("No vault user configured for tenant")
                logger.warning("Skipping ROAM compliance ingest: no vault user configured")
                results.append(result)
                continue

            try:
                api_key = await resolve_credential(credential_vault, integration.api_key_encrypted)
            except Exception as e:
                result.errors.append(f"Credential unavailable: {e}")
                logger.error("Could not resolve ROAM credential", error=str(e))
                results.append(result)
                continue

            results.append(
                await ingest_daily_compliance(
                    tenant_id=integration.tenant_id,
                    user_id=user_id,
                    export_date=export_date,
                    roam_client=roam_client,
                    vault_storage=vault_storage,
                    audit=audit,
                    api_key=api_key,
                )
            )

    return results


async def _audit(audit: ActionAuditRepository, result: ComplianceIngestResult) -> None:
    await best_effort(
        audit.record(
            result.tenant_id,
            ActionType.COMPLIANCE_EXPORT,
            ActionStatus.PARTIAL if result.errors else ActionStatus.COMPLETED,
            {
                "channel": "roam",
                "date": result.export_date.isoformat(),
                "conversations_ingested": result.conversations_ingested,
                "messages_processed": result.messages_processed,
                "documents_created": len(result.documents_created),
                "error_count": len(result.errors),
            },
        ),
        operation="audit_compliance_export",
    )


@cron(
    id="roam_compliance_ingest",
    crontab="0 6 * * *",
    tags=["roam"],
    enabled_env="ROAM_COMPLIANCE_INGEST_ENABLED",
)
async def roam_compliance_ingest() -> None:
    pool = await asyncpg.create_pool(get_control_database_url(), min_size=1, max_size=2)
    roam_client = RoamClient.from_config()
    vault_storage = VaultStorageClient()
    try:
        results = await ingest_connected_tenants(
            integrations=RoamIntegrationsRepository(pool),
            audit=ActionAuditRepository(pool),
            roam_client=roam_client,
            vault_storage=vault_storage,
            credential_vault=get_credential_vault(),
            export_date=resolve_export_date(),
            default_user_id=get_roam_default_user_id(),
        )
        failed = {r.tenant_id: r.errors for r in results if r.errors}
        if failed:
            logger.warning("Some ROAM compliance ingests had failures", errors=failed)
    finally:
        await vault_storage.close()
        await roam_client.close()
        await pool.close()
