"""Repository for per-tenant ROAM integrations in the control database."""

from datetime import datetime
from enum import Enum

import asyncpg

INTEGRATION_COLUMNS = """
    tenant_id, user_id, api_key_encrypted, status, target_conversation_id,
    mention_only, meeting_summaries, webhook_subscription_ids, error_reason,
    last_health_check_at, created_at, updated_at
"""


class IntegrationStatus(str, Enum):
    """Valid integration statuses.

    ``error`` is entered automatically on credential revocation; only an explicit
    ``connect`` brings an integration back to ``connected``.
    """

    CONNECTED = "connected"
    ERROR = "error"
    DISCONNECTED = "disconnected"


class RoamIntegration:
    """ROAM integration data model."""

    def __init__(self, row: asyncpg.Record):
        self.tenant_id: str = row["tenant_id"]
        self.user_id: str | None = row["user_id"]
        self.api_key_encrypted: str | None = row["api_key_encrypted"]
        self.status: IntegrationStatus = IntegrationStatus(row["status"])
        self.target_conversation_id: str | None = row["target_conversation_id"]
        self.mention_only: bool = row["mention_only"]
        self.meeting_summaries: bool = row["meeting_summaries"]
        self.webhook_subscription_ids: list[str] = list(row["webhook_subscription_ids"] or [])
        self.error_reason: str | None = row["error_reason"]
        self.last_health_check_at: datetime | None = row["last_health_check_at"]
        self.created_at: datetime = row["created_at"]
        self.updated_at: datetime = row["updated_at"]

    @property
    def is_active(self) -> bool:
        return self.status == IntegrationStatus.CONNECTED

    def to_dict(self) -> dict:
        """Convert to dictionary. The credential is never included."""
        return {
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "status": self.status.value,
            "target_conversation_id": self.target_conversation_id,
            "mention_only": self.mention_only,
            "meeting_summaries": self.meeting_summaries,
            "webhook_subscription_ids": self.webhook_subscription_ids,
            "error_reason": self.error_reason,
            "last_health_check_at": (
                self.last_health_check_at.isoformat() if self.last_health_check_at else None
            ),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class RoamIntegrationsRepository:
    """Repository for ROAM integration CRUD operations."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_by_tenant(self, tenant_id: str) -> RoamIntegration | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {INTEGRATION_COLUMNS} FROM roam_integrations WHERE tenant_id = $1",
                tenant_id,
            )
            return RoamIntegration(row) if row else None

    async def list_connected(self) -> list[RoamIntegration]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"""
                SELECT {INTEGRATION_COLUMNS}
                FROM roam_integrations
                WHERE status = $1
                ORDER BY tenant_id
                """,
                IntegrationStatus.CONNECTED.value,
            )
            return [RoamIntegration(row) for row in rows]

    async def connect(
        self,
        tenant_id: str,
        *,
        api_key_encrypted: str,
        user_id: str | None = None,
        target_conversation_id: str | None = None,
        mention_only: bool = True,
        meeting_summaries: bool = True,
    ) -> RoamIntegration:
        """Create or re-activate an integration. The only way back to ``connected``."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                INSERT INTO roam_integrations (
                    tenant_id, user_id, api_key_encrypted, status,
                    target_conversation_id, mention_only, meeting_summaries
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT (tenant_id) DO UPDATE SET
                    user_id = EXCLUDED.user_id,
                    api_key_encrypted = EXCLUDED.api_key_encrypted,
                    status = EXCLUDED.status,
                    target_conversation_id = EXCLUDED.target_conversation_id,
                    mention_only = EXCLUDED.mention_only,
                    meeting_summaries = EXCLUDED.meeting_summaries,
                    error_reason = NULL,
                    updated_at = NOW()
                RETURNING {INTEGRATION_COLUMNS}
                """,
                tenant_id,
                user_id,
                api_key_encrypted,
                IntegrationStatus.CONNECTED.value,
                target_conversation_id,
                mention_only,
                meeting_summaries,
            )
            return RoamIntegration(row)

    async def mark_error(self, tenant_id: str, reason: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE roam_integrations
                SET status = $2, error_reason = $3, updated_at = NOW()
                WHERE tenant_id = $1
                """,
                tenant_id,
                IntegrationStatus.ERROR.value,
                reason,
            )

    async def disconnect(self, tenant_id: str) -> None:
        """Mark disconnected and drop the stored credential and subscriptions."""
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE roam_integrations
                SET status = $2,
                    api_key_encrypted = NULL,
                    webhook_subscription_ids = '{}',
                    updated_at = NOW()
                WHERE tenant_id = $1
                """,
                tenant_id,
                IntegrationStatus.DISCONNECTED.value,
            )

    async def update_subscription_ids(self, tenant_id: str, subscription_ids: list[str]) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE roam_integrations
                SET webhook_subscription_ids = $2, updated_at = NOW()
                WHERE tenant_id = $1
                """,
                tenant_id,
                subscription_ids,
            )

    async def touch_health_check(self, tenant_id: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE roam_integrations
                SET last_health_check_at = NOW()
                WHERE tenant_id = $1
                """,
                tenant_id,
            )
