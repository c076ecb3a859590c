"""Append-only audit log of actions the bridge took on behalf of a tenant."""

import json
from enum import Enum
from typing import Any

import asyncpg


class ActionType(str, Enum):
    QUERY = "query"
    MEETING_SUMMARY = "meeting-summary"
    FILTERED = "filtered"
    KEY_REVOKED = "key-revoked"
    DLQ_WRITE = "dlq-write"
    DLQ_REPLAY = "dlq-replay"
    FEEDBACK_REVIEW = "feedback-review"
    ESCALATION = "escalation"
    THREAD_RESOLVED = "thread-resolved"
    COMPLIANCE_EXPORT = "compliance-export"


class ActionStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"
    # Some conversations of a compliance export failed to store
    PARTIAL = "partial"


class ActionAuditRepository:
    """Insert-only on purpose: there is no update or delete method."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def record(
        self,
        tenant_id: str,
        action_type: ActionType,
        status: ActionStatus,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO action_audit_records (tenant_id, action_type, status, metadata)
                VALUES ($1, $2, $3, $4)
                """,
                tenant_id,
                action_type.value,
                status.value,
                json.dumps(metadata or {}, default=str),
            )

    async def list_for_tenant(self, tenant_id: str, limit: int = 50) -> list[dict[str, Any]]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT id, tenant_id, action_type, status, metadata, created_at
                FROM action_audit_records
                WHERE tenant_id = $1
                ORDER BY created_at DESC
                LIMIT $2
                """,
                tenant_id,
                limit,
            )
            return [
                {
                    "id": str(row["id"]),
                    "tenant_id": row["tenant_id"],
                    "action_type": row["action_type"],
                    "status": row["status"],
                    "metadata": json.loads(row["metadata"]) if row["metadata"] else {},
                    "created_at": row["created_at"].isoformat(),
                }
                for row in rows
            ]
