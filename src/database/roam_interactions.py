"""Repository for ROAM button clicks and the review queue they open.

Clicks are insert-only. Review items are opened by negative feedback or an
escalation and closed, all at once per query, by ``mark_resolved``.
"""

import json
from enum import Enum
from typing import Any
from uuid import UUID

import asyncpg

REVIEW_ITEM_COLUMNS = """
    id, tenant_id, kind, status, query_id, conversation_id, thread_timestamp,
    requested_by, requested_by_email, resolved_by, resolved_at, created_at
"""


class ReviewKind(str, Enum):
    FEEDBACK_REVIEW = "feedback_review"
    ESCALATION = "escalation"


class ReviewStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"


def _review_item(row: asyncpg.Record) -> dict[str, Any]:
    return {
        "id": str(row["id"]),
        "tenant_id": row["tenant_id"],
        "kind": row["kind"],
        "status": row["status"],
        "query_id": row["query_id"],
        "conversation_id": row["conversation_id"],
        "thread_timestamp": row["thread_timestamp"],
        "requested_by": row["requested_by"],
        "requested_by_email": row["requested_by_email"],
        "resolved_by": row["resolved_by"],
        "resolved_at": row["resolved_at"].isoformat() if row["resolved_at"] else None,
        "created_at": row["created_at"].isoformat(),
    }


class RoamInteractionsRepository:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def record(
        self,
        tenant_id: str,
        *,
        action_id: str,
        query_id: str | None,
        value: str | None,
        user_id: str | None,
        user_email: str | None,
        conversation_id: str | None,
        payload: dict[str, Any],
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO roam_interactions (
                    tenant_id, action_id, query_id, value, user_id, user_email,
                    conversation_id, payload
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                """,
                tenant_id,
                action_id,
                query_id,
                value,
                user_id,
                user_email,
                conversation_id,
                json.dumps(payload, default=str),
            )

    async def open_review_item(
        self,
        tenant_id: str,
        *,
        kind: ReviewKind,
        query_id: str,
        conversation_id: str | None = None,
        thread_timestamp: str | None = None,
        requested_by: str | None = None,
        requested_by_email: str | None = None,
    ) -> UUID:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                """
                INSERT INTO roam_review_items (
                    tenant_id, kind, query_id, conversation_id, thread_timestamp,
                    requested_by, requested_by_email
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING id
                """,
                tenant_id,
                kind.value,
                query_id,
                conversation_id,
                thread_timestamp,
                requested_by,
                requested_by_email,
            )

    async def resolve_review_items(self, tenant_id: str, query_id: str, resolved_by: str) -> int:
        """Close every pending item for the query. Returns how many were closed."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                UPDATE roam_review_items
                SET status = 'resolved', resolved_by = $3, resolved_at = NOW()
                WHERE tenant_id = $1 AND query_id = $2 AND status = 'pending'
                RETURNING id
                """,
                tenant_id,
                query_id,
                resolved_by,
            )
            return len(rows)

    async def list_review_items(
        self, tenant_id: str, *, status: ReviewStatus | None = ReviewStatus.PENDING, limit: int = 50
    ) -> list[dict[str, Any]]:
        async with self.pool.acquire() as conn:
            if status is None:
                rows = await conn.fetch(
                    f"""
                    SELECT {REVIEW_ITEM_COLUMNS} FROM roam_review_items
                    WHERE tenant_id = $1
                    ORDER BY created_at DESC
                    LIMIT $2
                    """,
                    tenant_id,
                    limit,
                )
            else:
                rows = await conn.fetch(
                    f"""
                    SELECT {REVIEW_ITEM_COLUMNS} FROM roam_review_items
                    WHERE tenant_id = $1 AND status = $2
                    ORDER BY created_at DESC
                    LIMIT $3
                    """,
                    tenant_id,
                    status.value,
                    limit,
                )
            return [_review_item(row) for row in rows]
