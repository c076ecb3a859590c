"""Repository for ROAM conversation threads and their message history.

Inbound messages are stored with their external ROAM message id, which is
what the dispatcher deduplicates on.
"""

import json
from typing import Any
from uuid import UUID

import asyncpg


class RoamThreadsRepository:
    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_or_create_thread(self, tenant_id: str, conversation_id: str) -> UUID:
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                """
                INSERT INTO roam_conversation_threads (tenant_id, conversation_id)
                VALUES ($1, $2)
                ON CONFLICT (tenant_id, conversation_id) DO UPDATE SET updated_at = NOW()
                RETURNING id
                """,
                tenant_id,
                conversation_id,
            )

    async def has_processed(self, tenant_id: str, external_message_id: str) -> bool:
        async with self.pool.acquire() as conn:
            return bool(
                await conn.fetchval(
                    """
                    SELECT EXISTS (
                        SELECT 1 FROM roam_thread_messages
                        WHERE tenant_id = $1 AND external_message_id = $2
                    )
                    """,
                    tenant_id,
                    external_message_id,
                )
            )

    async def add_message(
        self,
        thread_id: UUID,
        tenant_id: str,
        *,
        role: str,
        content: str,
        confidence: float | None = None,
        external_message_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO roam_thread_messages (
                    thread_id, tenant_id, role, content, confidence,
                    external_message_id, metadata
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                ON CONFLICT DO NOTHING
                """,
                thread_id,
                tenant_id,
                role,
                content,
                confidence,
                external_message_id,
                json.dumps(metadata or {}, default=str),
            )

    async def recent_history(self, thread_id: UUID, limit: int = 10) -> list[dict[str, str]]:
        """Last ``limit`` messages, oldest first, shaped for the answer backend."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT role, content FROM (
                    SELECT role, content, created_at
                    FROM roam_thread_messages
                    WHERE thread_id = $1
                    ORDER BY created_at DESC
                    LIMIT $2
                ) recent
                ORDER BY created_at ASC
                """,
                thread_id,
                limit,
            )
            return [{"role": row["role"], "content": row["content"]} for row in rows]
