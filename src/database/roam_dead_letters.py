"""Repository for ROAM events that could not be processed."""

import json
from datetime import datetime
from typing import Any
from uuid import UUID

import asyncpg

DEAD_LETTER_COLUMNS = """
    id, tenant_id, external_message_id, event_type, payload, error_message,
    error_status, attempt_count, retried, retried_at, created_at, updated_at
"""


class DeadLetter:
    """Dead letter entry data model."""

    def __init__(self, row: asyncpg.Record):
        self.id: UUID = row["id"]
        self.tenant_id: str = row["tenant_id"]
        self.external_message_id: str = row["external_message_id"]
        self.event_type: str = row["event_type"]
        payload = row["payload"]
        self.payload: dict[str, Any] = json.loads(payload) if isinstance(payload, str) else payload
        self.error_message: str = row["error_message"]
        self.error_status: int | None = row["error_status"]
        self.attempt_count: int = row["attempt_count"]
        self.retried: bool = row["retried"]
        self.retried_at: datetime | None = row["retried_at"]
        self.created_at: datetime = row["created_at"]
        self.updated_at: datetime = row["updated_at"]

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "tenant_id": self.tenant_id,
            "external_message_id": self.external_message_id,
            "event_type": self.event_type,
            "payload": self.payload,
            "error_message": self.error_message,
            "error_status": self.error_status,
            "attempt_count": self.attempt_count,
            "retried": self.retried,
            "retried_at": self.retried_at.isoformat() if self.retried_at else None,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class RoamDeadLettersRepository:
    """Dead letters are unique per external message id; repeat failures bump attempt_count."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def upsert(
        self,
        *,
        tenant_id: str,
        external_message_id: str,
        event_type: str,
        payload: dict[str, Any],
        error_message: str,
        error_status: int | None = None,
    ) -> int:
        """Insert or bump the entry for ``external_message_id``; returns the attempt count."""
        async with self.pool.acquire() as conn:
            return await conn.fetchval(
                """
                INSERT INTO roam_dead_letters (
                    tenant_id, external_message_id, event_type, payload,
                    error_message, error_status
                )
                VALUES ($1, $2, $3, $4, $5, $6)
                ON CONFLICT (external_message_id) DO UPDATE SET
                    tenant_id = EXCLUDED.tenant_id,
                    event_type = EXCLUDED.event_type,
                    attempt_count = roam_dead_letters.attempt_count + 1,
                    error_message = EXCLUDED.error_message,
                    error_status = EXCLUDED.error_status,
                    payload = EXCLUDED.payload,
                    retried = FALSE,
                    updated_at = NOW()
                RETURNING attempt_count
                """,
                tenant_id,
                external_message_id,
                event_type,
                json.dumps(payload, default=str),
                error_message,
                error_status,
            )

    async def get_by_id(self, dead_letter_id: UUID) -> DeadLetter | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {DEAD_LETTER_COLUMNS} FROM roam_dead_letters WHERE id = $1",
                dead_letter_id,
            )
            return DeadLetter(row) if row else None

    async def list_entries(
        self,
        *,
        limit: int,
        offset: int,
        tenant_id: str | None = None,
        retried: bool | None = None,
        event_type: str | None = None,
    ) -> tuple[list[DeadLetter], int]:
        """Page through entries newest first. Returns (entries, total matching)."""
        where, params = self._filters(tenant_id=tenant_id, retried=retried, event_type=event_type)
        async with self.pool.acquire() as conn:
            total = await conn.fetchval(
                f"SELECT COUNT(*) FROM roam_dead_letters {where}",
                *params,
            )
            rows = await conn.fetch(
                f"""
                SELECT {DEAD_LETTER_COLUMNS}
                FROM roam_dead_letters
                {where}
                ORDER BY created_at DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                """,
                *params,
                limit,
                offset,
            )
            return [DeadLetter(row) for row in rows], int(total or 0)

    async def mark_retried(self, dead_letter_id: UUID) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                UPDATE roam_dead_letters
                SET retried = TRUE, retried_at = NOW(), updated_at = NOW()
                WHERE id = $1
                """,
                dead_letter_id,
            )

    @staticmethod
    def _filters(
        *, tenant_id: str | None, retried: bool | None, event_type: str | None
    ) -> tuple[str, list[Any]]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("tenant_id", tenant_id),
            ("retried", retried),
            ("event_type", event_type),
        ):
            if value is not None:
                params.append(value)
                clauses.append(f"{column} = ${len(params)}")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return where, params
