"""Dead-letter writer for ROAM events that failed processing.

Writing a dead letter is the last thing that happens on a failure path, so
it must never raise: persistence errors are logged and swallowed. Every call
is paired with exactly one ``dlq-write`` audit record.
"""

from typing import Any

from src.database.action_audit import ActionAuditRepository, ActionStatus, ActionType
from src.database.roam_dead_letters import RoamDeadLettersRepository
from src.utils.best_effort import best_effort
from src.utils.logging import get_logger

logger = get_logger(__name__)

MAX_ERROR_MESSAGE_CHARS = 2000


class DeadLetterWriter:
    def __init__(self, dead_letters: RoamDeadLettersRepository, audit: ActionAuditRepository):
        self.dead_letters = dead_letters
        self.audit = audit

    async def write_dead_letter(
        self,
        *,
        tenant_id: str,
        external_message_id: str,
        event_type: str,
        payload: dict[str, Any],
        error_message: str,
        error_status: int | None = None,
    ) -> int | None:
        """Record the failure. Returns the attempt count, or None if the write itself failed."""
        error_message = error_message[:MAX_ERROR_MESSAGE_CHARS]
        attempt_count: int | None = None

        try:
            attempt_count = await self.dead_letters.upsert(
                tenant_id=tenant_id,
                external_message_id=external_message_id,
                event_type=event_type,
                payload=payload,
                error_message=error_message,
                error_status=error_status,
            )
            logger.warning(
                "ROAM event dead-lettered",
                external_message_id=external_message_id,
                event_type=event_type,
                attempt_count=attempt_count,
                error=error_message,
            )
        except Exception as e:
            logger.error(
                "Failed to write ROAM dead letter",
                external_message_id=external_message_id,
                event_type=event_type,
                original_error=error_message,
                error=str(e),
            )

        await best_effort(
            self.audit.record(
                tenant_id,
                ActionType.DLQ_WRITE,
                ActionStatus.COMPLETED if attempt_count is not None else ActionStatus.FAILED,
                {
                    "external_message_id": external_message_id,
                    "event_type": event_type,
                    "error": error_message[:500],
                    "error_status": error_status,
                    "attempt_count": attempt_count,
                },
            ),
            operation="audit_dlq_write",
            external_message_id=external_message_id,
        )
        return attempt_count
