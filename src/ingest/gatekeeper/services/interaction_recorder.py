"""Records ROAM button clicks and routes them to the review queue.

Routing by action id:

- ``feedback_positive``: recorded only
- ``feedback_negative``: recorded, opens a ``feedback_review`` item
- ``escalate``: recorded, opens an ``escalation`` item
- ``mark_resolved``: recorded, closes every pending item for the query
- ``view_source``: recorded only; URL buttons normally never post back
- anything else: recorded with a warning

The click itself is always written first, even for unknown action ids.
"""

from __future__ import annotations

from typing import Any

from connectors.roam.roam_block_kit import BlockAction, InteractionAction
from src.database.action_audit import ActionAuditRepository, ActionStatus, ActionType
from src.database.roam_interactions import ReviewKind, RoamInteractionsRepository
from src.utils.best_effort import best_effort
from src.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

UNKNOWN_USER = "unknown"

_REVIEW_KINDS = {
    InteractionAction.FEEDBACK_NEGATIVE: (ReviewKind.FEEDBACK_REVIEW, ActionType.FEEDBACK_REVIEW),
    InteractionAction.ESCALATE: (ReviewKind.ESCALATION, ActionType.ESCALATION),
}


class InteractionRecorder:
    def __init__(
        self, *, interactions: RoamInteractionsRepository, audit: ActionAuditRepository
    ) -> None:
        self.interactions = interactions
        self.audit = audit

    async def process(self, tenant_id: str, action: BlockAction) -> None:
        with LogContext(tenant_id=tenant_id, action_id=action.action_id, query_id=action.query_id):
            logger.info(
                "Processing ROAM interaction",
                user_id=action.user_id or UNKNOWN_USER,
                conversation_id=action.conversation_id,
            )

            await best_effort(
                self.interactions.record(
                    tenant_id,
                    action_id=action.action_id,
                    query_id=action.query_id,
                    value=action.value,
                    user_id=action.user_id,
                    user_email=action.user_email,
                    conversation_id=action.conversation_id,
                    payload=action.model_dump(mode="json", by_alias=True, exclude_none=True),
                ),
                operation="roam_interaction_write",
            )

            known = action.known_action
            if known is None:
                logger.warning("Unknown ROAM interaction action, recorded only")
                return

            if known in (InteractionAction.FEEDBACK_POSITIVE, InteractionAction.VIEW_SOURCE):
                logger.info("ROAM interaction recorded", action=known.value)
                return

            if not action.query_id:
                logger.warning("ROAM interaction has no query id, nothing to route")
                return

            if known == InteractionAction.MARK_RESOLVED:
                await self._resolve(tenant_id, action, action.query_id)
            else:
                await self._open_review(tenant_id, action, action.query_id, known)

    async def _open_review(
        self,
        tenant_id: str,
        action: BlockAction,
        query_id: str,
        known: InteractionAction,
    ) -> None:
        kind, action_type = _REVIEW_KINDS[known]
        review_item_id = await self.interactions.open_review_item(
            tenant_id,
            kind=kind,
            query_id=query_id,
            conversation_id=action.conversation_id,
            thread_timestamp=action.thread_timestamp,
            requested_by=action.user_id,
            requested_by_email=action.user_email,
        )
        logger.info("Opened ROAM review item", kind=kind.value, review_item_id=str(review_item_id))
        await self._audit(
            tenant_id,
            action_type,
            {
                "query_id": query_id,
                "review_item_id": str(review_item_id),
                "conversation_id": action.conversation_id,
                "user_id": action.user_id or UNKNOWN_USER,
            },
        )

    async def _resolve(self, tenant_id: str, action: BlockAction, query_id: str) -> None:
        resolved_by = action.user_email or action.user_id or UNKNOWN_USER
        resolved_count = await self.interactions.resolve_review_items(
            tenant_id, query_id, resolved_by
        )
        logger.info("Resolved ROAM thread", resolved_count=resolved_count)
        await self._audit(
            tenant_id,
            ActionType.THREAD_RESOLVED,
            {
                "query_id": query_id,
                "conversation_id": action.conversation_id,
                "resolved_by": resolved_by,
                "resolved_count": resolved_count,
            },
        )

    async def _audit(
        self, tenant_id: str, action_type: ActionType, metadata: dict[str, Any]
    ) -> None:
        await best_effort(
            self.audit.record(
                tenant_id, action_type, ActionStatus.COMPLETED, {"channel": "roam", **metadata}
            ),
            operation=f"audit_{action_type.value}",
        )
