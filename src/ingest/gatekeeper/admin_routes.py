"""Operator endpoints: dead-letter inspection and replay, audit log, tenant integrations.

Every route requires the ``x-internal-auth`` header to match
INTERNAL_AUTH_SECRET. With no secret configured the surface is closed.
"""

import hmac
import math
from uuid import UUID

from fastapi import APIRouter, Header, HTTPException, Query, Request

from src.clients.roam import CredentialRevokedError, RoamApiError
from src.database.action_audit import ActionAuditRepository, ActionStatus, ActionType
from src.database.roam_dead_letters import RoamDeadLettersRepository
from src.database.roam_integrations import RoamIntegrationsRepository
from src.database.roam_interactions import ReviewStatus, RoamInteractionsRepository
from src.ingest.gatekeeper.models import (
    AuditListResponse,
    DeadLetterListResponse,
    DeadLetterReplayRequest,
    DeadLetterReplayResponse,
    IntegrationConnectRequest,
    Pagination,
    ReviewQueueResponse,
)
from src.ingest.gatekeeper.services.integration_lifecycle import (
    connect_integration,
    disconnect_integration,
)
from src.ingest.gatekeeper.services.roam_dispatcher import DispatchOutcome, RoamDispatcher
from src.ingest.gatekeeper.webhook_handlers import validate_tenant_id
from src.utils.best_effort import best_effort
from src.utils.config import get_internal_auth_secret
from src.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/admin/roam", tags=["admin"])

MAX_PAGE_SIZE = 100


def require_internal_auth(x_internal_auth: str | None) -> None:
    expected = get_internal_auth_secret()
    if not expected or not x_internal_auth:
        raise HTTPException(status_code=401, detail="Unauthorized")
    if not hmac.compare_digest(x_internal_auth.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


def _parse_dead_letter_id(raw: str) -> UUID:
    try:
        return UUID(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid dead letter id: {raw}") from None


@router.get("/dead-letters", response_model=DeadLetterListResponse)
async def list_dead_letters(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    tenant_id: str | None = None,
    retried: bool | None = None,
    event_type: str | None = None,
    x_internal_auth: str | None = Header(None),
):
    """List dead letters, newest first."""
    require_internal_auth(x_internal_auth)

    dead_letters: RoamDeadLettersRepository = request.app.state.roam_dead_letters
    entries, total = await dead_letters.list_entries(
        limit=limit,
        offset=(page - 1) * limit,
        tenant_id=tenant_id,
        retried=retried,
        event_type=event_type,
    )
    return DeadLetterListResponse(
        entries=[entry.to_dict() for entry in entries],
        pagination=Pagination(
            page=page,
            limit=limit,
            total=total,
            total_pages=math.ceil(total / limit) if total else 0,
        ),
    )


@router.post("/dead-letters/replay", response_model=DeadLetterReplayResponse)
async def replay_dead_letter(
    request: Request,
    body: DeadLetterReplayRequest,
    x_internal_auth: str | None = Header(None),
):
    """Re-run a dead-lettered payload through the dispatcher.

    The entry is marked retried unless the replay itself dead-letters again,
    in which case the upsert has already bumped its attempt count.
    """
    require_internal_auth(x_internal_auth)

    dead_letter_id = _parse_dead_letter_id(body.id)
    dead_letters: RoamDeadLettersRepository = request.app.state.roam_dead_letters
    audit: ActionAuditRepository = request.app.state.action_audit
    dispatcher: RoamDispatcher = request.app.state.roam_dispatcher

    entry = await dead_letters.get_by_id(dead_letter_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Dead letter not found")
    if entry.retried:
        raise HTTPException(status_code=409, detail="Dead letter has already been retried")

    with LogContext(tenant_id=entry.tenant_id, dead_letter_id=body.id):
        logger.info(
            "Replaying ROAM dead letter",
            external_message_id=entry.external_message_id,
            attempt_count=entry.attempt_count,
        )
        result = await dispatcher.dispatch_event(
            entry.tenant_id,
            entry.payload,
            fallback_message_id=entry.external_message_id,
        )

        if result.outcome != DispatchOutcome.DEAD_LETTERED:
            await dead_letters.mark_retried(dead_letter_id)

        await best_effort(
            audit.record(
                entry.tenant_id,
                ActionType.DLQ_REPLAY,
                ActionStatus.COMPLETED
                if result.outcome in (DispatchOutcome.DELIVERED, DispatchOutcome.FILTERED)
                else ActionStatus.FAILED,
                {
                    "channel": "roam",
                    "dead_letter_id": body.id,
                    "external_message_id": entry.external_message_id,
                    "outcome": result.outcome.value,
                    "detail": result.detail,
                },
            ),
            operation="audit_dlq_replay",
        )

    return DeadLetterReplayResponse(
        success=result.outcome in (DispatchOutcome.DELIVERED, DispatchOutcome.FILTERED),
        id=body.id,
        outcome=result.outcome.value,
        status_code=result.status_code,
        detail=result.detail,
    )


@router.get("/audit/{tenant_id}", response_model=AuditListResponse)
async def list_audit_records(
    request: Request,
    tenant_id: str,
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    x_internal_auth: str | None = Header(None),
):
    require_internal_auth(x_internal_auth)
    validate_tenant_id(tenant_id)

    audit: ActionAuditRepository = request.app.state.action_audit
    records = await audit.list_for_tenant(tenant_id, limit=limit)
    return AuditListResponse(tenant_id=tenant_id, records=records)


@router.get("/review-queue/{tenant_id}", response_model=ReviewQueueResponse)
async def list_review_queue(
    request: Request,
    tenant_id: str,
    status: str = Query("pending", pattern="^(pending|resolved|all)$"),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    x_internal_auth: str | None = Header(None),
):
    """List escalations and negative-feedback reviews opened from ROAM buttons."""
    require_internal_auth(x_internal_auth)
    validate_tenant_id(tenant_id)

    interactions: RoamInteractionsRepository = request.app.state.roam_interactions
    items = await interactions.list_review_items(
        tenant_id, status=None if status == "all" else ReviewStatus(status), limit=limit
    )
    return ReviewQueueResponse(tenant_id=tenant_id, items=items)


@router.get("/integrations/{tenant_id}")
async def get_integration(
    request: Request,
    tenant_id: str,
    x_internal_auth: str | None = Header(None),
):
    require_internal_auth(x_internal_auth)
    validate_tenant_id(tenant_id)

    integrations: RoamIntegrationsRepository = request.app.state.roam_integrations
    integration = await integrations.get_by_tenant(tenant_id)
    if integration is None:
        raise HTTPException(status_code=404, detail="Integration not found")
    return integration.to_dict()


@router.put("/integrations/{tenant_id}")
async def put_integration(
    request: Request,
    tenant_id: str,
    body: IntegrationConnectRequest,
    x_internal_auth: str | None = Header(None),
):
    """Connect or reconnect a tenant. A key ROAM rejects is a 400 and nothing is stored."""
    require_internal_auth(x_internal_auth)
    validate_tenant_id(tenant_id)

    with LogContext(tenant_id=tenant_id):
        try:
            integration = await connect_integration(
                tenant_id,
                api_key=body.api_key,
                integrations=request.app.state.roam_integrations,
                roam_client=request.app.state.roam_client,
                credential_vault=request.app.state.credential_vault,
                subscriptions=request.app.state.roam_subscriptions,
                user_id=body.user_id,
                target_conversation_id=body.target_conversation_id,
                mention_only=body.mention_only,
                meeting_summaries=body.meeting_summaries,
            )
        except CredentialRevokedError:
            raise HTTPException(status_code=400, detail="ROAM rejected the API key") from None
        except RoamApiError as e:
            raise HTTPException(status_code=502, detail=f"ROAM request failed: {e}") from None

    return integration.to_dict()


@router.post("/integrations/{tenant_id}/disconnect")
async def post_disconnect_integration(
    request: Request,
    tenant_id: str,
    x_internal_auth: str | None = Header(None),
):
    require_internal_auth(x_internal_auth)
    validate_tenant_id(tenant_id)

    with LogContext(tenant_id=tenant_id):
        found = await disconnect_integration(
            tenant_id,
            integrations=request.app.state.roam_integrations,
            credential_vault=request.app.state.credential_vault,
            subscriptions=request.app.state.roam_subscriptions,
        )
    if not found:
        raise HTTPException(status_code=404, detail="Integration not found")
    return {"success": True, "tenant_id": tenant_id, "status": "disconnected"}
