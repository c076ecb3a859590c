"""Webhook handler functions for gatekeeper service."""

from fastapi import HTTPException, Request

from connectors.roam import RoamWebhookVerifier, extract_roam_webhook_metadata
from connectors.roam.roam_block_kit import parse_block_action
from connectors.roam.roam_events import MalformedEventError
from connectors.roam.roam_webhook_handler import WEBHOOK_ID_HEADER
from src.ingest.gatekeeper.models import InteractivityResponse, WebhookResponse
from src.ingest.gatekeeper.services.interaction_recorder import InteractionRecorder
from src.ingest.gatekeeper.services.roam_dispatcher import DispatchOutcome, RoamDispatcher
from src.ingest.gatekeeper.verification import WebhookVerifier
from src.utils.best_effort import BestEffortTasks
from src.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


def validate_tenant_id(tenant_id: str) -> None:
    """Validate tenant ID format and raise HTTPException if invalid."""
    if not tenant_id or not tenant_id.replace("-", "").replace("_", "").isalnum():
        raise HTTPException(
            status_code=400,
            detail=f"Invalid tenant ID format: {tenant_id}. Must contain only alphanumeric characters, hyphens, and underscores",
        )


def _is_validation_disabled(request: Request) -> bool:
    """Check if webhook validation is disabled via app state."""
    return getattr(request.app.state, "dangerously_disable_webhook_validation", False)


async def _verify_and_raise(
    verifier: WebhookVerifier,
    headers: dict[str, str],
    body: bytes,
    tenant_id: str,
    source_type: str,
    request: Request,
) -> None:
    """Verify webhook and raise HTTPException on failure.

    Configuration problems (no usable signing secret) are the operator's fault
    and map to 400. Everything else the verifier rejects, whether missing
    headers, a stale timestamp or a bad signature, is an authentication
    failure and maps to 401.

    Raises:
        HTTPException: If verification fails
    """
    if _is_validation_disabled(request):
        logger.warning(
            f"⚠️ Skipping {source_type} webhook verification (DANGEROUSLY_DISABLE_WEBHOOK_VALIDATION=true)",
        )
        return

    result = await verifier.verify(headers, body, tenant_id)

    if not result.success:
        logger.warning(f"Failed to verify {source_type} webhook: {result.error}")

        error_msg = result.error or "Verification failed"
        status_code = 400 if "not configured" in error_msg.lower() else 401
        raise HTTPException(status_code=status_code, detail=error_msg)


async def handle_roam_webhook(request: Request, tenant_id: str) -> WebhookResponse:
    """Verify a ROAM delivery and run it through the dispatcher.

    Filtered, delivered and dead-lettered events all acknowledge with 200 so
    the platform stops redelivering. A revoked credential surfaces as a 500,
    letting the platform's own retry policy apply.
    """
    validate_tenant_id(tenant_id)

    body = await request.body()
    headers = dict(request.headers)

    logger.info("Received roam webhook", payload_size=len(body))

    # Nothing below may run before this returns
    await _verify_and_raise(RoamWebhookVerifier(), headers, body, tenant_id, "roam", request)

    webhook_metadata = extract_roam_webhook_metadata(headers, body.decode("utf-8", errors="replace"))
    tracking_context = {f"webhook_meta_{key}": value for key, value in webhook_metadata.items()}

    with LogContext(tenant_id=tenant_id, **tracking_context):
        logger.info("Webhook verification successful for roam")

        dispatcher: RoamDispatcher = request.app.state.roam_dispatcher
        result = await dispatcher.handle(tenant_id, body, headers.get(WEBHOOK_ID_HEADER, ""))

        if result.status_code >= 500:
            raise HTTPException(
                status_code=result.status_code,
                detail=result.detail or "Failed to process roam webhook",
            )

        message = (
            f"Event {result.outcome.value}: {result.detail}"
            if result.outcome == DispatchOutcome.FILTERED and result.detail
            else f"Event {result.outcome.value}"
        )
        logger.info(
            "Processed roam webhook",
            outcome=result.outcome.value,
            detail=result.detail,
        )
        return WebhookResponse(
            success=True,
            message=message,
            tenant_id=tenant_id,
            message_id=result.external_message_id,
            outcome=result.outcome.value,
        )


async def handle_roam_interactivity(request: Request, tenant_id: str) -> InteractivityResponse:
    """Verify a Block Kit button click and acknowledge it immediately.

    ROAM expects an answer within a few seconds, so recording and routing the
    click happen on a background task after the 200 is returned.
    """
    validate_tenant_id(tenant_id)

    body = await request.body()
    headers = dict(request.headers)

    await _verify_and_raise(
        RoamWebhookVerifier(), headers, body, tenant_id, "roam interactivity", request
    )

    try:
        action = parse_block_action(body)
    except MalformedEventError as e:
        logger.warning("Rejected ROAM interactivity payload", error=str(e))
        raise HTTPException(status_code=400, detail=str(e)) from e

    recorder: InteractionRecorder = request.app.state.roam_interaction_recorder
    background: BestEffortTasks = request.app.state.background
    background.spawn(recorder.process(tenant_id, action), operation="roam_interaction")

    logger.info("Accepted ROAM interaction", action_id=action.action_id)
    return InteractivityResponse(ok=True)
