"""Route definitions for gatekeeper service."""

from fastapi import APIRouter, HTTPException, Request

from src.ingest.gatekeeper.models import InteractivityResponse, WebhookResponse
from src.ingest.gatekeeper.webhook_handlers import handle_roam_interactivity, handle_roam_webhook
from src.utils.config import get_roam_default_tenant_id
from src.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

router = APIRouter()


# Single-tenant deployments register this URL with ROAM
@router.post("/webhooks/roam", response_model=WebhookResponse)
async def roam_webhook(request: Request):
    """Process ROAM webhook for the configured default tenant."""
    tenant_id = get_roam_default_tenant_id()
    if not tenant_id:
        raise HTTPException(
            status_code=400,
            detail="Failed to extract tenant ID: ROAM_DEFAULT_TENANT_ID is not configured",
        )

    with LogContext(tenant_id=tenant_id):
        return await handle_roam_webhook(request, tenant_id)


@router.post("/{tenant_id}/webhooks/roam", response_model=WebhookResponse)
async def roam_webhook_with_tenant(request: Request, tenant_id: str):
    """Process ROAM webhook with tenant ID from URL path."""
    with LogContext(tenant_id=tenant_id):
        return await handle_roam_webhook(request, tenant_id)


@router.post("/roam/interactivity", response_model=InteractivityResponse)
async def roam_interactivity(request: Request):
    """Receive Block Kit button clicks for the configured default tenant."""
    tenant_id = get_roam_default_tenant_id()
    if not tenant_id:
        raise HTTPException(
            status_code=400,
            detail="Failed to extract tenant ID: ROAM_DEFAULT_TENANT_ID is not configured",
        )

    with LogContext(tenant_id=tenant_id):
        return await handle_roam_interactivity(request, tenant_id)


@router.post("/{tenant_id}/roam/interactivity", response_model=InteractivityResponse)
async def roam_interactivity_with_tenant(request: Request, tenant_id: str):
    """Receive Block Kit button clicks with tenant ID from URL path."""
    with LogContext(tenant_id=tenant_id):
        return await handle_roam_interactivity(request, tenant_id)
