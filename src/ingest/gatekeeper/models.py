"""Pydantic models for gatekeeper service."""

from typing import Any

from pydantic import BaseModel, Field


class WebhookResponse(BaseModel):
    """Webhook response model."""

    success: bool
    message: str
    tenant_id: str | None = None
    message_id: str | None = None
    outcome: str | None = None


class DeadLetterReplayRequest(BaseModel):
    id: str


class DeadLetterReplayResponse(BaseModel):
    success: bool
    id: str
    outcome: str
    status_code: int
    detail: str | None = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class DeadLetterListResponse(BaseModel):
    """Paged dead letters, newest first."""

    entries: list[dict[str, Any]] = Field(default_factory=list)
    pagination: Pagination


class AuditListResponse(BaseModel):
    tenant_id: str
    records: list[dict[str, Any]] = Field(default_factory=list)


class IntegrationConnectRequest(BaseModel):
    """Operator request to (re)connect a tenant. The key is never echoed back."""

    api_key: str = Field(min_length=1)
    user_id: str | None = None
    target_conversation_id: str | None = None
    mention_only: bool = True
    meeting_summaries: bool = True


class InteractivityResponse(BaseModel):
    """Immediate acknowledgement of a button click; processing continues in the background."""

    ok: bool = True


class ReviewQueueResponse(BaseModel):
    tenant_id: str
    items: list[dict[str, Any]] = Field(default_factory=list)
