"""ROAM event dispatcher.

Takes an already-verified delivery and drives it to exactly one terminal
outcome:

- ``filtered``: duplicate, self-authored, not mentioned, inactive tenant, ...
- ``delivered``: an answer or meeting summary was posted back to ROAM
- ``dead_lettered``: processing failed; the event is parked in the DLQ
- ``credential_revoked``: ROAM rejected the tenant's key (401)

Each outcome writes exactly one audit record (the DLQ writer owns the one
for dead letters). Inbound messages are recorded in the conversation thread
only after the reply is delivered, so a failed event is not considered
processed and a redelivery lands in the DLQ again with a higher attempt count.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from connectors.roam.roam_block_kit import build_answer_blocks
from connectors.roam.roam_events import (
    DirectMessage,
    GroupMessage,
    MalformedEventError,
    Reaction,
    RoamEvent,
    TranscriptSaved,
    UnknownEvent,
    parse_roam_event,
    unwrap_roam_delivery,
)
from connectors.roam.roam_format import format_answer, format_meeting_summary, format_silence
from src.clients.answer_backend import AnswerBackendClient
from src.clients.roam import CredentialRevokedError, RoamClient
from src.clients.vault_storage import VaultStorageClient
from src.credentials.vault import CredentialVault, resolve_credential
from src.database.action_audit import ActionAuditRepository, ActionStatus, ActionType
from src.database.roam_integrations import RoamIntegration, RoamIntegrationsRepository
from src.database.roam_threads import RoamThreadsRepository
from src.ingest.gatekeeper.services.dead_letter_writer import DeadLetterWriter
from src.utils.best_effort import BestEffortTasks, best_effort
from src.utils.config import (
    get_roam_assistant_id,
    get_roam_assistant_name,
    get_roam_block_kit_enabled,
    get_roam_default_mention_only,
    get_roam_default_user_id,
    get_roam_sources_url,
)
from src.utils.logging import LogContext, get_logger

logger = get_logger(__name__)

SILENCE_THRESHOLD = 0.65
HISTORY_LIMIT = 10
TRANSCRIPT_PROMPT_MAX_CHARS = 24000
REVOKED_REASON = "API key revoked or invalid (401 from ROAM API)"
SUMMARY_PROMPT = (
    "Summarize this meeting transcript. List the key decisions, open questions "
    "and action items with their owners.\n\n"
)


class DispatchOutcome(str, Enum):
    FILTERED = "filtered"
    DELIVERED = "delivered"
    DEAD_LETTERED = "dead_lettered"
    CREDENTIAL_REVOKED = "credential_revoked"


@dataclass(frozen=True)
class DispatchResult:
    status_code: int
    outcome: DispatchOutcome
    external_message_id: str | None = None
    detail: str | None = None


class RoamDispatchError(Exception):
    """An event could not be routed for a reason other than an upstream failure."""


@dataclass
class DispatcherSettings:
    assistant_id: str = "mercury"
    assistant_name: str = "Mercury"
    default_user_id: str | None = None
    default_mention_only: bool = True
    silence_threshold: float = SILENCE_THRESHOLD
    history_limit: int = HISTORY_LIMIT
    block_kit: bool = False
    sources_url: str | None = None

    @classmethod
    def from_config(cls) -> DispatcherSettings:
        return cls(
            assistant_id=get_roam_assistant_id(),
            assistant_name=get_roam_assistant_name(),
            default_user_id=get_roam_default_user_id(),
            default_mention_only=get_roam_default_mention_only(),
            block_kit=get_roam_block_kit_enabled(),
            sources_url=get_roam_sources_url(),
        )


@dataclass
class _TenantContext:
    tenant_id: str
    integration: RoamIntegration | None
    api_key: str | None
    mention_only: bool
    user_id: str | None = field(default=None)


class RoamDispatcher:
    def __init__(
        self,
        *,
        roam_client: RoamClient,
        answer_backend: AnswerBackendClient,
        vault_storage: VaultStorageClient,
        credential_vault: CredentialVault,
        integrations: RoamIntegrationsRepository,
        threads: RoamThreadsRepository,
        audit: ActionAuditRepository,
        dead_letter_writer: DeadLetterWriter,
        settings: DispatcherSettings | None = None,
        background: BestEffortTasks | None = None,
    ) -> None:
        self.roam_client = roam_client
        self.answer_backend = answer_backend
        self.vault_storage = vault_storage
        self.credential_vault = credential_vault
        self.integrations = integrations
        self.threads = threads
        self.audit = audit
        self.dead_letter_writer = dead_letter_writer
        self.settings = settings or DispatcherSettings.from_config()
        self.background = background if background is not None else BestEffortTasks()
        self._mention_pattern = re.compile(
            rf"@{re.escape(self.settings.assistant_name)}\b[:,]?\s*", re.IGNORECASE
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    async def handle(self, tenant_id: str, body: bytes, webhook_id: str) -> DispatchResult:
        """Dispatch a verified raw delivery (direct event or push envelope)."""
        try:
            delivery = unwrap_roam_delivery(body)
        except MalformedEventError as e:
            return await self._dead_letter(
                tenant_id,
                external_message_id=webhook_id,
                event_type="unknown",
                payload={"raw_body": body.decode("utf-8", errors="replace")},
                error=e,
            )

        return await self.dispatch_event(
            tenant_id,
            delivery.payload,
            fallback_message_id=delivery.envelope_message_id or webhook_id,
        )

    async def dispatch_event(
        self, tenant_id: str, payload: dict[str, Any], *, fallback_message_id: str
    ) -> DispatchResult:
        """Dispatch a decoded event payload. Also used to replay dead letters."""
        event_type = str(payload.get("type") or "unknown")
        external_message_id = fallback_message_id

        with LogContext(tenant_id=tenant_id, event_type=event_type):
            try:
                event = parse_roam_event(payload)
                external_message_id = event.message_id or fallback_message_id
                with LogContext(external_message_id=external_message_id):
                    return await self._route(tenant_id, event, external_message_id)
            except CredentialRevokedError as e:
                return await self._credential_revoked(tenant_id, external_message_id, event_type, e)
            except Exception as e:
                return await self._dead_letter(
                    tenant_id,
                    external_message_id=external_message_id,
                    event_type=event_type,
                    payload=payload,
                    error=e,
                )

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------
    async def _route(
        self, tenant_id: str, event: RoamEvent, external_message_id: str
    ) -> DispatchResult:
        if await self.threads.has_processed(tenant_id, external_message_id):
            return await self._filtered(tenant_id, event, external_message_id, "duplicate")

        match event:
            case DirectMessage() | GroupMessage():
                return await self._handle_message(tenant_id, event, external_message_id)
            case TranscriptSaved():
                return await self._handle_transcript(tenant_id, event, external_message_id)
            case Reaction():
                return await self._filtered(
                    tenant_id, event, external_message_id, "reaction_ignored"
                )
            case UnknownEvent():
                return await self._filtered(
                    tenant_id, event, external_message_id, "unsupported_event"
                )

        raise RoamDispatchError(f"Unhandled event variant {type(event).__name__}")

    async def _handle_message(
        self,
        tenant_id: str,
        event: DirectMessage | GroupMessage,
        external_message_id: str,
    ) -> DispatchResult:
        if event.sender_id == self.settings.assistant_id:
            return await self._filtered(tenant_id, event, external_message_id, "self_authored")

        if not event.text.strip():
            return await self._filtered(tenant_id, event, external_message_id, "empty_text")

        context = await self._tenant_context(tenant_id)
        if context.integration and not context.integration.is_active:
            return await self._filtered(
                tenant_id, event, external_message_id, "integration_inactive"
            )

        if isinstance(event, GroupMessage) and context.mention_only:
            if not self._is_mentioned(event):
                return await self._filtered(
                    tenant_id, event, external_message_id, "mention_required"
                )

        user_id = self._require_user_id(context)

        self.background.spawn(
            self.roam_client.send_typing_indicator(event.conversation_id, api_key=context.api_key),
            operation="roam_typing_indicator",
        )

        thread_id = await self.threads.get_or_create_thread(tenant_id, event.conversation_id)
        history = await self.threads.recent_history(thread_id, limit=self.settings.history_limit)
        query = self._strip_mention(event.text)

        answer = await self.answer_backend.ask(query, user_id=user_id, history=history)
        # Block Kit feedback buttons carry this back to the interactivity route
        query_id = uuid.uuid4().hex

        silent = answer.should_stay_silent(self.settings.silence_threshold)
        if silent:
            reply = format_silence(self.settings.assistant_name, answer.suggestions)
        else:
            reply = format_answer(answer.text, answer.citations, confidence=answer.confidence)

        if self.settings.block_kit:
            message = build_answer_blocks(
                reply if silent else answer.text,
                answer.citations,
                confidence=answer.confidence,
                query_id=query_id,
                is_silence=silent,
                sources_url=self.settings.sources_url,
            )
            await self.roam_client.send_blocks(
                event.conversation_id,
                message.blocks,
                color=message.color.value,
                thread_id=event.thread_id,
                api_key=context.api_key,
            )
        else:
            await self.roam_client.send_message(
                event.conversation_id, reply, thread_id=event.thread_id, api_key=context.api_key
            )
        logger.info(
            "ROAM reply delivered",
            conversation_id=event.conversation_id,
            confidence=answer.confidence,
            silence=silent,
        )

        await self._record_exchange(
            thread_id,
            tenant_id,
            inbound=event.text,
            reply=reply,
            confidence=answer.confidence,
            external_message_id=external_message_id,
            metadata={
                "conversation_id": event.conversation_id,
                "sender_id": event.sender_id,
                "sender_name": event.sender_name,
                "thread_id": event.thread_id,
            },
        )

        await self._audit(
            tenant_id,
            ActionType.QUERY,
            ActionStatus.COMPLETED,
            {
                "external_message_id": external_message_id,
                "event_type": event.event_type,
                "conversation_id": event.conversation_id,
                "query_id": query_id,
                "block_kit": self.settings.block_kit,
                "query": query[:500],
                "response_length": len(reply),
                "confidence": answer.confidence,
                "silence": silent,
                "citation_count": len(answer.citations),
            },
        )
        return DispatchResult(200, DispatchOutcome.DELIVERED, external_message_id)

    async def _handle_transcript(
        self, tenant_id: str, event: TranscriptSaved, external_message_id: str
    ) -> DispatchResult:
        context = await self._tenant_context(tenant_id)
        if context.integration and not context.integration.is_active:
            return await self._filtered(
                tenant_id, event, external_message_id, "integration_inactive"
            )
        if context.integration and not context.integration.meeting_summaries:
            return await self._filtered(
                tenant_id, event, external_message_id, "meeting_summaries_disabled"
            )

        transcript = await self.roam_client.get_transcript(
            event.transcript_id, api_key=context.api_key
        )
        content = str(transcript.get("content") or transcript.get("text") or "")
        if not content.strip():
            return await self._filtered(tenant_id, event, external_message_id, "empty_transcript")

        conversation_id = (
            event.conversation_id
            or transcript.get("groupId")
            or (context.integration.target_conversation_id if context.integration else None)
        )
        if not conversation_id:
            raise RoamDispatchError(
                f"No conversation to post the summary of transcript {event.transcript_id} to"
            )

        user_id = self._require_user_id(context)
        title = event.title or transcript.get("title") or "Untitled meeting"
        participants = [str(p) for p in transcript.get("participants") or []]

        document_id = await self.vault_storage.create_document(
            tenant_id=tenant_id,
            user_id=user_id,
            filename=f"{title}.txt",
            content=content,
            metadata={
                "source": "roam_transcript",
                "transcript_id": event.transcript_id,
                "conversation_id": conversation_id,
                "title": title,
                "participants": participants,
            },
        )

        answer = await self.answer_backend.ask(
            SUMMARY_PROMPT + content[:TRANSCRIPT_PROMPT_MAX_CHARS], user_id=user_id
        )
        silent = answer.should_stay_silent(self.settings.silence_threshold)
        if silent:
            summary = format_silence(self.settings.assistant_name, answer.suggestions)
        else:
            summary = format_meeting_summary(
                self.settings.assistant_name,
                title,
                participants,
                answer.text or "No summary could be generated for this meeting.",
                duration_seconds=transcript.get("duration"),
            )

        await self.roam_client.send_message(conversation_id, summary, api_key=context.api_key)
        logger.info(
            "ROAM meeting summary delivered",
            transcript_id=event.transcript_id,
            conversation_id=conversation_id,
            document_id=document_id,
            silence=silent,
        )

        thread_id = await best_effort(
            self.threads.get_or_create_thread(tenant_id, conversation_id),
            operation="thread_lookup",
        )
        if thread_id is not None:
            await self._record_exchange(
                thread_id,
                tenant_id,
                inbound=f"Meeting transcript saved: {title}",
                reply=summary,
                confidence=answer.confidence,
                external_message_id=external_message_id,
                metadata={"transcript_id": event.transcript_id, "document_id": document_id},
            )

        await self._audit(
            tenant_id,
            ActionType.MEETING_SUMMARY,
            ActionStatus.COMPLETED,
            {
                "external_message_id": external_message_id,
                "transcript_id": event.transcript_id,
                "conversation_id": conversation_id,
                "document_id": document_id,
                "title": title,
                "participant_count": len(participants),
                "confidence": answer.confidence,
                "silence": silent,
            },
        )
        return DispatchResult(200, DispatchOutcome.DELIVERED, external_message_id)

    # ------------------------------------------------------------------
    # Terminal outcomes
    # ------------------------------------------------------------------
    async def _filtered(
        self, tenant_id: str, event: RoamEvent, external_message_id: str, reason: str
    ) -> DispatchResult:
        logger.info("ROAM event filtered", reason=reason)
        await self._audit(
            tenant_id,
            ActionType.FILTERED,
            ActionStatus.SKIPPED,
            {
                "external_message_id": external_message_id,
                "event_type": event.event_type,
                "reason": reason,
            },
        )
        return DispatchResult(200, DispatchOutcome.FILTERED, external_message_id, reason)

    async def _credential_revoked(
        self,
        tenant_id: str,
        external_message_id: str,
        event_type: str,
        error: CredentialRevokedError,
    ) -> DispatchResult:
        logger.error("ROAM credential revoked", error=str(error))
        await best_effort(
            self.integrations.mark_error(tenant_id, REVOKED_REASON),
            operation="mark_integration_error",
        )
        await self._audit(
            tenant_id,
            ActionType.KEY_REVOKED,
            ActionStatus.COMPLETED,
            {
                "external_message_id": external_message_id,
                "event_type": event_type,
                "reason": REVOKED_REASON,
                "error": str(error)[:500],
            },
        )
        return DispatchResult(
            500, DispatchOutcome.CREDENTIAL_REVOKED, external_message_id, REVOKED_REASON
        )

    async def _dead_letter(
        self,
        tenant_id: str,
        *,
        external_message_id: str,
        event_type: str,
        payload: dict[str, Any],
        error: Exception,
    ) -> DispatchResult:
        logger.error(
            "ROAM event processing failed",
            error=str(error),
            error_type=type(error).__name__,
        )
        await self.dead_letter_writer.write_dead_letter(
            tenant_id=tenant_id,
            external_message_id=external_message_id,
            event_type=event_type,
            payload=payload,
            error_message=f"{type(error).__name__}: {error}",
            error_status=getattr(error, "status_code", None),
        )
        return DispatchResult(
            200, DispatchOutcome.DEAD_LETTERED, external_message_id, type(error).__name__
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def _tenant_context(self, tenant_id: str) -> _TenantContext:
        integration = await self.integrations.get_by_tenant(tenant_id)
        stored_key = integration.api_key_encrypted if integration else None
        api_key = await resolve_credential(self.credential_vault, stored_key)
        return _TenantContext(
            tenant_id=tenant_id,
            integration=integration,
            api_key=api_key,
            mention_only=(
                integration.mention_only if integration else self.settings.default_mention_only
            ),
            user_id=(integration.user_id if integration else None)
            or self.settings.default_user_id,
        )

    @staticmethod
    def _require_user_id(context: _TenantContext) -> str:
        if not context.user_id:
            raise RoamDispatchError(
                f"No user configured for tenant {context.tenant_id} (set ROAM_DEFAULT_USER_ID)"
            )
        return context.user_id

    def _is_mentioned(self, event: GroupMessage) -> bool:
        if event.explicit_mention or self.settings.assistant_id in event.mention_ids:
            return True
        return bool(self._mention_pattern.search(event.text))

    def _strip_mention(self, text: str) -> str:
        stripped = self._mention_pattern.sub("", text).strip()
        return stripped or text.strip()

    async def _record_exchange(
        self,
        thread_id: Any,
        tenant_id: str,
        *,
        inbound: str,
        reply: str,
        confidence: float | None,
        external_message_id: str,
        metadata: dict[str, Any],
    ) -> None:
        # Reply is already delivered: bookkeeping failures must not dead-letter it
        await best_effort(
            self.threads.add_message(
                thread_id,
                tenant_id,
                role="user",
                content=inbound,
                external_message_id=external_message_id,
                metadata=metadata,
            ),
            operation="thread_write_inbound",
        )
        await best_effort(
            self.threads.add_message(
                thread_id, tenant_id, role="assistant", content=reply, confidence=confidence
            ),
            operation="thread_write_reply",
        )

    async def _audit(
        self,
        tenant_id: str,
        action_type: ActionType,
        status: ActionStatus,
        metadata: dict[str, Any],
    ) -> None:
        await best_effort(
            self.audit.record(tenant_id, action_type, status, {"channel": "roam", **metadata}),
            operation=f"audit_{action_type.value}",
        )
