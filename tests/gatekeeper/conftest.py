"""In-memory stand-ins for the control-database repositories used by the gatekeeper."""

import uuid
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.clients.answer_backend import AnswerResult, Citation
from src.database.roam_dead_letters import DeadLetter
from src.database.roam_integrations import IntegrationStatus, RoamIntegration
from src.database.roam_interactions import ReviewStatus
from src.ingest.gatekeeper.services.dead_letter_writer import DeadLetterWriter
from src.ingest.gatekeeper.services.interaction_recorder import InteractionRecorder
from src.ingest.gatekeeper.services.roam_dispatcher import DispatcherSettings, RoamDispatcher
from src.utils.best_effort import BestEffortTasks

TENANT_ID = "tenant-1"


def make_integration(**overrides) -> RoamIntegration:
    now = datetime.now(UTC)
    row = {
        "tenant_id": TENANT_ID,
        "user_id": "user-1",
        "api_key_encrypted": "roam_live_sk_tenant",
        "status": IntegrationStatus.CONNECTED.value,
        "target_conversation_id": None,
        "mention_only": True,
        "meeting_summaries": True,
        "webhook_subscription_ids": [],
        "error_reason": None,
        "last_health_check_at": None,
        "created_at": now,
        "updated_at": now,
    }
    row.update(overrides)
    return RoamIntegration(row)


class FakeIntegrations:
    def __init__(self):
        self.by_tenant: dict[str, RoamIntegration] = {}

    def add(self, integration: RoamIntegration) -> RoamIntegration:
        self.by_tenant[integration.tenant_id] = integration
        return integration

    async def get_by_tenant(self, tenant_id):
        return self.by_tenant.get(tenant_id)

    async def list_connected(self):
        return [i for i in self.by_tenant.values() if i.is_active]

    async def connect(self, tenant_id, *, api_key_encrypted, **fields):
        return self.add(
            make_integration(tenant_id=tenant_id, api_key_encrypted=api_key_encrypted, **fields)
        )

    async def mark_error(self, tenant_id, reason):
        integration = self.by_tenant.get(tenant_id)
        if integration:
            integration.status = IntegrationStatus.ERROR
            integration.error_reason = reason

    async def disconnect(self, tenant_id):
        integration = self.by_tenant.get(tenant_id)
        if integration:
            integration.status = IntegrationStatus.DISCONNECTED
            integration.api_key_encrypted = None
            integration.webhook_subscription_ids = []

    async def update_subscription_ids(self, tenant_id, subscription_ids):
        self.by_tenant[tenant_id].webhook_subscription_ids = list(subscription_ids)

    async def touch_health_check(self, tenant_id):
        self.by_tenant[tenant_id].last_health_check_at = datetime.now(UTC)


class FakeThreads:
    def __init__(self):
        self.threads: dict[tuple[str, str], uuid.UUID] = {}
        self.messages: list[dict] = []

    async def get_or_create_thread(self, tenant_id, conversation_id):
        return self.threads.setdefault((tenant_id, conversation_id), uuid.uuid4())

    async def has_processed(self, tenant_id, external_message_id):
        return any(
            m["tenant_id"] == tenant_id and m["external_message_id"] == external_message_id
            for m in self.messages
        )

    async def add_message(
        self,
        thread_id,
        tenant_id,
        *,
        role,
        content,
        confidence=None,
        external_message_id=None,
        metadata=None,
    ):
        self.messages.append(
            {
                "thread_id": thread_id,
                "tenant_id": tenant_id,
                "role": role,
                "content": content,
                "confidence": confidence,
                "external_message_id": external_message_id,
            }
        )

    async def recent_history(self, thread_id, limit=10):
        history = [m for m in self.messages if m["thread_id"] == thread_id][-limit:]
        return [{"role": m["role"], "content": m["content"]} for m in history]


class FakeAudit:
    def __init__(self):
        self.records: list[dict] = []

    async def record(self, tenant_id, action_type, status, metadata=None):
        self.records.append(
            {
                "tenant_id": tenant_id,
                "action_type": action_type,
                "status": status,
                "metadata": metadata or {},
            }
        )

    async def list_for_tenant(self, tenant_id, limit=50):
        return [
            {
                "tenant_id": r["tenant_id"],
                "action_type": r["action_type"].value,
                "status": r["status"].value,
                "metadata": r["metadata"],
            }
            for r in reversed(self.records)
            if r["tenant_id"] == tenant_id
        ][:limit]

    def action_types(self) -> list[str]:
        return [r["action_type"].value for r in self.records]


class FakeDeadLetters:
    def __init__(self):
        self.entries: dict[str, DeadLetter] = {}

    async def upsert(
        self, *, tenant_id, external_message_id, event_type, payload, error_message, error_status=None
    ):
        now = datetime.now(UTC)
        existing = self.entries.get(external_message_id)
        self.entries[external_message_id] = DeadLetter(
            {
                "id": existing.id if existing else uuid.uuid4(),
                "tenant_id": tenant_id,
                "external_message_id": external_message_id,
                "event_type": event_type,
                "payload": payload,
                "error_message": error_message,
                "error_status": error_status,
                "attempt_count": existing.attempt_count + 1 if existing else 1,
                "retried": False,
                "retried_at": None,
                "created_at": existing.created_at if existing else now,
                "updated_at": now,
            }
        )
        return self.entries[external_message_id].attempt_count

    async def get_by_id(self, dead_letter_id):
        return next((e for e in self.entries.values() if e.id == dead_letter_id), None)

    async def list_entries(self, *, limit, offset, tenant_id=None, retried=None, event_type=None):
        matching = [
            e
            for e in self.entries.values()
            if (tenant_id is None or e.tenant_id == tenant_id)
            and (retried is None or e.retried == retried)
            and (event_type is None or e.event_type == event_type)
        ]
        return matching[offset : offset + limit], len(matching)

    async def mark_retried(self, dead_letter_id):
        entry = await self.get_by_id(dead_letter_id)
        entry.retried = True
        entry.retried_at = datetime.now(UTC)


class FakeInteractions:
    def __init__(self):
        self.clicks: list[dict] = []
        self.review_items: list[dict] = []

    async def record(self, tenant_id, **fields):
        self.clicks.append({"tenant_id": tenant_id, **fields})

    async def open_review_item(self, tenant_id, *, kind, query_id, **fields):
        item = {
            "id": uuid.uuid4(),
            "tenant_id": tenant_id,
            "kind": kind.value,
            "status": ReviewStatus.PENDING.value,
            "query_id": query_id,
            "resolved_by": None,
            **fields,
        }
        self.review_items.append(item)
        return item["id"]

    async def resolve_review_items(self, tenant_id, query_id, resolved_by):
        resolved = 0
        for item in self.review_items:
            if (
                item["tenant_id"] == tenant_id
                and item["query_id"] == query_id
                and item["status"] == ReviewStatus.PENDING.value
            ):
                item["status"] = ReviewStatus.RESOLVED.value
                item["resolved_by"] = resolved_by
                resolved += 1
        return resolved

    async def list_review_items(self, tenant_id, *, status=ReviewStatus.PENDING, limit=50):
        return [
            {**item, "id": str(item["id"])}
            for item in reversed(self.review_items)
            if item["tenant_id"] == tenant_id and (status is None or item["status"] == status.value)
        ][:limit]


@pytest.fixture
def integrations():
    fake = FakeIntegrations()
    fake.add(make_integration())
    return fake


@pytest.fixture
def threads():
    return FakeThreads()


@pytest.fixture
def audit():
    return FakeAudit()


@pytest.fixture
def dead_letters():
    return FakeDeadLetters()


@pytest.fixture
def roam_client():
    client = MagicMock()
    client.send_message = AsyncMock(return_value={"id": "out-1"})
    client.send_blocks = AsyncMock(return_value={"id": "out-1"})
    client.send_typing_indicator = AsyncMock()
    client.get_transcript = AsyncMock(return_value={})
    client.list_groups = AsyncMock(return_value=[{"id": "grp-1"}])
    return client


@pytest.fixture
def answer_backend():
    backend = MagicMock()
    backend.ask = AsyncMock(
        return_value=AnswerResult(
            text="Refunds take **30 days** [1].",
            citations=[Citation(index=1, excerpt="within 30 days", document_name="Policy.pdf")],
            confidence=0.92,
        )
    )
    return backend


@pytest.fixture
def vault_storage():
    storage = MagicMock()
    storage.create_document = AsyncMock(return_value="doc-1")
    return storage


@pytest.fixture
def credential_vault():
    vault = MagicMock()
    vault.is_encrypted = MagicMock(side_effect=lambda value: value.startswith("enc:"))
    vault.encrypt = AsyncMock(side_effect=lambda plaintext: f"enc:{plaintext}")
    vault.decrypt = AsyncMock(side_effect=lambda ciphertext: ciphertext.removeprefix("enc:"))
    return vault


@pytest.fixture
def background():
    return BestEffortTasks()


@pytest.fixture
def dispatcher(
    roam_client,
    answer_backend,
    vault_storage,
    credential_vault,
    integrations,
    threads,
    audit,
    dead_letters,
    background,
):
    return RoamDispatcher(
        roam_client=roam_client,
        answer_backend=answer_backend,
        vault_storage=vault_storage,
        credential_vault=credential_vault,
        integrations=integrations,
        threads=threads,
        audit=audit,
        dead_letter_writer=DeadLetterWriter(dead_letters, audit),
        settings=DispatcherSettings(
            assistant_id="mercury", assistant_name="Mercury", default_user_id="user-default"
        ),
        background=background,
    )


@pytest.fixture
def interactions():
    return FakeInteractions()


@pytest.fixture
def interaction_recorder(interactions, audit):
    return InteractionRecorder(interactions=interactions, audit=audit)
