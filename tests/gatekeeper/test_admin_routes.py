"""Tests for the operator endpoints under /admin/roam."""

import asyncio
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.clients.answer_backend import AnswerBackendError
from src.clients.roam import CredentialRevokedError, RoamApiError
from src.database.action_audit import ActionStatus, ActionType
from src.database.roam_integrations import IntegrationStatus
from src.database.roam_interactions import ReviewKind

SECRET = "internal-secret"
AUTH = {"x-internal-auth": SECRET}

DM_EVENT = {
    "type": "chat.message.dm",
    "data": {
        "id": "msg-1",
        "chat": {"id": "chat-1"},
        "sender": {"id": "user-9"},
        "text": "Where is the onboarding doc?",
    },
}


@pytest.fixture(autouse=True)
def internal_auth_secret(monkeypatch):
    monkeypatch.setenv("INTERNAL_AUTH_SECRET", SECRET)


@pytest.fixture
def subscriptions():
    manager = MagicMock()
    manager.ensure_subscription = AsyncMock(
        return_value=[MagicMock(id="sub-1"), MagicMock(id="sub-2")]
    )
    manager.delete_subscription = AsyncMock()
    return manager


@pytest.fixture
def test_app(
    dispatcher,
    dead_letters,
    audit,
    integrations,
    interactions,
    roam_client,
    credential_vault,
    subscriptions,
):
    from src.ingest.gatekeeper.admin_routes import router

    test_app = FastAPI()
    test_app.include_router(router)
    test_app.state.roam_dispatcher = dispatcher
    test_app.state.roam_dead_letters = dead_letters
    test_app.state.action_audit = audit
    test_app.state.roam_integrations = integrations
    test_app.state.roam_interactions = interactions
    test_app.state.roam_client = roam_client
    test_app.state.credential_vault = credential_vault
    test_app.state.roam_subscriptions = subscriptions
    return test_app


@pytest.fixture
def client(test_app):
    return TestClient(test_app)


def _park(dead_letters, external_message_id="msg-1", payload=None, tenant_id="tenant-1"):
    asyncio.run(
        dead_letters.upsert(
            tenant_id=tenant_id,
            external_message_id=external_message_id,
            event_type="chat.message.dm",
            payload=payload or DM_EVENT,
            error_message="AnswerBackendError: timed out",
        )
    )
    return dead_letters.entries[external_message_id]


class TestInternalAuth:
    @pytest.mark.parametrize("headers", [{}, {"x-internal-auth": "wrong"}])
    def test_rejected_without_valid_secret(self, client, headers):
        response = client.get("/admin/roam/dead-letters", headers=headers)

        assert response.status_code == 401

    def test_closed_when_secret_unset(self, client, monkeypatch):
        monkeypatch.delenv("INTERNAL_AUTH_SECRET")

        response = client.get("/admin/roam/dead-letters", headers=AUTH)

        assert response.status_code == 401


class TestListDeadLetters:
    def test_paginates(self, client, dead_letters):
        for i in range(3):
            _park(dead_letters, external_message_id=f"msg-{i}")

        response = client.get("/admin/roam/dead-letters?page=2&limit=2", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert len(body["entries"]) == 1
        assert body["pagination"] == {"page": 2, "limit": 2, "total": 3, "total_pages": 2}

    def test_filters_by_tenant(self, client, dead_letters):
        _park(dead_letters, external_message_id="a", tenant_id="tenant-1")
        _park(dead_letters, external_message_id="b", tenant_id="tenant-2")

        response = client.get("/admin/roam/dead-letters?tenant_id=tenant-2", headers=AUTH)

        assert [e["external_message_id"] for e in response.json()["entries"]] == ["b"]

    def test_limit_is_capped(self, client):
        response = client.get("/admin/roam/dead-letters?limit=500", headers=AUTH)

        assert response.status_code == 422


class TestReplayDeadLetter:
    def test_successful_replay_marks_retried(self, client, dead_letters, audit, roam_client):
        entry = _park(dead_letters)

        response = client.post(
            "/admin/roam/dead-letters/replay", json={"id": str(entry.id)}, headers=AUTH
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["outcome"] == "delivered"
        assert dead_letters.entries["msg-1"].retried is True
        roam_client.send_message.assert_awaited_once()
        assert audit.action_types() == ["query", "dlq-replay"]

    def test_failed_replay_stays_pending(self, client, dead_letters, audit, answer_backend):
        entry = _park(dead_letters)
        answer_backend.ask.side_effect = AnswerBackendError("still down")

        response = client.post(
            "/admin/roam/dead-letters/replay", json={"id": str(entry.id)}, headers=AUTH
        )

        assert response.status_code == 200
        assert response.json()["success"] is False
        assert response.json()["outcome"] == "dead_lettered"
        assert dead_letters.entries["msg-1"].retried is False
        assert dead_letters.entries["msg-1"].attempt_count == 2
        assert audit.action_types() == ["dlq-write", "dlq-replay"]

    def test_already_retried_conflicts(self, client, dead_letters):
        entry = _park(dead_letters)
        entry.retried = True

        response = client.post(
            "/admin/roam/dead-letters/replay", json={"id": str(entry.id)}, headers=AUTH
        )

        assert response.status_code == 409

    def test_unknown_id(self, client):
        response = client.post(
            "/admin/roam/dead-letters/replay", json={"id": str(uuid.uuid4())}, headers=AUTH
        )

        assert response.status_code == 404

    def test_malformed_id(self, client):
        response = client.post(
            "/admin/roam/dead-letters/replay", json={"id": "not-a-uuid"}, headers=AUTH
        )

        assert response.status_code == 400


class TestAuditLog:
    def test_lists_only_the_tenants_records(self, client, audit):
        asyncio.run(
            audit.record("tenant-1", ActionType.QUERY, ActionStatus.COMPLETED, {"query": "q"})
        )
        asyncio.run(audit.record("tenant-2", ActionType.FILTERED, ActionStatus.SKIPPED, {}))

        response = client.get("/admin/roam/audit/tenant-1", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["tenant_id"] == "tenant-1"
        assert [r["action_type"] for r in body["records"]] == ["query"]


class TestReviewQueue:
    @pytest.fixture
    def review_items(self, interactions):
        asyncio.run(
            interactions.open_review_item("tenant-1", kind=ReviewKind.ESCALATION, query_id="q-1")
        )
        asyncio.run(
            interactions.open_review_item(
                "tenant-1", kind=ReviewKind.FEEDBACK_REVIEW, query_id="q-2"
            )
        )
        asyncio.run(
            interactions.open_review_item("tenant-2", kind=ReviewKind.ESCALATION, query_id="q-3")
        )
        asyncio.run(interactions.resolve_review_items("tenant-1", "q-2", "ada@example.com"))

    def test_pending_by_default(self, client, review_items):
        response = client.get("/admin/roam/review-queue/tenant-1", headers=AUTH)

        assert response.status_code == 200
        assert [item["query_id"] for item in response.json()["items"]] == ["q-1"]

    def test_all_statuses(self, client, review_items):
        response = client.get("/admin/roam/review-queue/tenant-1?status=all", headers=AUTH)

        assert [item["query_id"] for item in response.json()["items"]] == ["q-2", "q-1"]

    def test_unknown_status_rejected(self, client, review_items):
        response = client.get("/admin/roam/review-queue/tenant-1?status=open", headers=AUTH)

        assert response.status_code == 422

    def test_requires_auth(self, client):
        response = client.get("/admin/roam/review-queue/tenant-1")

        assert response.status_code == 401


class TestIntegrations:
    def test_get_integration_hides_credential(self, client):
        response = client.get("/admin/roam/integrations/tenant-1", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["status"] == "connected"
        assert "api_key_encrypted" not in response.json()

    def test_get_missing_integration(self, client):
        response = client.get("/admin/roam/integrations/nobody", headers=AUTH)

        assert response.status_code == 404

    def test_connect_validates_encrypts_and_subscribes(
        self, client, integrations, roam_client, subscriptions
    ):
        response = client.put(
            "/admin/roam/integrations/tenant-2",
            json={"api_key": "roam_live_sk_new", "user_id": "user-2", "mention_only": False},
            headers=AUTH,
        )

        assert response.status_code == 200
        assert response.json()["webhook_subscription_ids"] == ["sub-1", "sub-2"]
        roam_client.list_groups.assert_awaited_once_with(api_key="roam_live_sk_new")
        subscriptions.ensure_subscription.assert_awaited_once_with("roam_live_sk_new")
        stored = integrations.by_tenant["tenant-2"]
        assert stored.api_key_encrypted == "enc:roam_live_sk_new"
        assert stored.mention_only is False

    def test_connect_restores_errored_integration(self, client, integrations):
        integrations.by_tenant["tenant-1"].status = IntegrationStatus.ERROR

        response = client.put(
            "/admin/roam/integrations/tenant-1", json={"api_key": "fresh-key"}, headers=AUTH
        )

        assert response.status_code == 200
        assert integrations.by_tenant["tenant-1"].status == IntegrationStatus.CONNECTED

    def test_connect_with_rejected_key(self, client, integrations, roam_client):
        roam_client.list_groups.side_effect = CredentialRevokedError("401", status_code=401)

        response = client.put(
            "/admin/roam/integrations/tenant-2", json={"api_key": "bad"}, headers=AUTH
        )

        assert response.status_code == 400
        assert "tenant-2" not in integrations.by_tenant

    def test_connect_when_roam_unavailable(self, client, roam_client):
        roam_client.list_groups.side_effect = RoamApiError("503", status_code=503)

        response = client.put(
            "/admin/roam/integrations/tenant-2", json={"api_key": "key"}, headers=AUTH
        )

        assert response.status_code == 502

    def test_disconnect_removes_subscriptions(self, client, integrations, subscriptions):
        integrations.by_tenant["tenant-1"].webhook_subscription_ids = ["sub-1", "sub-2"]

        response = client.post("/admin/roam/integrations/tenant-1/disconnect", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["status"] == "disconnected"
        assert subscriptions.delete_subscription.await_count == 2
        subscriptions.delete_subscription.assert_any_await("roam_live_sk_tenant", "sub-1")
        integration = integrations.by_tenant["tenant-1"]
        assert integration.status == IntegrationStatus.DISCONNECTED
        assert integration.api_key_encrypted is None

    def test_disconnect_survives_subscription_errors(self, client, integrations, subscriptions):
        integrations.by_tenant["tenant-1"].webhook_subscription_ids = ["sub-1"]
        subscriptions.delete_subscription.side_effect = RoamApiError("500", status_code=500)

        response = client.post("/admin/roam/integrations/tenant-1/disconnect", headers=AUTH)

        assert response.status_code == 200
        assert integrations.by_tenant["tenant-1"].status == IntegrationStatus.DISCONNECTED

    def test_disconnect_unknown_tenant(self, client):
        response = client.post("/admin/roam/integrations/nobody/disconnect", headers=AUTH)

        assert response.status_code == 404
