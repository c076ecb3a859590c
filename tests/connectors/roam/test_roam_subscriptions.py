"""Tests for ROAM webhook subscription management."""

import json
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from connectors.roam.roam_subscriptions import RoamSubscriptionManager, WebhookSubscription
from src.clients.roam import CredentialRevokedError, RoamApiError, RoamClient

WEBHOOK_URL = "https://bridge.example.com/webhooks/roam"


def _manager(handler) -> RoamSubscriptionManager:
    http_client = httpx.AsyncClient(
        base_url="https://api.ro.am/v0", transport=httpx.MockTransport(handler)
    )
    client = RoamClient(
        default_api_key="global-key",
        api_base_url="https://api.ro.am/v0",
        retry_delays=(),
        http_client=http_client,
    )
    return RoamSubscriptionManager(client, WEBHOOK_URL, subscribe_interval_seconds=0)


class TestEnsureSubscription:
    @pytest.mark.asyncio
    async def test_subscribes_each_event_type(self):
        seen: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen.append({"path": request.url.path, "body": body, "auth": request.headers["authorization"]})
            return httpx.Response(200, json={"id": f"sub-{body['event']}"})

        manager = _manager(handler)

        subscriptions = await manager.ensure_subscription(
            "tenant-key", ["chat.message.dm", "transcript.saved"]
        )

        assert subscriptions == [
            WebhookSubscription(id="sub-chat.message.dm", event="chat.message.dm", url=WEBHOOK_URL),
            WebhookSubscription(id="sub-transcript.saved", event="transcript.saved", url=WEBHOOK_URL),
        ]
        assert all(call["path"] == "/v0/webhook.subscribe" for call in seen)
        assert all(call["auth"] == "Bearer tenant-key" for call in seen)
        assert seen[0]["body"] == {"url": WEBHOOK_URL, "event": "chat.message.dm"}

    @pytest.mark.asyncio
    async def test_pauses_between_subscribe_calls(self):
        manager = _manager(lambda request: httpx.Response(200, json={"id": "s"}))
        manager.subscribe_interval_seconds = 1.1

        with patch(
            "connectors.roam.roam_subscriptions.asyncio.sleep", new_callable=AsyncMock
        ) as mock_sleep:
            await manager.ensure_subscription(None, ["a", "b", "c"])

        assert mock_sleep.await_count == 2
        mock_sleep.assert_awaited_with(1.1)

    @pytest.mark.asyncio
    async def test_missing_id_raises(self):
        manager = _manager(lambda request: httpx.Response(200, json={}))

        with pytest.raises(RoamApiError, match="subscription id"):
            await manager.ensure_subscription(None, ["chat.message.dm"])

    @pytest.mark.asyncio
    async def test_revoked_key_propagates(self):
        manager = _manager(lambda request: httpx.Response(401, json={"error": "invalid_key"}))

        with pytest.raises(CredentialRevokedError):
            await manager.ensure_subscription("bad-key", ["chat.message.dm"])


class TestCheckSubscription:
    @pytest.mark.asyncio
    async def test_existing_subscription(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["id"] == "sub-1"
            return httpx.Response(
                200, json={"id": "sub-1", "event": "chat.message.dm", "url": WEBHOOK_URL}
            )

        result = await _manager(handler).check_subscription(None, "sub-1")

        assert result == WebhookSubscription(id="sub-1", event="chat.message.dm", url=WEBHOOK_URL)

    @pytest.mark.asyncio
    async def test_unknown_subscription_is_none(self):
        manager = _manager(lambda request: httpx.Response(404, json={"error": "not_found"}))

        assert await manager.check_subscription(None, "gone") is None

    @pytest.mark.asyncio
    async def test_other_errors_propagate(self):
        manager = _manager(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(RoamApiError):
            await manager.check_subscription(None, "sub-1")


class TestDeleteSubscription:
    @pytest.mark.asyncio
    async def test_unsubscribes(self):
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(204)

        await _manager(handler).delete_subscription("key", "sub-9")

        assert calls[0].url.path == "/v0/webhook.unsubscribe"
        assert json.loads(calls[0].content) == {"id": "sub-9"}

    @pytest.mark.asyncio
    async def test_already_deleted_is_ignored(self):
        manager = _manager(lambda request: httpx.Response(404))

        await manager.delete_subscription("key", "sub-9")


def test_webhook_url_required():
    with pytest.raises(ValueError):
        RoamSubscriptionManager(RoamClient(default_api_key="k"), "")
