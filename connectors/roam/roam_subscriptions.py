"""
ROAM webhook subscription management (Events API v0).

ROAM keeps one subscription per (event type, URL) pair and updates an
existing one instead of duplicating it, so ``ensure_subscription`` is safe to
re-run. The v0 API allows a burst of 10 and 1 request/second sustained,
hence the pause between subscribe calls.

Retries and failure classification come from ``RoamClient``; nothing here
retries on its own.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass

from src.clients.roam import RoamApiError, RoamClient
from src.utils.config import get_roam_api_key, get_roam_v0_api_url, get_roam_webhook_url
from src.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_EVENT_TYPES: tuple[str, ...] = (
    "chat.message.dm",
    "chat.message.channel",
    "chat.message.mention",
    "chat.message.reaction",
    "transcript.saved",
)
SUBSCRIBE_INTERVAL_SECONDS = 1.1


@dataclass(frozen=True)
class WebhookSubscription:
    id: str
    event: str
    url: str


class RoamSubscriptionManager:
    """Creates, checks and removes ROAM webhook subscriptions for one callback URL."""

    def __init__(
        self,
        client: RoamClient,
        webhook_url: str,
        *,
        subscribe_interval_seconds: float = SUBSCRIBE_INTERVAL_SECONDS,
    ) -> None:
        if not webhook_url:
            raise ValueError("webhook_url is required")
        self.client = client
        self.webhook_url = webhook_url
        self.subscribe_interval_seconds = subscribe_interval_seconds

    @classmethod
    def from_config(cls) -> RoamSubscriptionManager:
        webhook_url = get_roam_webhook_url()
        if not webhook_url:
            raise ValueError("ROAM_WEBHOOK_URL must be set to manage webhook subscriptions")
        client = RoamClient(default_api_key=get_roam_api_key(), api_base_url=get_roam_v0_api_url())
        return cls(client, webhook_url)

    async def ensure_subscription(
        self, api_key: str | None, event_types: Sequence[str] = DEFAULT_EVENT_TYPES
    ) -> list[WebhookSubscription]:
        """Subscribe the callback URL to every event type and return the subscriptions."""
        subscriptions: list[WebhookSubscription] = []

        for index, event in enumerate(event_types):
            if index:
                await asyncio.sleep(self.subscribe_interval_seconds)

            data = await self.client.request(
                "POST",
                "/webhook.subscribe",
                json_body={"url": self.webhook_url, "event": event},
                api_key=api_key,
            )
            subscription_id = str((data or {}).get("id") or "")
            if not subscription_id:
                raise RoamApiError(f"ROAM did not return a subscription id for {event}")

            subscriptions.append(
                WebhookSubscription(id=subscription_id, event=event, url=self.webhook_url)
            )
            logger.info(
                "Subscribed to ROAM event", event_type=event, subscription_id=subscription_id
            )

        return subscriptions

    async def check_subscription(
        self, api_key: str | None, subscription_id: str
    ) -> WebhookSubscription | None:
        """Look up a subscription; None when ROAM no longer knows it."""
        try:
            data = await self.client.request(
                "GET", "/webhook.info", params={"id": subscription_id}, api_key=api_key
            )
        except RoamApiError as e:
            if e.status_code == 404:
                return None
            raise

        data = data or {}
        return WebhookSubscription(
            id=str(data.get("id") or subscription_id),
            event=str(data.get("event") or ""),
            url=str(data.get("url") or self.webhook_url),
        )

    async def delete_subscription(self, api_key: str | None, subscription_id: str) -> None:
        try:
            await self.client.request(
                "POST", "/webhook.unsubscribe", json_body={"id": subscription_id}, api_key=api_key
            )
        except RoamApiError as e:
            if e.status_code != 404:
                raise
            logger.info("ROAM subscription already gone", subscription_id=subscription_id)
            return

        logger.info("Unsubscribed ROAM webhook", subscription_id=subscription_id)
