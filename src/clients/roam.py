"""Async ROAM API client used by the webhook dispatcher and the health check.

Every public method accepts an optional per-tenant ``api_key``; when it is
omitted the client's ``default_api_key`` (the global ROAM_API_KEY) is used.
The key is resolved once per call, at the request boundary.

Retry policy:

- 429 and 503 are retried on the ``retry_delays`` ladder (0.5s, 1s, 2s)
- 400, 401, 403 and 404 fail immediately
- anything else that is not 2xx also fails immediately
- 401 raises ``CredentialRevokedError`` so callers can tell revocation apart
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from typing import Any

import httpx

from src.utils.config import get_roam_api_key, get_roam_api_url
from src.utils.logging import get_logger

logger = get_logger(__name__)


DEFAULT_TIMEOUT_SECONDS = 10.0
RETRY_DELAYS_SECONDS: tuple[float, ...] = (0.5, 1.0, 2.0)
RETRYABLE_STATUS_CODES = {429, 503}
NON_RETRYABLE_STATUS_CODES = {400, 401, 403, 404}
MAX_EXPORT_PAGE_SIZE = 100
ERROR_BODY_PREVIEW_CHARS = 200
NDJSON_ACCEPT = "application/x-ndjson, text/plain, */*"


class RoamApiError(Exception):
    """Base exception for ROAM API failures."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        response_body: Any | None = None,
        code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.code = code

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRYABLE_STATUS_CODES


class CredentialRevokedError(RoamApiError):
    """ROAM rejected the API key (401). The tenant has to reconnect."""


class RoamClient:
    """Thin async wrapper around the ROAM REST API."""

    def __init__(
        self,
        *,
        default_api_key: str | None = None,
        api_base_url: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        retry_delays: Sequence[float] = RETRY_DELAYS_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        normalized_base = (api_base_url or get_roam_api_url()).rstrip("/")
        self._default_api_key = default_api_key
        self._api_base_url = normalized_base
        self._retry_delays = tuple(retry_delays)
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=normalized_base,
            headers={
                "Accept": "application/json",
                "User-Agent": "roam-bridge/1.0",
            },
            timeout=timeout_seconds,
        )

    @classmethod
    def from_config(cls, **kwargs: Any) -> RoamClient:
        return cls(default_api_key=get_roam_api_key(), **kwargs)

    async def __aenter__(self) -> RoamClient:
        return self

    async def __aexit__(self, _exc_type, _exc, _tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ------------------------------------------------------------------
    # Public API wrappers
    # ------------------------------------------------------------------
    async def send_message(
        self,
        conversation_id: str,
        text: str,
        *,
        thread_id: str | None = None,
        api_key: str | None = None,
    ) -> dict[str, Any]:
        # ROAM calls the chat/group identifier an addressId
        body: dict[str, Any] = {"addressId": conversation_id, "text": text}
        if thread_id:
            body["thread_id"] = thread_id
        data = await self._post("/messages", json_body=body, api_key=api_key)
        return data or {}

    async def send_blocks(
        self,
        conversation_id: str,
        blocks: list[dict[str, Any]],
        *,
        color: str | None = None,
        thread_id: str | None = None,
        api_key: str | None = None,
    ) -> dict[str, Any]:
        """Post a Block Kit message. ROAM rejects a body carrying both ``blocks`` and ``text``."""
        body: dict[str, Any] = {"addressId": conversation_id, "blocks": blocks}
        if color:
            body["color"] = color
        if thread_id:
            body["thread_id"] = thread_id
        data = await self._post("/messages", json_body=body, api_key=api_key)
        return data or {}

    async def send_typing_indicator(
        self, conversation_id: str, *, api_key: str | None = None
    ) -> None:
        """Show "typing..." in a conversation. Single attempt, failures are only logged."""
        try:
            await self._post(
                "/chat.typing",
                json_body={"addressId": conversation_id},
                api_key=api_key,
                retry=False,
            )
        except Exception as e:
            logger.warning(
                "ROAM typing indicator failed (non-fatal)",
                conversation_id=conversation_id,
                error=str(e),
            )

    async def list_groups(self, *, api_key: str | None = None) -> list[dict[str, Any]]:
        data = await self._get("/groups", api_key=api_key)
        groups = self._extract_list(data, "groups")
        return [
            {
                **group,
                # ROAM returns addressId as the primary identifier
                "id": group.get("addressId") or group.get("id") or "",
            }
            for group in groups
        ]

    async def export_messages(
        self,
        conversation_id: str,
        *,
        limit: int = 50,
        before: str | None = None,
        api_key: str | None = None,
    ) -> list[dict[str, Any]]:
        """Fetch one page of messages, newest first, older than ``before`` when given."""
        params: dict[str, Any] = {
            "group_id": conversation_id,
            "limit": min(limit, MAX_EXPORT_PAGE_SIZE),
        }
        if before:
            params["before"] = before
        data = await self._get("/messages", params=params, api_key=api_key)
        return self._extract_list(data, "messages")

    async def iter_messages(
        self,
        conversation_id: str,
        *,
        page_size: int = MAX_EXPORT_PAGE_SIZE,
        api_key: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """Walk a conversation's history using the ``before`` cursor."""
        page_size = min(page_size, MAX_EXPORT_PAGE_SIZE)
        before: str | None = None

        while True:
            messages = await self.export_messages(
                conversation_id, limit=page_size, before=before, api_key=api_key
            )
            for message in messages:
                yield message

            if len(messages) < page_size:
                break
            before = messages[-1].get("id")
            if not before:
                break

    async def get_transcript(
        self, transcript_id: str, *, api_key: str | None = None
    ) -> dict[str, Any]:
        data = await self._get("/transcript.info", params={"id": transcript_id}, api_key=api_key)
        return data or {}

    async def fetch_compliance_export(self, date: str, *, api_key: str | None = None) -> str:
        """Fetch the NDJSON compliance export for one UTC day (``YYYY-MM-DD``) as raw text."""
        response = await self._send(
            "POST",
            "/messageevent.export",
            json_body={"date": date},
            api_key=api_key,
            headers={"Accept": NDJSON_ACCEPT},
        )
        return response.text

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _get(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        api_key: str | None = None,
    ) -> Any:
        return await self.request("GET", path, params=params, api_key=api_key)

    async def _post(
        self,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        api_key: str | None = None,
        retry: bool = True,
    ) -> Any:
        return await self.request("POST", path, json_body=json_body, api_key=api_key, retry=retry)

    def _resolve_api_key(self, api_key: str | None) -> str:
        resolved = api_key or self._default_api_key
        if not resolved:
            raise RoamApiError(
                "No ROAM API key available: tenant has no credential and ROAM_API_KEY is unset",
                code="config_error",
            )
        return resolved

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        api_key: str | None = None,
        retry: bool = True,
    ) -> Any:
        """Issue one API call under the retry policy and return parsed JSON (None for 204).

        Public so that endpoint families living elsewhere (webhook subscriptions on the
        v0 API) share the same credential resolution and failure classification.
        """
        response = await self._send(
            method, path, params=params, json_body=json_body, api_key=api_key, retry=retry
        )
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        api_key: str | None = None,
        retry: bool = True,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        headers = {**(headers or {}), "Authorization": f"Bearer {self._resolve_api_key(api_key)}"}
        delays = self._retry_delays if retry else ()
        attempt = 0

        while True:
            response = await self._client.request(
                method, path, params=params, json=json_body, headers=headers
            )
            status = response.status_code

            if 200 <= status < 300:
                return response

            error = self._build_error(response)

            if status in RETRYABLE_STATUS_CODES and attempt < len(delays):
                delay = delays[attempt]
                attempt += 1
                logger.info(
                    "ROAM request retrying",
                    method=method,
                    path=path,
                    status=status,
                    attempt=attempt,
                    delay_seconds=delay,
                )
                await asyncio.sleep(delay)
                continue

            logger.warning(
                "ROAM request failed",
                method=method,
                path=path,
                status=status,
                attempts=attempt + 1,
                classification=self._classify(status),
            )
            raise error

    @staticmethod
    def _classify(status: int) -> str:
        if status in RETRYABLE_STATUS_CODES:
            return "retries_exhausted"
        if status in NON_RETRYABLE_STATUS_CODES:
            return "non_retryable"
        return "unclassified"

    @staticmethod
    def _build_error(response: httpx.Response) -> RoamApiError:
        body_text = response.text
        code: str | None = None
        response_body: Any = body_text
        try:
            response_body = response.json()
            if isinstance(response_body, dict):
                raw_code = response_body.get("code") or response_body.get("error")
                code = str(raw_code) if raw_code else None
        except ValueError:
            pass

        message = f"ROAM API {response.status_code}: {body_text[:ERROR_BODY_PREVIEW_CHARS]}"
        error_cls = CredentialRevokedError if response.status_code == 401 else RoamApiError
        return error_cls(
            message,
            status_code=response.status_code,
            response_body=response_body,
            code=code,
        )

    @staticmethod
    def _extract_list(data: Any, key: str) -> list[dict[str, Any]]:
        if not isinstance(data, dict):
            return []
        value = data.get(key)
        return value if isinstance(value, list) else []
