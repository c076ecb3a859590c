"""Client for the document vault that stores meeting transcripts for indexing."""

from __future__ import annotations

from typing import Any

import httpx

from src.utils.config import get_internal_auth_secret, get_vault_api_url
from src.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0
PENDING_INDEX_STATUS = "pending"


class VaultStorageError(Exception):
    def __init__(
        self, message: str, *, status_code: int | None = None, response_body: Any | None = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class VaultStorageClient:
    """Creates text documents in the vault. Indexing happens asynchronously on its side."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        internal_auth_secret: str | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._internal_auth_secret = internal_auth_secret or get_internal_auth_secret() or ""
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=(base_url or get_vault_api_url()).rstrip("/"),
            timeout=timeout_seconds,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def create_document(
        self,
        *,
        tenant_id: str,
        user_id: str,
        filename: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Store a plain-text document with pending index status and return its id."""
        payload = {
            "tenant_id": tenant_id,
            "user_id": user_id,
            "filename": filename,
            "mime_type": "text/plain",
            "size_bytes": len(content.encode("utf-8")),
            "content": content,
            "index_status": PENDING_INDEX_STATUS,
            "metadata": metadata or {},
        }
        headers = {"X-Internal-Auth": self._internal_auth_secret, "X-User-ID": user_id}

        response = await self._client.post("/api/documents", json=payload, headers=headers)
        if not 200 <= response.status_code < 300:
            raise VaultStorageError(
                f"Vault document create failed with {response.status_code}",
                status_code=response.status_code,
                response_body=response.text[:500],
            )

        document_id = str(response.json().get("id") or "")
        if not document_id:
            raise VaultStorageError("Vault response did not include a document id")

        logger.info("Stored document in vault", document_id=document_id, filename=filename)
        return document_id
