"""Client for the internal answer-generation backend.

``POST /api/chat`` answers either with a server-sent-event stream or, for
older deployments, a single JSON body. Both are folded into an ``AnswerResult``.

SSE frames look like::

    event: token
    data: {"text": "Hello"}

Recognised event types are ``token``, ``citations``, ``confidence``,
``silence`` and ``done``; ``status`` and ``done`` carry nothing we keep.
Frames without an ``event:`` line may name their type inside the JSON
(``{"type": "token", ...}``), otherwise their ``text`` is treated as a token.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from src.utils.config import (
    get_answer_backend_timeout_seconds,
    get_answer_backend_url,
    get_internal_auth_secret,
)
from src.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SILENCE_MESSAGE = "Unable to provide a grounded answer."


class AnswerBackendError(Exception):
    """The answer backend failed, timed out or returned a non-2xx status."""

    def __init__(
        self, message: str, *, status_code: int | None = None, response_body: Any | None = None
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


@dataclass(frozen=True)
class Citation:
    index: int
    excerpt: str
    document_id: str | None = None
    document_name: str | None = None

    @classmethod
    def from_payload(cls, raw: dict[str, Any], position: int) -> Citation:
        index = raw.get("citationIndex", raw.get("index", position + 1))
        return cls(
            index=int(index),
            excerpt=str(raw.get("excerpt") or ""),
            document_id=raw.get("documentId") or raw.get("document_id"),
            document_name=raw.get("documentName") or raw.get("document_name"),
        )


@dataclass
class AnswerResult:
    text: str = ""
    citations: list[Citation] = field(default_factory=list)
    confidence: float | None = None
    is_silence: bool = False
    suggestions: list[str] = field(default_factory=list)

    def should_stay_silent(self, threshold: float) -> bool:
        """Silence was signalled explicitly, or confidence fell below ``threshold``."""
        if self.is_silence:
            return True
        return self.confidence is not None and self.confidence < threshold

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> AnswerResult:
        citations = data.get("citations") or []
        confidence = data.get("confidence")
        return cls(
            text=str(data.get("answer") or data.get("text") or ""),
            citations=[Citation.from_payload(c, i) for i, c in enumerate(citations)],
            confidence=float(confidence) if confidence is not None else None,
            is_silence=bool(data.get("silence") or data.get("isSilence")),
            suggestions=list(data.get("suggestions") or []),
        )


class AnswerAccumulator:
    """Folds parsed SSE frames into an ``AnswerResult``."""

    def __init__(self) -> None:
        self._tokens: list[str] = []
        self._silence_text: str | None = None
        self.result = AnswerResult()

    def apply(self, event_type: str | None, data: Any) -> None:
        if event_type is None and isinstance(data, dict):
            event_type = data.get("type")

        match event_type:
            case "token":
                self._tokens.append(self._text_of(data))
            case "citations":
                raw = data.get("citations", []) if isinstance(data, dict) else data
                if isinstance(raw, list):
                    self.result.citations = [
                        Citation.from_payload(c, i) for i, c in enumerate(raw) if isinstance(c, dict)
                    ]
            case "confidence":
                if isinstance(data, dict):
                    score = data.get("score", data.get("confidence"))
                else:
                    score = data
                if isinstance(score, int | float):
                    self.result.confidence = float(score)
            case "silence":
                payload = data if isinstance(data, dict) else {}
                self.result.is_silence = True
                self._silence_text = payload.get("message") or DEFAULT_SILENCE_MESSAGE
                self.result.confidence = float(payload.get("confidence") or 0.0)
                self.result.suggestions = list(payload.get("suggestions") or [])
            case "done" | "status":
                pass
            case _:
                text = self._text_of(data)
                if text:
                    self._tokens.append(text)

    def finish(self) -> AnswerResult:
        if self._silence_text is not None:
            self.result.text = self._silence_text
        else:
            self.result.text = "".join(self._tokens)
        return self.result

    @staticmethod
    def _text_of(data: Any) -> str:
        if isinstance(data, str):
            return data
        if isinstance(data, dict):
            text = data.get("text") or data.get("content") or ""
            return text if isinstance(text, str) else ""
        return ""


def parse_sse_lines(lines: Iterable[str], accumulator: AnswerAccumulator | None = None) -> AnswerResult:
    """Parse SSE lines (without trailing newlines) into an ``AnswerResult``."""
    accumulator = accumulator or AnswerAccumulator()
    event_type: str | None = None
    data_lines: list[str] = []

    def flush() -> None:
        nonlocal event_type, data_lines
        if data_lines:
            raw = "\n".join(data_lines)
            try:
                accumulator.apply(event_type, json.loads(raw))
            except json.JSONDecodeError:
                logger.debug("Skipping malformed SSE data frame", event_type=event_type)
        event_type = None
        data_lines = []

    for line in lines:
        if not line:
            flush()
        elif line.startswith(":"):
            continue
        elif line.startswith("event:"):
            event_type = line[len("event:") :].strip()
        elif line.startswith("data:"):
            data_lines.append(line[len("data:") :].strip())

    flush()
    return accumulator.finish()


class AnswerBackendClient:
    """Async client for the answer backend's chat endpoint."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        internal_auth_secret: str | None = None,
        timeout_seconds: float | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._internal_auth_secret = internal_auth_secret or get_internal_auth_secret() or ""
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=(base_url or get_answer_backend_url()).rstrip("/"),
            timeout=timeout_seconds or get_answer_backend_timeout_seconds(),
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def ask(
        self,
        query: str,
        *,
        user_id: str,
        history: Sequence[dict[str, str]] = (),
        mode: str = "concise",
    ) -> AnswerResult:
        payload = {
            "query": query,
            "mode": mode,
            "stream": True,
            "history": list(history),
        }
        headers = {
            "X-Internal-Auth": self._internal_auth_secret,
            "X-User-ID": user_id,
            "Accept": "text/event-stream, application/json",
        }

        try:
            async with self._client.stream(
                "POST", "/api/chat", json=payload, headers=headers
            ) as response:
                if not 200 <= response.status_code < 300:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise AnswerBackendError(
                        f"Answer backend returned {response.status_code}",
                        status_code=response.status_code,
                        response_body=body[:500],
                    )

                content_type = response.headers.get("content-type", "")
                if "application/json" in content_type:
                    data = json.loads(await response.aread())
                    return AnswerResult.from_json(data if isinstance(data, dict) else {})

                lines = [line async for line in response.aiter_lines()]
                return parse_sse_lines(lines)
        except httpx.TimeoutException as e:
            raise AnswerBackendError(f"Answer backend timed out: {e}") from e
        except httpx.TransportError as e:
            raise AnswerBackendError(f"Answer backend unreachable: {e}") from e
