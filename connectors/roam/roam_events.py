"""
Typed ROAM webhook events.

A delivery is parsed exactly once, at the boundary, into one of the event
variants below. Downstream code pattern-matches on the variant and never
looks at raw payload keys again.

Deliveries arrive in one of two shapes:

- a direct event: ``{"type": "chat.message.dm", "data": {...}}``
- a push-queue envelope wrapping a base64 event:
  ``{"message": {"data": "<b64>", "messageId": "...", "attributes": {...}}, "subscription": "..."}``

Two payload dialects are accepted for chat messages: the current one
(``sender: {id, name}``, ``chat: {id}``) and the older flat one
(``sender_id``, ``group_id``).
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict

DIRECT_MESSAGE_TYPES = frozenset({"chat.message.dm"})
GROUP_MESSAGE_TYPES = frozenset({"chat.message.group", "chat.message.channel", "message.created"})
MENTION_TYPES = frozenset({"chat.message.mention"})
REACTION_TYPES = frozenset({"chat.message.reaction", "reaction.added"})
TRANSCRIPT_TYPES = frozenset({"transcript.saved"})


class MalformedEventError(ValueError):
    """The delivery could not be decoded into a ROAM event."""


class _RoamEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: str
    message_id: str | None = None


class DirectMessage(_RoamEvent):
    kind: Literal["direct_message"] = "direct_message"
    conversation_id: str
    sender_id: str
    sender_name: str | None = None
    text: str
    thread_id: str | None = None


class GroupMessage(_RoamEvent):
    kind: Literal["group_message"] = "group_message"
    conversation_id: str
    sender_id: str
    sender_name: str | None = None
    text: str
    thread_id: str | None = None
    mention_ids: tuple[str, ...] = ()
    # True when ROAM itself classified the event as a mention of the app
    explicit_mention: bool = False


class TranscriptSaved(_RoamEvent):
    kind: Literal["transcript_saved"] = "transcript_saved"
    transcript_id: str
    conversation_id: str | None = None
    title: str | None = None


class Reaction(_RoamEvent):
    kind: Literal["reaction"] = "reaction"
    conversation_id: str | None = None
    target_message_id: str | None = None
    user_id: str | None = None
    emoji: str | None = None


class UnknownEvent(_RoamEvent):
    kind: Literal["unknown"] = "unknown"


RoamEvent = DirectMessage | GroupMessage | TranscriptSaved | Reaction | UnknownEvent


@dataclass(frozen=True)
class RoamDelivery:
    """An unwrapped delivery: the event payload plus the envelope's message id, if any."""

    payload: dict[str, Any]
    envelope_message_id: str | None = None

    @property
    def event_type(self) -> str:
        return str(self.payload.get("type") or "unknown")


def unwrap_roam_delivery(body: bytes | str) -> RoamDelivery:
    """Decode a raw delivery body, unwrapping a push-queue envelope when present."""
    try:
        parsed = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedEventError(f"Delivery body is not valid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise MalformedEventError("Delivery body is not a JSON object")

    message = parsed.get("message")
    if not isinstance(message, dict):
        return RoamDelivery(payload=parsed)

    encoded = message.get("data")
    if not encoded or not isinstance(encoded, str):
        raise MalformedEventError("Push envelope is missing message data")

    try:
        decoded = base64.b64decode(encoded, validate=True)
        payload = json.loads(decoded)
    except (binascii.Error, ValueError) as e:
        raise MalformedEventError(f"Push envelope data could not be decoded: {e}") from e

    if not isinstance(payload, dict):
        raise MalformedEventError("Push envelope data is not a JSON object")

    message_id = message.get("messageId") or message.get("message_id")
    return RoamDelivery(payload=payload, envelope_message_id=str(message_id) if message_id else None)


def _nested_id(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if isinstance(value, dict) and value.get("id"):
        return str(value["id"])
    return None


def _optional_str(value: Any) -> str | None:
    return str(value) if value not in (None, "") else None


def _mention_ids(data: dict[str, Any]) -> tuple[str, ...]:
    mentions = data.get("mentions") or []
    if not isinstance(mentions, list):
        return ()
    ids: list[str] = []
    for mention in mentions:
        if isinstance(mention, dict) and mention.get("id"):
            ids.append(str(mention["id"]))
        elif isinstance(mention, str):
            ids.append(mention)
    return tuple(ids)


def _message_fields(event_type: str, data: dict[str, Any]) -> dict[str, Any]:
    conversation_id = (
        _nested_id(data, "chat")
        or _optional_str(data.get("group_id"))
        or _optional_str(data.get("chat_id"))
    )
    if not conversation_id:
        raise MalformedEventError(f"{event_type} event has no conversation id")

    sender = data.get("sender") if isinstance(data.get("sender"), dict) else {}
    return {
        "event_type": event_type,
        "message_id": _optional_str(data.get("id") or data.get("message_id")),
        "conversation_id": conversation_id,
        "sender_id": str(sender.get("id") or data.get("sender_id") or ""),
        "sender_name": _optional_str(sender.get("name") or data.get("sender_name")),
        "text": str(data.get("text") or ""),
        "thread_id": _optional_str(data.get("thread_id")),
    }


def parse_roam_event(payload: dict[str, Any]) -> RoamEvent:
    """Classify a decoded event payload into exactly one event variant.

    Raises:
        MalformedEventError: If a recognised event type is missing required fields
    """
    event_type = str(payload.get("type") or "")
    data = payload.get("data")
    if not isinstance(data, dict):
        data = {}

    if event_type in DIRECT_MESSAGE_TYPES:
        return DirectMessage(**_message_fields(event_type, data))

    if event_type in GROUP_MESSAGE_TYPES or event_type in MENTION_TYPES:
        return GroupMessage(
            **_message_fields(event_type, data),
            mention_ids=_mention_ids(data),
            explicit_mention=event_type in MENTION_TYPES,
        )

    if event_type in TRANSCRIPT_TYPES:
        transcript_id = _optional_str(data.get("transcript_id")) or _nested_id(data, "transcript")
        if not transcript_id:
            raise MalformedEventError("transcript.saved event has no transcript id")
        return TranscriptSaved(
            event_type=event_type,
            # Transcripts have no message id; the transcript id identifies the delivery
            message_id=transcript_id,
            transcript_id=transcript_id,
            conversation_id=_nested_id(data, "chat") or _optional_str(data.get("group_id")),
            title=_optional_str(data.get("title")),
        )

    if event_type in REACTION_TYPES:
        return Reaction(
            event_type=event_type,
            message_id=_optional_str(data.get("id")),
            conversation_id=_nested_id(data, "chat") or _optional_str(data.get("group_id")),
            target_message_id=_optional_str(data.get("message_id")),
            user_id=_nested_id(data, "user") or _optional_str(data.get("user_id")),
            emoji=_optional_str(data.get("emoji")),
        )

    return UnknownEvent(event_type=event_type or "unknown", message_id=_optional_str(data.get("id")))
