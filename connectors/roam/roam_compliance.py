"""
ROAM compliance export parsing.

ROAM publishes one NDJSON export per UTC day. Each line is a message event:

    {"eventType": "sent", "chatId": "...", "messageId": "...",
     "timestamp": "1760000000000000", "sender": {"name": "...", "email": "..."},
     "contentType": "text", "content": {"text": "..."}}

Timestamps are microseconds since the epoch, sent as strings. Only ``sent``
events with text survive extraction; edits and deletions are dropped.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from datetime import UTC, date, datetime

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.utils.logging import get_logger

logger = get_logger(__name__)

SENT_EVENT = "sent"
UNKNOWN_SENDER = "Unknown"
LINE_PREVIEW_CHARS = 80


class ComplianceSender(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str | None = None
    name: str | None = None
    type: str | None = None


class ComplianceContent(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    text: str | None = None
    markdown_text: str | None = Field(default=None, alias="markdownText")


class ComplianceEvent(BaseModel):
    """One line of the daily export."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    event_type: str = Field(alias="eventType")
    chat_id: str = Field(alias="chatId")
    message_id: str = Field(alias="messageId")
    timestamp: str | int
    thread_timestamp: str | int | None = Field(default=None, alias="threadTimestamp")
    sender: ComplianceSender | None = None
    content_type: str | None = Field(default=None, alias="contentType")
    content: ComplianceContent | None = None


class ConversationMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    chat_id: str
    message_id: str
    sender_name: str
    sender_email: str | None = None
    text: str
    timestamp: datetime


def parse_roam_timestamp(value: str) -> datetime:
    """Microseconds since the epoch, falling back to ISO 8601.

    Raises:
        ValueError: If the value is neither.
        OverflowError: If the value is out of range for a datetime.
    """
    value = value.strip()
    if value.isascii() and value.isdigit():
        return datetime.fromtimestamp(int(value) / 1_000_000, tz=UTC)

    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def parse_compliance_ndjson(ndjson: str) -> list[ComplianceEvent]:
    """Parse an export body. Blank lines are ignored, broken lines skipped with a warning."""
    events: list[ComplianceEvent] = []
    for line in ndjson.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            events.append(ComplianceEvent.model_validate(json.loads(line)))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(
                "Skipping unparseable compliance export line",
                line_preview=line[:LINE_PREVIEW_CHARS],
                error_type=type(e).__name__,
            )
    return events


def extract_text_messages(events: Iterable[ComplianceEvent]) -> list[ConversationMessage]:
    """Keep sent events with text, oldest first."""
    messages: list[ConversationMessage] = []
    for event in events:
        content = event.content or ComplianceContent()
        sender = event.sender or ComplianceSender()
        text = content.text or content.markdown_text
        if event.event_type != SENT_EVENT or not text:
            continue
        try:
            timestamp = parse_roam_timestamp(str(event.timestamp))
        except (ValueError, OverflowError, OSError):
            logger.warning(
                "Skipping compliance event with unreadable timestamp",
                message_id=event.message_id,
                timestamp=event.timestamp,
            )
            continue
        messages.append(
            ConversationMessage(
                chat_id=event.chat_id,
                message_id=event.message_id,
                sender_name=sender.name or sender.email or UNKNOWN_SENDER,
                sender_email=sender.email,
                text=text,
                timestamp=timestamp,
            )
        )
    return sorted(messages, key=lambda m: m.timestamp)


def group_by_chat(messages: Iterable[ConversationMessage]) -> dict[str, list[ConversationMessage]]:
    """Group messages by chat, preserving order within each chat and first-seen chat order."""
    groups: dict[str, list[ConversationMessage]] = {}
    for message in messages:
        groups.setdefault(message.chat_id, []).append(message)
    return groups


def participants(messages: Iterable[ConversationMessage]) -> list[str]:
    return list(dict.fromkeys(m.sender_name for m in messages))


def format_conversation_document(
    messages: Sequence[ConversationMessage], export_date: date, chat_id: str
) -> str:
    date_display = f"{export_date:%A}, {export_date:%B} {export_date.day}, {export_date.year}"
    lines = [
        f"ROAM Conversation Export: {date_display}",
        f"Chat: {chat_id}",
        f"Participants: {', '.join(participants(messages))}",
        f"Messages: {len(messages)}",
        "",
        "---",
        "",
    ]
    # Times are rendered in UTC
    lines.extend(f"[{m.timestamp:%I:%M %p}] {m.sender_name}: {m.text}" for m in messages)
    return "\n".join(lines)
