"""
Block Kit replies and button callbacks for ROAM.

Block Kit messages use Slack-style mrkdwn rather than plain text, and carry
feedback buttons whose ``value`` is the query id of the answer they belong
to. Clicking a button makes ROAM POST a ``block_actions`` payload to the
interactivity URL, parsed here by ``parse_block_action``.

Constraints ROAM enforces on a Block Kit message:

- at most 10 blocks
- ``blocks`` and ``text`` are mutually exclusive
- a single newline does not render as a line break; paragraphs need two
"""

from __future__ import annotations

import json
import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from connectors.roam.roam_events import MalformedEventError
from connectors.roam.roam_format import LOW_CONFIDENCE_THRESHOLD, enforce_char_limit
from src.clients.answer_backend import Citation

MAX_BLOCKS = 10
MAX_CODE_BLOCK_CHARS = 500
MAX_CONTEXT_CITATIONS = 5
BLOCK_ACTIONS_TYPE = "block_actions"

_CODE_FENCE = re.compile(r"```[\s\S]*?```")
_FENCE_MARKER = re.compile(r"```\w*\n?")
_DOUBLE_STAR_BOLD = re.compile(r"\*\*(.+?)\*\*")
_LONE_NEWLINE = re.compile(r"(?<!\n)\n(?!\n)")


class InteractionAction(str, Enum):
    FEEDBACK_POSITIVE = "feedback_positive"
    FEEDBACK_NEGATIVE = "feedback_negative"
    ESCALATE = "escalate"
    MARK_RESOLVED = "mark_resolved"
    VIEW_SOURCE = "view_source"


class MessageColor(str, Enum):
    GOOD = "good"
    WARNING = "warning"
    DANGER = "danger"


@dataclass(frozen=True)
class BlockKitMessage:
    blocks: list[dict[str, Any]] = field(default_factory=list)
    color: MessageColor = MessageColor.GOOD


def _shorten_code_block(match: re.Match[str]) -> str:
    content = _FENCE_MARKER.sub("", match.group(0)).replace("```", "")
    if len(content) > MAX_CODE_BLOCK_CHARS:
        return f"`{content[:MAX_CODE_BLOCK_CHARS]}…`\n_… code truncated, ask for the full snippet_"
    return f"```{content}```"


def format_for_mrkdwn(text: str) -> str:
    """Convert markdown to ROAM mrkdwn: long code blocks shortened, ``**bold**`` to ``*bold*``."""
    text = _CODE_FENCE.sub(_shorten_code_block, text)
    text = _DOUBLE_STAR_BOLD.sub(r"*\1*", text)
    return _LONE_NEWLINE.sub("\n\n", text)


def _button(label: str, action: InteractionAction, query_id: str, style: str | None = None):
    button: dict[str, Any] = {
        "type": "button",
        "text": {"type": "plain_text", "text": label},
        "action_id": action.value,
        "value": query_id,
    }
    if style:
        button["style"] = style
    return button


def build_answer_blocks(
    answer: str,
    citations: Sequence[Citation] = (),
    *,
    confidence: float | None = None,
    query_id: str | None = None,
    is_silence: bool = False,
    sources_url: str | None = None,
) -> BlockKitMessage:
    """Build a Block Kit reply: answer section, sources/confidence context, feedback buttons.

    A silence reply gets no buttons; there is no answer to rate.
    """
    section_text = enforce_char_limit(format_for_mrkdwn(answer))
    blocks: list[dict[str, Any]] = [
        {"type": "section", "text": {"type": "mrkdwn", "text": section_text}}
    ]

    context_parts: list[str] = []
    if citations:
        names = [c.document_name or f"Doc {c.index}" for c in citations[:MAX_CONTEXT_CITATIONS]]
        context_parts.append(f"Sources: {', '.join(names)}")
    if confidence is not None:
        context_parts.append(f"Confidence: {round(confidence * 100)}%")
    if context_parts:
        blocks.append(
            {"type": "context", "elements": [{"type": "mrkdwn", "text": " · ".join(context_parts)}]}
        )

    if not is_silence:
        elements: list[dict[str, Any]] = []
        if sources_url:
            elements.append(
                {
                    "type": "button",
                    "text": {"type": "plain_text", "text": "View Sources"},
                    "url": sources_url,
                }
            )
        if query_id:
            elements.extend(
                [
                    _button("👍 Helpful", InteractionAction.FEEDBACK_POSITIVE, query_id, "primary"),
                    _button("👎 Not helpful", InteractionAction.FEEDBACK_NEGATIVE, query_id),
                    _button("Escalate", InteractionAction.ESCALATE, query_id, "danger"),
                    _button("Mark resolved", InteractionAction.MARK_RESOLVED, query_id),
                ]
            )
        if elements:
            blocks.append({"type": "actions", "elements": elements})

    if is_silence:
        color = MessageColor.DANGER
    elif confidence is not None and confidence < LOW_CONFIDENCE_THRESHOLD:
        color = MessageColor.WARNING
    else:
        color = MessageColor.GOOD

    return BlockKitMessage(blocks=blocks[:MAX_BLOCKS], color=color)


class InteractionUser(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str | None = None
    email: str | None = None
    name: str | None = None


class InteractionMessage(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    chat_id: str | None = Field(default=None, alias="chatId")
    timestamp: int | str | None = None
    thread_timestamp: int | str | None = Field(default=None, alias="threadTimestamp")


class BlockAction(BaseModel):
    """A button click delivered to the interactivity URL."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str = BLOCK_ACTIONS_TYPE
    client_id: str | None = Field(default=None, alias="clientId")
    user: InteractionUser | None = None
    message: InteractionMessage | None = None
    block_id: str | None = Field(default=None, alias="blockId")
    action_id: str = Field(alias="actionId")
    value: str | None = None

    @property
    def query_id(self) -> str | None:
        # Feedback buttons carry the query id as their value
        return self.value or None

    @property
    def user_id(self) -> str | None:
        return self.user.id if self.user else None

    @property
    def user_email(self) -> str | None:
        return self.user.email if self.user else None

    @property
    def conversation_id(self) -> str | None:
        return self.message.chat_id if self.message else None

    @property
    def thread_timestamp(self) -> str | None:
        if self.message is None or self.message.thread_timestamp is None:
            return None
        return str(self.message.thread_timestamp)

    @property
    def known_action(self) -> InteractionAction | None:
        try:
            return InteractionAction(self.action_id)
        except ValueError:
            return None


def parse_block_action(body: bytes | str) -> BlockAction:
    """Parse an interactivity payload.

    Raises:
        MalformedEventError: If the body is not JSON or has no ``actionId``.
    """
    try:
        parsed = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedEventError(f"Interactivity body is not valid JSON: {e}") from e

    if not isinstance(parsed, dict):
        raise MalformedEventError("Interactivity body is not a JSON object")

    try:
        return BlockAction.model_validate(parsed)
    except ValidationError as e:
        raise MalformedEventError(f"Interactivity payload is missing fields: {e}") from e
