"""
Render assistant output as ROAM-safe plain text.

ROAM does not render markdown, so answers are stripped to plain text,
inline citations become a footnote block, and every message is capped at
ROAM's 4000 character limit.
"""

import re
from collections.abc import Sequence

from src.clients.answer_backend import Citation

ROAM_MAX_CHARS = 4000
TRUNCATION_MARKER = "\n\n[…response truncated]"
LOW_CONFIDENCE_THRESHOLD = 0.75
CITATION_EXCERPT_CHARS = 120
SOURCES_HEADER = "─── Sources ───"

_CODE_FENCE = re.compile(r"```[\s\S]*?```")
_FENCE_MARKER = re.compile(r"```\w*\n?")
_MARKDOWN_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"`([^`]+)`"), r"\1"),
    (re.compile(r"!\[([^\]]*)\]\([^)]+\)"), r"\1"),
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
    # bold+italic before bold before italic
    (re.compile(r"\*\*\*(.+?)\*\*\*"), r"\1"),
    (re.compile(r"\*\*(.+?)\*\*"), r"\1"),
    (re.compile(r"\*(.+?)\*"), r"\1"),
    (re.compile(r"__(.+?)__"), r"\1"),
    (re.compile(r"(?<!\w)_(.+?)_(?!\w)"), r"\1"),
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"^[-*_]{3,}$", re.MULTILINE), "───"),
    (re.compile(r"^>\s?", re.MULTILINE), "│ "),
    (re.compile(r"\n{3,}"), "\n\n"),
]


def strip_markdown(text: str) -> str:
    text = _CODE_FENCE.sub(lambda m: _FENCE_MARKER.sub("", m.group(0)).replace("```", ""), text)
    for pattern, replacement in _MARKDOWN_RULES:
        text = pattern.sub(replacement, text)
    return text.strip()


def truncate_excerpt(text: str, max_len: int = CITATION_EXCERPT_CHARS) -> str:
    if len(text) <= max_len:
        return text
    return text[: max_len - 1] + "…"


def enforce_char_limit(text: str, limit: int = ROAM_MAX_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER


def format_answer(
    answer: str,
    citations: Sequence[Citation] = (),
    *,
    confidence: float | None = None,
    include_citations: bool = True,
) -> str:
    """Format a grounded answer with footnotes and, when shaky, a confidence warning."""
    text = strip_markdown(answer)

    if include_citations and citations:
        footnotes = "\n".join(
            f'[{c.index}] {c.document_name or "Document"}: "{truncate_excerpt(c.excerpt)}"'
            for c in citations
        )
        text = f"{text}\n\n{SOURCES_HEADER}\n{footnotes}"

    if confidence is not None and confidence < LOW_CONFIDENCE_THRESHOLD:
        text = (
            f"{text}\n\n⚠ Confidence: {round(confidence * 100)}%. "
            "Verify against source documents."
        )

    return enforce_char_limit(text)


def format_silence(assistant_name: str, suggestions: Sequence[str] = ()) -> str:
    """Structured refusal sent when the backend declines to answer."""
    lines = [
        f"🔇 {assistant_name}: Silence Protocol",
        "",
        "I cannot provide a confident answer to this query based on the documents in your vault.",
        "Rather than speculate, I choose to remain silent.",
    ]

    if suggestions:
        lines.extend(["", "You might try:"])
        lines.extend(f"  • {s}" for s in suggestions)

    lines.extend(["", "Upload relevant documents to the Vault to improve coverage."])
    return enforce_char_limit("\n".join(lines))


def format_meeting_summary(
    assistant_name: str,
    title: str,
    participants: Sequence[str],
    summary: str,
    duration_seconds: float | None = None,
) -> str:
    lines = [f"📋 {assistant_name}: Meeting Summary", "", f"Meeting: {title}"]

    if participants:
        lines.append(f"Participants: {', '.join(participants)}")

    if duration_seconds and duration_seconds > 0:
        lines.append(f"Duration: {round(duration_seconds / 60)} min")

    lines.extend(["", "───", "", strip_markdown(summary)])
    return enforce_char_limit("\n".join(lines))
