"""Tests for ROAM plain-text rendering."""

from connectors.roam.roam_format import (
    ROAM_MAX_CHARS,
    SOURCES_HEADER,
    TRUNCATION_MARKER,
    enforce_char_limit,
    format_answer,
    format_meeting_summary,
    format_silence,
    strip_markdown,
    truncate_excerpt,
)
from src.clients.answer_backend import Citation


class TestStripMarkdown:
    def test_emphasis_and_links(self):
        text = "**Bold** and *italic* with a [link](https://example.com) and `code`"

        assert strip_markdown(text) == "Bold and italic with a link and code"

    def test_headings_and_quotes(self):
        text = "# Title\n> quoted line\n---\nbody"

        assert strip_markdown(text) == "Title\n│ quoted line\n───\nbody"

    def test_code_fence_keeps_contents(self):
        text = "before\n```python\nprint('x')\n```\nafter"

        result = strip_markdown(text)

        assert "```" not in result
        assert "print('x')" in result

    def test_snake_case_identifiers_untouched(self):
        assert strip_markdown("use refund_policy_v2 here") == "use refund_policy_v2 here"

    def test_collapses_blank_lines(self):
        assert strip_markdown("a\n\n\n\nb") == "a\n\nb"


class TestLimits:
    def test_excerpt_truncated_with_ellipsis(self):
        result = truncate_excerpt("x" * 200, 10)

        assert len(result) == 10
        assert result.endswith("…")

    def test_short_excerpt_unchanged(self):
        assert truncate_excerpt("short") == "short"

    def test_char_limit(self):
        result = enforce_char_limit("y" * (ROAM_MAX_CHARS + 50))

        assert len(result) == ROAM_MAX_CHARS
        assert result.endswith(TRUNCATION_MARKER)


class TestFormatAnswer:
    def test_citations_become_footnotes(self):
        citations = [
            Citation(index=1, excerpt="Refunds within 30 days", document_name="Policy.pdf"),
            Citation(index=2, excerpt="Contact support"),
        ]

        result = format_answer("Refunds take **30 days** [1].", citations)

        assert result.startswith("Refunds take 30 days [1].")
        assert SOURCES_HEADER in result
        assert '[1] Policy.pdf: "Refunds within 30 days"' in result
        assert '[2] Document: "Contact support"' in result

    def test_citations_can_be_omitted(self):
        citations = [Citation(index=1, excerpt="e")]

        result = format_answer("Answer", citations, include_citations=False)

        assert result == "Answer"

    def test_low_confidence_warning(self):
        result = format_answer("Maybe", confidence=0.7)

        assert "⚠ Confidence: 70%" in result

    def test_high_confidence_has_no_warning(self):
        assert "Confidence" not in format_answer("Sure", confidence=0.9)

    def test_long_answer_capped(self):
        assert len(format_answer("z" * 10_000)) == ROAM_MAX_CHARS


class TestFormatSilence:
    def test_without_suggestions(self):
        result = format_silence("Mercury")

        assert result.startswith("🔇 Mercury: Silence Protocol")
        assert "You might try" not in result

    def test_with_suggestions(self):
        result = format_silence("Mercury", ["Upload the contract", "Rephrase"])

        assert "  • Upload the contract" in result
        assert "  • Rephrase" in result


class TestFormatMeetingSummary:
    def test_full_summary(self):
        result = format_meeting_summary(
            "Mercury", "Weekly sync", ["Ada", "Grace"], "## Decisions\n- ship it", 1800
        )

        assert result.startswith("📋 Mercury: Meeting Summary")
        assert "Meeting: Weekly sync" in result
        assert "Participants: Ada, Grace" in result
        assert "Duration: 30 min" in result
        assert "Decisions" in result
        assert "##" not in result

    def test_optional_lines_omitted(self):
        result = format_meeting_summary("Mercury", "Standup", [], "Nothing new", None)

        assert "Participants" not in result
        assert "Duration" not in result
