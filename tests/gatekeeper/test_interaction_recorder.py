"""Tests for recording ROAM button clicks and routing them to the review queue."""

from unittest.mock import AsyncMock

import pytest

from connectors.roam.roam_block_kit import BlockAction

TENANT_ID = "tenant-1"


def click(action_id, value="q-1", **overrides):
    payload = {
        "type": "block_actions",
        "user": {"id": "U1", "email": "ada@example.com"},
        "message": {"chatId": "chat-1", "timestamp": 1760000000, "threadTimestamp": 1759999000},
        "actionId": action_id,
        "value": value,
    }
    payload.update(overrides)
    return BlockAction.model_validate(payload)


class TestRecording:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "action_id",
        ["feedback_positive", "feedback_negative", "escalate", "mark_resolved", "view_source", "new_button"],
    )
    async def test_every_click_is_recorded(self, interaction_recorder, interactions, action_id):
        await interaction_recorder.process(TENANT_ID, click(action_id))

        assert len(interactions.clicks) == 1
        recorded = interactions.clicks[0]
        assert recorded["tenant_id"] == TENANT_ID
        assert recorded["action_id"] == action_id
        assert recorded["query_id"] == "q-1"
        assert recorded["user_email"] == "ada@example.com"
        assert recorded["conversation_id"] == "chat-1"
        assert recorded["payload"]["actionId"] == action_id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action_id", ["feedback_positive", "view_source", "new_button"])
    async def test_record_only_actions(self, interaction_recorder, interactions, audit, action_id):
        await interaction_recorder.process(TENANT_ID, click(action_id))

        assert interactions.review_items == []
        assert audit.records == []

    @pytest.mark.asyncio
    async def test_write_failure_does_not_stop_routing(self, interaction_recorder, interactions):
        interactions.record = AsyncMock(side_effect=RuntimeError("db down"))

        await interaction_recorder.process(TENANT_ID, click("escalate"))

        assert [item["kind"] for item in interactions.review_items] == ["escalation"]


class TestReviewQueue:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("action_id", "kind", "action_type"),
        [
            ("feedback_negative", "feedback_review", "feedback-review"),
            ("escalate", "escalation", "escalation"),
        ],
    )
    async def test_opens_review_item(
        self, interaction_recorder, interactions, audit, action_id, kind, action_type
    ):
        await interaction_recorder.process(TENANT_ID, click(action_id))

        (item,) = interactions.review_items
        assert item["kind"] == kind
        assert item["status"] == "pending"
        assert item["query_id"] == "q-1"
        assert item["conversation_id"] == "chat-1"
        assert item["thread_timestamp"] == "1759999000"
        assert item["requested_by_email"] == "ada@example.com"
        assert audit.action_types() == [action_type]
        assert audit.records[0]["metadata"]["review_item_id"] == str(item["id"])

    @pytest.mark.asyncio
    async def test_mark_resolved_closes_only_that_query(self, interaction_recorder, interactions, audit):
        await interaction_recorder.process(TENANT_ID, click("escalate"))
        await interaction_recorder.process(TENANT_ID, click("feedback_negative"))
        await interaction_recorder.process(TENANT_ID, click("escalate", value="q-2"))

        await interaction_recorder.process(TENANT_ID, click("mark_resolved"))

        statuses = {(i["query_id"], i["kind"]): i["status"] for i in interactions.review_items}
        assert statuses == {
            ("q-1", "escalation"): "resolved",
            ("q-1", "feedback_review"): "resolved",
            ("q-2", "escalation"): "pending",
        }
        resolved = audit.records[-1]
        assert resolved["action_type"].value == "thread-resolved"
        assert resolved["metadata"]["resolved_count"] == 2
        assert resolved["metadata"]["resolved_by"] == "ada@example.com"

    @pytest.mark.asyncio
    async def test_resolver_falls_back_to_user_id(self, interaction_recorder, audit):
        await interaction_recorder.process(TENANT_ID, click("mark_resolved", user={"id": "U7"}))

        assert audit.records[0]["metadata"]["resolved_by"] == "U7"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action_id", ["feedback_negative", "escalate", "mark_resolved"])
    async def test_missing_query_id_is_recorded_but_not_routed(
        self, interaction_recorder, interactions, audit, action_id
    ):
        await interaction_recorder.process(TENANT_ID, click(action_id, value=None))

        assert len(interactions.clicks) == 1
        assert interactions.review_items == []
        assert audit.records == []
