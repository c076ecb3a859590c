# Block Kit
from connectors.roam.roam_block_kit import (
    BlockAction,
    BlockKitMessage,
    InteractionAction,
    build_answer_blocks,
    format_for_mrkdwn,
    parse_block_action,
)

# Compliance export
from connectors.roam.roam_compliance import (
    ComplianceEvent,
    ConversationMessage,
    extract_text_messages,
    format_conversation_document,
    group_by_chat,
    parse_compliance_ndjson,
)

# Events
from connectors.roam.roam_events import (
    DirectMessage,
    GroupMessage,
    MalformedEventError,
    Reaction,
    RoamDelivery,
    RoamEvent,
    TranscriptSaved,
    UnknownEvent,
    parse_roam_event,
    unwrap_roam_delivery,
)

# Formatting
from connectors.roam.roam_format import (
    format_answer,
    format_meeting_summary,
    format_silence,
    strip_markdown,
)

# Webhook subscriptions
from connectors.roam.roam_subscriptions import (
    DEFAULT_EVENT_TYPES,
    RoamSubscriptionManager,
    WebhookSubscription,
)

# Webhook Handlers
from connectors.roam.roam_webhook_handler import (
    RoamWebhookVerifier,
    extract_roam_webhook_metadata,
    verify_roam_webhook,
)

__all__ = [
    # Block Kit
    "BlockAction",
    "BlockKitMessage",
    "InteractionAction",
    "build_answer_blocks",
    "format_for_mrkdwn",
    "parse_block_action",
    # Compliance export
    "ComplianceEvent",
    "ConversationMessage",
    "extract_text_messages",
    "format_conversation_document",
    "group_by_chat",
    "parse_compliance_ndjson",
    # Events
    "DirectMessage",
    "GroupMessage",
    "TranscriptSaved",
    "Reaction",
    "UnknownEvent",
    "RoamEvent",
    "RoamDelivery",
    "MalformedEventError",
    "parse_roam_event",
    "unwrap_roam_delivery",
    # Formatting
    "format_answer",
    "format_silence",
    "format_meeting_summary",
    "strip_markdown",
    # Webhook subscriptions
    "DEFAULT_EVENT_TYPES",
    "RoamSubscriptionManager",
    "WebhookSubscription",
    # Webhook Handlers
    "RoamWebhookVerifier",
    "verify_roam_webhook",
    "extract_roam_webhook_metadata",
]
