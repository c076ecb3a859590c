"""New Relic logging integration helpers."""

from collections.abc import MutableMapping
from typing import Any

import newrelic.agent


def newrelic_error_processor(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor that reports error and critical logs to New Relic.

    The event dict is passed through unchanged.
    """
    if method_name in ("error", "critical"):
        newrelic.agent.notice_error(attributes={"log_message": str(event_dict.get("event", ""))})

    return event_dict
