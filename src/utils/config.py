"""Configuration utility for the ROAM bridge.

All settings come from environment variables. Values are parsed into
bools/ints where they look like one, so callers can pass typed defaults.
"""

import os
from typing import Any

DEFAULT_ROAM_API_URL = "https://api.ro.am/v1"
DEFAULT_ROAM_V0_API_URL = "https://api.ro.am/v0"


def parse_config_value(value: str) -> str | bool | int | float:
    if value.lower() == "true":
        return True
    elif value.lower() == "false":
        return False
    else:
        try:
            return int(value)
        except ValueError:
            try:
                return float(value)
            except ValueError:
                return value


def get_config_value(key: str, default: Any = None) -> Any:
    """Get a configuration value from environment variables.

    Args:
        key: Configuration key name (e.g., "ROAM_API_URL")
        default: Default value if key not found

    Returns:
        Parsed configuration value or default
    """
    env_value = os.environ.get(key)
    if env_value is not None:
        return parse_config_value(env_value)

    return default


def get_config_value_str(key: str, default: str | None = None) -> str | None:
    """
    Get a configuration value without parsing. Secrets and ids that happen to look numeric stay strings.
    """
    return os.environ.get(key, default)


def require_config_value(key: str) -> str:
    value = os.environ.get(key)
    if value is None:
        raise ValueError(f"Environment variable {key} is required")
    return value


def get_bridge_environment() -> str:
    """Deployment environment name (local, staging, production)."""
    return os.environ.get("ROAM_BRIDGE_ENVIRONMENT", "local")


def get_control_database_url() -> str:
    """Get control database connection URL.

    Raises:
        ValueError: If CONTROL_DATABASE_URL is not configured
    """
    url = get_config_value_str("CONTROL_DATABASE_URL")
    if url:
        return url

    raise ValueError(
        "Control database URL not found. Please provide CONTROL_DATABASE_URL environment variable"
    )


# ROAM platform


def get_roam_api_url() -> str:
    return get_config_value_str("ROAM_API_URL") or DEFAULT_ROAM_API_URL


def get_roam_v0_api_url() -> str:
    """Base URL of the legacy v0 API that hosts webhook subscription endpoints."""
    return get_config_value_str("ROAM_V0_API_URL") or DEFAULT_ROAM_V0_API_URL


def get_roam_api_key() -> str | None:
    """Global fallback API key used when a tenant has no credential of its own."""
    return get_config_value_str("ROAM_API_KEY")


def get_roam_webhook_secret() -> str | None:
    return get_config_value_str("ROAM_WEBHOOK_SECRET")


def get_roam_webhook_url() -> str | None:
    """Public URL ROAM should deliver events to."""
    return get_config_value_str("ROAM_WEBHOOK_URL")


def get_roam_webhook_tolerance_seconds() -> int:
    return int(get_config_value("ROAM_WEBHOOK_TOLERANCE_SECONDS", 300))


def get_roam_assistant_id() -> str:
    """ROAM user id of the assistant itself, used for loop prevention."""
    return get_config_value_str("ROAM_ASSISTANT_ID", "mercury") or "mercury"


def get_roam_assistant_name() -> str:
    return get_config_value_str("ROAM_ASSISTANT_NAME", "Mercury") or "Mercury"


def get_roam_default_tenant_id() -> str | None:
    return get_config_value_str("ROAM_DEFAULT_TENANT_ID")


def get_roam_default_user_id() -> str | None:
    return get_config_value_str("ROAM_DEFAULT_USER_ID")


def get_roam_default_mention_only() -> bool:
    return bool(get_config_value("ROAM_DEFAULT_MENTION_ONLY", True))


def get_roam_block_kit_enabled() -> bool:
    """Reply with Block Kit messages and feedback buttons instead of plain text."""
    return bool(get_config_value("ROAM_BLOCK_KIT_ENABLED", False))


def get_roam_sources_url() -> str | None:
    """Target of the "View Sources" button on Block Kit replies. No button when unset."""
    return get_config_value_str("ROAM_SOURCES_URL")


# Internal collaborators


def get_answer_backend_url() -> str:
    return get_config_value_str("ANSWER_BACKEND_URL") or "http://localhost:8080"


def get_answer_backend_timeout_seconds() -> float:
    return float(get_config_value("ANSWER_BACKEND_TIMEOUT_SECONDS", 60))


def get_vault_api_url() -> str:
    return get_config_value_str("VAULT_API_URL") or get_answer_backend_url()


def get_internal_auth_secret() -> str | None:
    """Shared secret for service-to-service calls and the admin surface."""
    return get_config_value_str("INTERNAL_AUTH_SECRET")


# Credential vault


def get_credential_vault_mode() -> str | None:
    """Explicit vault mode ("kms" or "fernet"); None means pick by environment."""
    mode = get_config_value_str("CREDENTIAL_VAULT_MODE")
    return mode.lower() if mode else None


def get_kms_key_id() -> str | None:
    return get_config_value_str("KMS_KEY_ID")


def get_credential_vault_fernet_key() -> str | None:
    return get_config_value_str("CREDENTIAL_VAULT_FERNET_KEY")
