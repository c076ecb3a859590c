"""Environment switching utilities for the ROAM bridge."""

from collections.abc import Callable
from enum import Enum
from typing import TypeVar

from src.utils.config import get_bridge_environment

T = TypeVar("T")


class Env(str, Enum):
    """Bridge deployment environment."""

    LOCAL = "local"
    STAGING = "staging"
    PRODUCTION = "production"


def current_env() -> Env:
    """Get the current deployment environment.

    Raises:
        ValueError: If ROAM_BRIDGE_ENVIRONMENT contains an unexpected value
    """
    env_str = get_bridge_environment()

    try:
        return Env(env_str)
    except ValueError:
        raise ValueError(f"Unexpected environment: {env_str}")


def switch_env(envs: dict[Env, T | Callable[[], T]], env: Env | None = None) -> T:
    """Pick an environment-specific value, calling it first if it is callable.

    Example:
        >>> vault_mode = switch_env({
        ...     Env.LOCAL: "fernet",
        ...     Env.STAGING: "kms",
        ...     Env.PRODUCTION: "kms",
        ... })
    """
    if env is None:
        env = current_env()

    value = envs[env]

    if callable(value):
        return value()
    return value


def default_credential_vault_mode() -> str:
    """Local development has no KMS key, so it encrypts with Fernet instead."""
    return switch_env({Env.LOCAL: "fernet", Env.STAGING: "kms", Env.PRODUCTION: "kms"})
