"""Reversible encryption of per-tenant ROAM API keys.

Stored values carry a scheme prefix so that ciphertext can be told apart from
historical plaintext keys (``roam_live_sk_...``) without a lookup:

- ``kms:<base64 ciphertext blob>``: AWS KMS, used in staging and production
- ``fernet:<token>``: local Fernet key, used in local development
"""

from __future__ import annotations

import base64
from typing import Protocol

from cryptography.fernet import Fernet, InvalidToken

from src.clients.kms import KMSClient
from src.utils.config import get_credential_vault_fernet_key, get_credential_vault_mode
from src.utils.env import default_credential_vault_mode
from src.utils.logging import get_logger

logger = get_logger(__name__)

KMS_PREFIX = "kms:"
FERNET_PREFIX = "fernet:"


class CredentialDecryptionError(Exception):
    """Raised when a stored credential cannot be decrypted."""


class CredentialVault(Protocol):
    """Encrypts and decrypts tenant credentials."""

    async def encrypt(self, plaintext: str) -> str: ...

    async def decrypt(self, ciphertext: str) -> str: ...

    def is_encrypted(self, value: str) -> bool: ...


class KMSCredentialVault:
    prefix = KMS_PREFIX

    def __init__(self, kms_client: KMSClient | None = None):
        self.kms_client = kms_client or KMSClient()

    async def encrypt(self, plaintext: str) -> str:
        blob = await self.kms_client.encrypt(plaintext.encode("utf-8"))
        return self.prefix + base64.b64encode(blob).decode("ascii")

    async def decrypt(self, ciphertext: str) -> str:
        if not self.is_encrypted(ciphertext):
            raise CredentialDecryptionError("Value is not a KMS-encrypted credential")
        try:
            blob = base64.b64decode(ciphertext[len(self.prefix) :], validate=True)
        except ValueError as e:
            raise CredentialDecryptionError("Malformed KMS ciphertext") from e
        plaintext = await self.kms_client.decrypt(blob)
        return plaintext.decode("utf-8")

    def is_encrypted(self, value: str) -> bool:
        return value.startswith(self.prefix)


class FernetCredentialVault:
    prefix = FERNET_PREFIX

    def __init__(self, key: str | bytes):
        self._fernet = Fernet(key)

    async def encrypt(self, plaintext: str) -> str:
        return self.prefix + self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    async def decrypt(self, ciphertext: str) -> str:
        if not self.is_encrypted(ciphertext):
            raise CredentialDecryptionError("Value is not a Fernet-encrypted credential")
        try:
            return self._fernet.decrypt(ciphertext[len(self.prefix) :].encode("ascii")).decode(
                "utf-8"
            )
        except InvalidToken as e:
            raise CredentialDecryptionError("Fernet token is invalid for the configured key") from e

    def is_encrypted(self, value: str) -> bool:
        return value.startswith(self.prefix)


def get_credential_vault() -> CredentialVault:
    """Build the vault for the configured (or environment default) mode."""
    mode = get_credential_vault_mode() or default_credential_vault_mode()

    if mode == "kms":
        return KMSCredentialVault()
    if mode == "fernet":
        key = get_credential_vault_fernet_key()
        if not key:
            raise ValueError("CREDENTIAL_VAULT_FERNET_KEY is required for the fernet vault mode")
        return FernetCredentialVault(key)

    raise ValueError(f"Unknown credential vault mode: {mode}")


async def resolve_credential(vault: CredentialVault, stored: str | None) -> str | None:
    """Turn a stored credential into a usable API key.

    None means "no tenant key", and callers fall back to the global default.
    Values without a vault prefix predate encryption and are used as-is.
    """
    if not stored:
        return None
    if vault.is_encrypted(stored):
        return await vault.decrypt(stored)

    logger.warning("Tenant ROAM credential is stored unencrypted")
    return stored
