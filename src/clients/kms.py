"""AWS KMS client used to encrypt per-tenant ROAM credentials at rest."""

import asyncio

from src.clients.aws_base import AWSBaseClient
from src.utils.config import get_kms_key_id
from src.utils.logging import get_logger

logger = get_logger(__name__)


def _require_kms_key_id() -> str:
    key_id = get_kms_key_id()
    if not key_id:
        raise RuntimeError("No KMS key ID found. Set KMS_KEY_ID environment variable.")
    return key_id


class KMSClient(AWSBaseClient):
    """Thin async wrapper over the KMS Encrypt/Decrypt calls.

    boto3 is synchronous, so calls run in a worker thread.
    """

    def __init__(self, key_id: str | None = None, region_name: str | None = None):
        super().__init__("kms", region_name)
        self._key_id = key_id

    @property
    def key_id(self) -> str:
        if not self._key_id:
            self._key_id = _require_kms_key_id()
        return self._key_id

    async def encrypt(self, plaintext: bytes) -> bytes:
        try:
            response = await asyncio.to_thread(
                self.client.encrypt, KeyId=self.key_id, Plaintext=plaintext
            )
            return response["CiphertextBlob"]
        except Exception as e:
            self.handle_aws_error(e, "encrypt")
            raise

    async def decrypt(self, ciphertext: bytes) -> bytes:
        try:
            # Symmetric ciphertext blobs carry the key id, but pinning it rejects foreign blobs
            response = await asyncio.to_thread(
                self.client.decrypt, CiphertextBlob=ciphertext, KeyId=self.key_id
            )
            return response["Plaintext"]
        except Exception as e:
            self.handle_aws_error(e, "decrypt")
            raise
