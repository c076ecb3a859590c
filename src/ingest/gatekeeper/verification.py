"""Webhook verification protocol and result types.

Verifiers fetch whatever secret they need, check the request and report
success or failure. The gatekeeper turns a failure into an HTTP error before
anything else touches the request.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol


@dataclass
class VerificationResult:
    """Result of webhook verification."""

    success: bool
    error: str | None = None


class WebhookVerifier(Protocol):
    async def verify(
        self,
        headers: dict[str, str],
        body: bytes,
        tenant_id: str,
        request_url: str | None = None,
    ) -> VerificationResult:
        """Verify a webhook delivered for ``tenant_id``.

        Args:
            headers: HTTP headers from the webhook request (lower-cased names)
            body: Raw request body, exactly as received
            tenant_id: The tenant the webhook was addressed to
            request_url: Full request URL, for verifiers that sign it

        Returns:
            VerificationResult indicating success or failure with error message
        """
        ...


# (headers, raw body, secret) -> None, raising ValueError on failure
VerifyFunc = Callable[[dict[str, str], bytes, str], None]


class BaseSigningSecretVerifier:
    """Base class for verifiers driven by a shared signing secret.

    Subclasses define:
    - source_type: The source identifier used in error messages
    - verify_func: The function that performs the actual verification
    - load_secret(): Where the secret comes from
    """

    source_type: str
    verify_func: VerifyFunc

    def load_secret(self, tenant_id: str) -> str | None:
        raise NotImplementedError

    async def verify(
        self,
        headers: dict[str, str],
        body: bytes,
        tenant_id: str,
        request_url: str | None = None,
    ) -> VerificationResult:
        del request_url  # unused for signing secret verifiers
        signing_secret = self.load_secret(tenant_id)
        if not signing_secret:
            return VerificationResult(
                success=False,
                error=f"{self.source_type} webhook signing secret is not configured",
            )

        try:
            self.verify_func(headers, body, signing_secret)
            return VerificationResult(success=True)
        except ValueError as e:
            return VerificationResult(success=False, error=str(e))
