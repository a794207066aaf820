"""
Webhook security utilities.

Signature generation and verification over the exact bytes transmitted,
plus secret generation and masking.
"""

import hmac
import hashlib
import secrets
from typing import Union

# Raw bytes of entropy behind every generated secret
SECRET_BYTES = 32


def _to_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode('utf-8')


class WebhookSecurity:
    """Handles webhook security operations."""

    @staticmethod
    def generate_secret() -> str:
        """
        Generate a secure webhook secret.

        Returns:
            URL-safe base64 encoding of 32 random bytes
        """
        return secrets.token_urlsafe(SECRET_BYTES)

    @staticmethod
    def generate_signature(payload: Union[str, bytes], secret: str) -> str:
        """
        Generate the HMAC-SHA256 signature for a webhook body.

        Args:
            payload: Serialized body exactly as it goes on the wire
            secret: Webhook secret

        Returns:
            Lowercase hex-encoded signature
        """
        return hmac.new(
            _to_bytes(secret),
            _to_bytes(payload),
            hashlib.sha256
        ).hexdigest()

    @staticmethod
    def verify_signature(payload: Union[str, bytes], signature: str, secret: str) -> bool:
        """
        Verify a webhook signature.

        Never raises: malformed input of any kind is a mismatch.

        Args:
            payload: Body bytes as received
            signature: Received signature (hex-encoded)
            secret: Webhook secret

        Returns:
            True if signature is valid
        """
        if not signature or not secret:
            return False

        try:
            expected_signature = WebhookSecurity.generate_signature(payload, secret)
            # Constant-time comparison
            return hmac.compare_digest(_to_bytes(signature), _to_bytes(expected_signature))
        except (TypeError, ValueError, UnicodeError):
            return False

    @staticmethod
    def mask_secret(secret: str) -> str:
        """
        Mask webhook secret for logging/display.

        Args:
            secret: Secret to mask

        Returns:
            Masked secret string
        """
        if not secret:
            return ""

        if len(secret) <= 8:
            return "*" * len(secret)

        return f"{secret[:4]}...{secret[-4:]}"
