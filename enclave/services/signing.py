"""
Signing primitive for every attested output.

The key is supplied by the platform's attestation mechanism and loaded
once at startup. HMAC-SHA-256 over an explicit canonical message string.
"""
import hashlib
import hmac
import json
from typing import Any

SIGNATURE_PREFIX = "hmac:"


def canonical_json(value: Any) -> str:
    """Deterministic JSON: sorted keys, no whitespace."""
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_hex(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


class SigningService:
    """Signs and verifies canonical messages with the enclave key."""

    def __init__(self, key: str):
        self._key = key.encode("utf-8")

    def sign_hex(self, message: str) -> str:
        return hmac.new(self._key, message.encode("utf-8"), hashlib.sha256).hexdigest()

    def sign(self, message: str) -> str:
        """Return `hmac:<hex>` over `message`."""
        return SIGNATURE_PREFIX + self.sign_hex(message)

    def verify(self, message: str, signature: str) -> bool:
        """Recompute the signature over `message` and compare in constant time."""
        return hmac.compare_digest(self.sign(message), signature or "")
