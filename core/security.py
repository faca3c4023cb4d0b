"""
Webhook signature utilities
"""

import hashlib
import hmac
from typing import Optional, Union

SIGNATURE_PREFIX = "sha256="


def compute_signature(secret: str, body: Union[bytes, str]) -> str:
    """Hex HMAC-SHA256 of the raw request body"""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: Union[bytes, str], signature: Optional[str]) -> bool:
    """
    Constant-time comparison of a webhook signature.

    An empty secret rejects every request.
    """
    if not secret or not signature:
        return False

    candidate = signature.strip()
    if candidate.lower().startswith(SIGNATURE_PREFIX):
        candidate = candidate[len(SIGNATURE_PREFIX):]

    expected = compute_signature(secret, body)
    return hmac.compare_digest(candidate.lower(), expected)
