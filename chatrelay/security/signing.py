"""HMAC-SHA256 signing shared by outbound forwards and inbound callbacks.

Both directions operate on raw bytes. The forwarder signs the exact bytes it
sends; the callback endpoint verifies the exact bytes it received, never a
re-serialization of the parsed body.
"""

from __future__ import annotations

import hashlib
import hmac

SIGNATURE_HEADER = "X-ChatFlowUI-Signature"


def sign_payload(secret: str, payload: bytes) -> str:
    """Return the lowercase hex HMAC-SHA256 of ``payload``."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(secret: str, payload: bytes, signature: str) -> bool:
    """Constant-time check of ``signature`` against ``payload``."""
    if not signature:
        return False
    expected = sign_payload(secret, payload)
    return hmac.compare_digest(signature.strip().lower().encode(), expected.encode())
