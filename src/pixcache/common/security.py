"""Request signing helpers shared by the resolver and its clients."""

from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Optional

from .errors import AuthError


def sign_path(canonical_path: str, secret: str | bytes) -> str:
    """Return the base64 HMAC-SHA3-256 of ``canonical_path`` keyed by ``secret``."""

    key = secret.encode("utf-8") if isinstance(secret, str) else secret
    digest = hmac.new(key, canonical_path.encode("utf-8"), hashlib.sha3_256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(signature: Optional[str], canonical_path: str, secret: str | bytes) -> None:
    """Raise :class:`AuthError` unless ``signature`` authorizes ``canonical_path``.

    A missing signature is compared as the empty string so every request takes
    the same constant-time comparison path.
    """

    try:
        expected = sign_path(canonical_path, secret)
    except (UnicodeError, TypeError, ValueError) as exc:
        raise AuthError("Unable to compute request signature", reason=AuthError.COMPUTE_FAILURE) from exc

    provided = (signature or "").encode("utf-8", errors="surrogateescape")
    if not hmac.compare_digest(provided, expected.encode("ascii")):
        raise AuthError("Signature mismatch", reason=AuthError.SIGNATURE_MISMATCH)
