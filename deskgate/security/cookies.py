"""Signed session cookies.

Wire format matches express ``cookie-signature`` as used by ``connect.sid``::

    s:<value>.<base64(hmac_sha256(secret, value)) without "=" padding>

The cookie may arrive percent-encoded (``s%3A...``); ``unsign_cookie``
decodes it first.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from urllib.parse import quote, unquote

SIGNED_PREFIX = "s:"


def _signature(value: str, secret: str) -> str:
    digest = hmac.new(secret.encode(), value.encode(), hashlib.sha256).digest()
    return base64.b64encode(digest).decode().rstrip("=")


def sign(value: str, secret: str) -> str:
    """Return ``value.signature``."""
    return f"{value}.{_signature(value, secret)}"


def unsign(signed: str, secret: str) -> str | None:
    """Return the original value, or None if the signature does not match."""
    value, sep, _ = signed.rpartition(".")
    if not sep:
        return None
    expected = sign(value, secret)
    if not hmac.compare_digest(expected.encode(), signed.encode()):
        return None
    return value


def sign_cookie(value: str, secret: str) -> str:
    """Cookie value (percent-encoded) for a principal session id."""
    return quote(SIGNED_PREFIX + sign(value, secret), safe="")


def unsign_cookie(raw: str | None, secret: str) -> str | None:
    """Verify a raw cookie value and return the session id it carries."""
    if not raw:
        return None
    decoded = unquote(raw)
    if not decoded.startswith(SIGNED_PREFIX):
        return None
    return unsign(decoded[len(SIGNED_PREFIX):], secret)
