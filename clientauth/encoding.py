# clientauth/encoding.py
#
# Unpadded URL-safe Base64, shared by tokens, PASERK keys and sealed blobs.
# Decoding is strict: only the urlsafe alphabet, no padding, and only the
# canonical encoding of the decoded bytes. A token string therefore has
# exactly one spelling, which keeps string-keyed digests (audit) stable.

import base64
import binascii

from .errors import MalformedToken


def b64url_encode(b: bytes) -> str:
    """URL-safe Base64 WITHOUT padding (PASETO never pads)."""
    return base64.urlsafe_b64encode(b).decode("ascii").rstrip("=")


def b64url_decode(s: str) -> bytes:
    """
    Decode unpadded URL-safe Base64.

    Raises MalformedToken on padding, characters outside the urlsafe
    alphabet, or a non-canonical encoding (non-zero trailing bits).
    """
    s = str(s)
    if "=" in s or "+" in s or "/" in s:
        raise MalformedToken("token segment is not unpadded base64url")
    try:
        raw = base64.b64decode(s + "=" * (-len(s) % 4), altchars=b"-_", validate=True)
    except (binascii.Error, ValueError):
        raise MalformedToken("token segment is not valid base64url")
    if b64url_encode(raw) != s:
        raise MalformedToken("token segment is not canonical base64url")
    return raw
