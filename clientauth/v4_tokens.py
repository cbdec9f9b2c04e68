# clientauth/v4_tokens.py
#
# -----------------------------------------------------------------------------
# Architectural notes
# -----------------------------------------------------------------------------
# This module defines the *token layer* of the handshake.
#
# Responsibilities:
#   - Create and verify PASETO v4 tokens (public = signed, local = encrypted)
#   - Build the standard temporal / binding claims
#   - Remain cryptographically minimal and auditable
#
# What this module is NOT:
#   - Not a policy engine (claim rules live in rules.py)
#   - Not stateful
#
# Token wire format (PASETO v4):
#
#     v4.public.<b64url(m || sig)>[.<b64url(footer)>]
#         sig = Ed25519.sign( PAE(h, m, f, i) )
#
#     v4.local.<b64url(n || c || t)>[.<b64url(footer)>]
#         Ek || n2 = BLAKE2b-448(key=k, "paseto-encryption-key" || n)
#         Ak       = BLAKE2b-256(key=k, "paseto-auth-key-for-aead" || n)
#         c        = XChaCha20(m, n2, Ek)
#         t        = BLAKE2b-256(key=Ak, PAE(h, n, c, f, i))
#
# PAE (pre-authentication encoding) prefixes every piece with its length, so
# no two different (header, payload, footer) tuples can collide.
#
# Decoding here is *structural + cryptographic only*. Expiry, audience and
# subject are enforced by the rules in rules.py.
# -----------------------------------------------------------------------------


import hashlib
import hmac
import json
import secrets
import struct
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from cryptography.exceptions import InvalidSignature as _CryptoInvalidSignature
from Crypto.Cipher import ChaCha20

from .encoding import b64url_decode, b64url_encode
from .errors import DecryptionFailed, InvalidSignature, MalformedToken
from .keys import AsymmetricPublicKey, AsymmetricSecretKey, SymmetricKey


PUBLIC_HEADER = "v4.public."
LOCAL_HEADER = "v4.local."

SIGNATURE_BYTES = 64
NONCE_BYTES = 32
TAG_BYTES = 32

ENCRYPTION_KEY_INFO = b"paseto-encryption-key"
AUTH_KEY_INFO = b"paseto-auth-key-for-aead"


# -----------------------------------------------------------------------------
# Pre-authentication encoding
# -----------------------------------------------------------------------------
def _le64(n: int) -> bytes:
    # MSB is cleared for interop with languages lacking unsigned ints
    return struct.pack("<Q", n & 0x7FFFFFFFFFFFFFFF)


def pae(*pieces: bytes) -> bytes:
    out = _le64(len(pieces))
    for piece in pieces:
        out += _le64(len(piece)) + piece
    return out


# -----------------------------------------------------------------------------
# XChaCha20 (stream only; authentication is the BLAKE2b tag)
# -----------------------------------------------------------------------------
def xchacha20_xor(data: bytes, nonce: bytes, key: bytes) -> bytes:
    """
    XChaCha20 keystream XOR (encrypt == decrypt).

    pycryptodome runs XChaCha20 for a 24-byte nonce and plain ChaCha20
    for 8 or 12 bytes, so only 24 is accepted here.
    """
    if len(nonce) != 24:
        raise ValueError("XChaCha20 nonce must be 24 bytes")
    return ChaCha20.new(key=bytes(key), nonce=bytes(nonce)).encrypt(data)


def blake2b(data: bytes, *, key: bytes = b"", size: int = 32) -> bytes:
    return hashlib.blake2b(data, key=key, digest_size=size).digest()


# -----------------------------------------------------------------------------
# Payload (de)serialization
# -----------------------------------------------------------------------------
def _dump_claims(claims: Dict[str, Any]) -> bytes:
    return json.dumps(claims, separators=(",", ":"), sort_keys=True).encode("utf-8")


def _load_claims(payload: bytes) -> Dict[str, Any]:
    try:
        obj = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise MalformedToken("token payload is not UTF-8 JSON")
    if not isinstance(obj, dict):
        raise MalformedToken("token payload must be a JSON object")
    return obj


def _split_token(token: str, header: str, footer: Optional[bytes]):
    """
    Split a token into (body, footer) after checking the version/purpose header.

    If `footer` is given it must match the token footer exactly.
    """
    token = str(token)
    if not token.startswith(header):
        raise MalformedToken(f"expected a {header.rstrip('.')} token")

    parts = token[len(header):].split(".")
    if len(parts) not in (1, 2) or not parts[0]:
        raise MalformedToken("bad token format")

    body = b64url_decode(parts[0])
    got_footer = b64url_decode(parts[1]) if len(parts) == 2 else b""

    if footer is not None and not hmac.compare_digest(got_footer, footer):
        raise MalformedToken("token footer mismatch")
    return body, got_footer


def _assemble(header: str, body: bytes, footer: bytes) -> str:
    token = header + b64url_encode(body)
    if footer:
        token += "." + b64url_encode(footer)
    return token


# -----------------------------------------------------------------------------
# v4.public
# -----------------------------------------------------------------------------
def sign_token_v4(
    sk: AsymmetricSecretKey,
    payload_obj: Dict[str, Any],
    footer: bytes = b"",
    implicit: bytes = b"",
) -> str:
    """Sign a claims object into a v4.public token."""
    h = PUBLIC_HEADER.encode("ascii")
    m = _dump_claims(payload_obj)
    sig = sk.sign(pae(h, m, footer, implicit))
    return _assemble(PUBLIC_HEADER, m + sig, footer)


def verify_token_v4(
    pk: AsymmetricPublicKey,
    token: str,
    footer: Optional[bytes] = None,
    implicit: bytes = b"",
) -> Dict[str, Any]:
    """
    Verify a v4.public token and return its decoded payload.

    IMPORTANT:
      - This function does NOT enforce semantic rules (expiry, aud, sub).
    """
    body, got_footer = _split_token(token, PUBLIC_HEADER, footer)
    if len(body) <= SIGNATURE_BYTES:
        raise MalformedToken("v4.public token is too short")

    m, sig = body[:-SIGNATURE_BYTES], body[-SIGNATURE_BYTES:]
    h = PUBLIC_HEADER.encode("ascii")
    try:
        pk.ed25519.verify(sig, pae(h, m, got_footer, implicit))
    except _CryptoInvalidSignature:
        raise InvalidSignature("token signature did not verify")
    return _load_claims(m)


# -----------------------------------------------------------------------------
# v4.local
# -----------------------------------------------------------------------------
def _split_local_keys(key: SymmetricKey, n: bytes):
    k = key.raw_bytes()
    tmp = blake2b(ENCRYPTION_KEY_INFO + n, key=k, size=56)
    ak = blake2b(AUTH_KEY_INFO + n, key=k, size=32)
    return tmp[:32], tmp[32:], ak


def encrypt_token_v4(
    key: SymmetricKey,
    payload_obj: Dict[str, Any],
    footer: bytes = b"",
    implicit: bytes = b"",
    nonce: Optional[bytes] = None,
) -> str:
    """Encrypt a claims object into a v4.local token."""
    h = LOCAL_HEADER.encode("ascii")
    n = nonce if nonce is not None else secrets.token_bytes(NONCE_BYTES)
    ek, n2, ak = _split_local_keys(key, n)

    c = xchacha20_xor(_dump_claims(payload_obj), n2, ek)
    t = blake2b(pae(h, n, c, footer, implicit), key=ak, size=TAG_BYTES)
    return _assemble(LOCAL_HEADER, n + c + t, footer)


def decrypt_token_v4(
    key: SymmetricKey,
    token: str,
    footer: Optional[bytes] = None,
    implicit: bytes = b"",
) -> Dict[str, Any]:
    """
    Authenticate and decrypt a v4.local token.

    The tag is checked (constant time) BEFORE any decryption happens.
    """
    body, got_footer = _split_token(token, LOCAL_HEADER, footer)
    if len(body) <= NONCE_BYTES + TAG_BYTES:
        raise MalformedToken("v4.local token is too short")

    n = body[:NONCE_BYTES]
    c = body[NONCE_BYTES:-TAG_BYTES]
    t = body[-TAG_BYTES:]

    h = LOCAL_HEADER.encode("ascii")
    ek, n2, ak = _split_local_keys(key, n)
    t2 = blake2b(pae(h, n, c, got_footer, implicit), key=ak, size=TAG_BYTES)
    if not hmac.compare_digest(t, t2):
        raise DecryptionFailed("token authentication tag mismatch")

    return _load_claims(xchacha20_xor(c, n2, ek))


# -----------------------------------------------------------------------------
# Time + claims helpers
# -----------------------------------------------------------------------------
def now_utc() -> datetime:
    # Keep time source centralized for easier testing/mocking.
    return datetime.now(timezone.utc).replace(microsecond=0)


def format_time(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.replace(microsecond=0).isoformat()


def parse_time(value: Any) -> datetime:
    """Parse an ISO-8601 claim; naive values are taken as UTC."""
    s = str(value).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def build_claims(
    claims: Dict[str, Any],
    *,
    audience: Optional[str] = None,
    subject: Optional[str] = None,
    issued_at: Optional[datetime] = None,
    not_before: Optional[datetime] = None,
    expiration: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Merge registered claims into a copy of `claims`."""
    out = dict(claims)
    if audience is not None:
        out["aud"] = audience
    if subject is not None:
        out["sub"] = subject
    if issued_at is not None:
        out["iat"] = format_time(issued_at)
    if not_before is not None:
        out["nbf"] = format_time(not_before)
    if expiration is not None:
        out["exp"] = format_time(expiration)
    return out


def encode_signed(
    claims: Dict[str, Any],
    key: AsymmetricSecretKey,
    *,
    audience: Optional[str] = None,
    subject: Optional[str] = None,
    issued_at: Optional[datetime] = None,
    not_before: Optional[datetime] = None,
    expiration: Optional[datetime] = None,
    footer: bytes = b"",
) -> str:
    return sign_token_v4(
        key,
        build_claims(
            claims,
            audience=audience,
            subject=subject,
            issued_at=issued_at,
            not_before=not_before,
            expiration=expiration,
        ),
        footer,
    )


def encode_local(
    claims: Dict[str, Any],
    key: SymmetricKey,
    *,
    audience: Optional[str] = None,
    subject: Optional[str] = None,
    issued_at: Optional[datetime] = None,
    not_before: Optional[datetime] = None,
    expiration: Optional[datetime] = None,
    footer: bytes = b"",
) -> str:
    return encrypt_token_v4(
        key,
        build_claims(
            claims,
            audience=audience,
            subject=subject,
            issued_at=issued_at,
            not_before=not_before,
            expiration=expiration,
        ),
        footer,
    )
