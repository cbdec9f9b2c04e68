# clientauth/seal.py
#
# -----------------------------------------------------------------------------
# One-time key sealing (PASERK k4.seal)
# -----------------------------------------------------------------------------
# The auth server wraps a fresh v4.local key to the client's Ed25519 public
# key. Only the holder of the matching secret key can recover it.
#
#     xpk = Ed25519 -> X25519 (recipient public key)
#     esk, epk = fresh X25519 keypair
#     xk  = X25519(esk, xpk)
#     Ek  = BLAKE2b-256(0x01 || h || xk || epk || xpk)
#     Ak  = BLAKE2b-256(0x02 || h || xk || epk || xpk)
#     n   = BLAKE2b-192(epk || xpk)
#     edk = XChaCha20(key, n, Ek)
#     t   = BLAKE2b-256(key=Ak, h || epk || edk)
#
#     k4.seal.<b64url(t || epk || edk)>
#
# Unsealing recomputes t and compares in constant time before touching edk.
#
# The blob does not name the key type; the plaintext length does. 32 bytes
# is a v4.local key, 64 bytes an Ed25519 secret key (seed || pk). unseal()
# accepts only the former and rejects an authentic blob carrying the latter.
# -----------------------------------------------------------------------------

import hmac
from typing import Union

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.x25519 import (
    X25519PrivateKey,
    X25519PublicKey,
)

from .encoding import b64url_decode, b64url_encode
from .errors import ConfigurationError, MalformedToken, UnexpectedKeyType, UnsealFailed
from .keys import (
    SECRET_KEY_BYTES,
    SYMMETRIC_KEY_BYTES,
    AsymmetricPublicKey,
    AsymmetricSecretKey,
    SymmetricKey,
)
from .v4_tokens import blake2b, xchacha20_xor


SEAL_HEADER = "k4.seal."

_TAG_BYTES = 32
_EPK_BYTES = 32

# sealed plaintext length -> key type; only the first is a valid one-time key
_KEY_TYPES = {
    SYMMETRIC_KEY_BYTES: SymmetricKey,
    SECRET_KEY_BYTES: AsymmetricSecretKey.from_bytes,
}

SealableKey = Union[SymmetricKey, AsymmetricSecretKey]


def _x25519_public_bytes(key: X25519PrivateKey) -> bytes:
    return key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


def _derive(h: bytes, xk: bytes, epk: bytes, xpk: bytes):
    ek = blake2b(b"\x01" + h + xk + epk + xpk)
    ak = blake2b(b"\x02" + h + xk + epk + xpk)
    n = blake2b(epk + xpk, size=24)
    return ek, ak, n


def seal(key: SealableKey, recipient: AsymmetricPublicKey) -> str:
    """Wrap a key (normally a one-time SymmetricKey) to `recipient`."""
    h = SEAL_HEADER.encode("ascii")
    xpk = recipient.x25519_bytes()

    esk = X25519PrivateKey.generate()
    epk = _x25519_public_bytes(esk)
    xk = esk.exchange(X25519PublicKey.from_public_bytes(xpk))

    ek, ak, n = _derive(h, xk, epk, xpk)
    edk = xchacha20_xor(key.raw_bytes(), n, ek)
    t = blake2b(h + epk + edk, key=ak)
    return SEAL_HEADER + b64url_encode(t + epk + edk)


def _to_key(material: bytes) -> SealableKey:
    try:
        return _KEY_TYPES[len(material)](material)
    except ConfigurationError:
        raise UnsealFailed("sealed key material is not a valid key")


def unseal(sealed: str, recipient: AsymmetricSecretKey) -> SymmetricKey:
    """
    Recover the one-time key sealed to `recipient`.

    Raises:
      - UnsealFailed       wrong recipient, bad tag, or malformed blob
      - UnexpectedKeyType  the recovered key is not a v4.local key
    """
    sealed = str(sealed)
    if not sealed.startswith(SEAL_HEADER):
        raise UnsealFailed("sealed key has an unexpected header")

    try:
        body = b64url_decode(sealed[len(SEAL_HEADER):])
    except MalformedToken:
        raise UnsealFailed("sealed key is not valid base64url")
    if len(body) - _TAG_BYTES - _EPK_BYTES not in _KEY_TYPES:
        raise UnsealFailed("sealed key has the wrong length")

    t = body[:_TAG_BYTES]
    epk = body[_TAG_BYTES:_TAG_BYTES + _EPK_BYTES]
    edk = body[_TAG_BYTES + _EPK_BYTES:]

    h = SEAL_HEADER.encode("ascii")
    xsk = X25519PrivateKey.from_private_bytes(recipient.x25519_bytes())
    xpk = recipient.public_key().x25519_bytes()
    try:
        xk = xsk.exchange(X25519PublicKey.from_public_bytes(epk))
    except ValueError:
        # all-zero shared secret (low-order ephemeral point)
        raise UnsealFailed("sealed key has an invalid ephemeral key")

    ek, ak, n = _derive(h, xk, epk, xpk)
    t2 = blake2b(h + epk + edk, key=ak)
    if not hmac.compare_digest(t, t2):
        raise UnsealFailed("sealed key was not produced for this key pair")

    key = _to_key(xchacha20_xor(edk, n, ek))
    if not isinstance(key, SymmetricKey):
        raise UnexpectedKeyType(
            "one-time key MUST be a symmetric key",
            {"key_type": type(key).__name__},
        )
    return key
