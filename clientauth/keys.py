# clientauth/keys.py
#
# -----------------------------------------------------------------------------
# Key types
# -----------------------------------------------------------------------------
# Three kinds of key flow through the handshake:
#
#   AsymmetricSecretKey  Ed25519 secret key. The client's long-term key:
#                        signs request tokens AND (via its X25519 birational
#                        equivalent) unseals one-time keys.
#   AsymmetricPublicKey  Ed25519 public key. The auth server's pinned key, or
#                        the client's key as seen by the auth server.
#   SymmetricKey         32 random bytes. One-time key for a v4.local token.
#
# String form is PASERK:
#
#     k4.secret.<b64url(seed || pk)>     (64 bytes)
#     k4.public.<b64url(pk)>             (32 bytes)
#     k4.local.<b64url(key)>             (32 bytes)
#
# Long-term keys are immutable. Symmetric keys keep their material in a
# bytearray so it can be zeroed with wipe() once the flow is done.
# -----------------------------------------------------------------------------

import base64
import secrets

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from nacl.bindings import (
    crypto_sign_ed25519_pk_to_curve25519,
    crypto_sign_ed25519_sk_to_curve25519,
)

from .encoding import b64url_decode, b64url_encode
from .errors import ConfigurationError, MalformedToken


PASERK_SECRET = "k4.secret."
PASERK_PUBLIC = "k4.public."
PASERK_LOCAL = "k4.local."

SYMMETRIC_KEY_BYTES = 32
SECRET_KEY_BYTES = 64


def _strip_paserk(value: str, header: str, size: int) -> bytes:
    value = str(value).strip()
    if not value.startswith(header):
        raise ConfigurationError(f"expected a {header.rstrip('.')} key")
    try:
        raw = b64url_decode(value[len(header):])
    except MalformedToken:
        raise ConfigurationError(f"{header.rstrip('.')} key is not valid base64url")
    if len(raw) != size:
        raise ConfigurationError(f"{header.rstrip('.')} key must be {size} bytes")
    return raw


class AsymmetricPublicKey:
    def __init__(self, key: Ed25519PublicKey):
        self._key = key

    @classmethod
    def from_bytes(cls, raw: bytes) -> "AsymmetricPublicKey":
        return cls(Ed25519PublicKey.from_public_bytes(bytes(raw)))

    @classmethod
    def from_paserk(cls, value: str) -> "AsymmetricPublicKey":
        return cls.from_bytes(_strip_paserk(value, PASERK_PUBLIC, 32))

    @property
    def ed25519(self) -> Ed25519PublicKey:
        return self._key

    def raw_bytes(self) -> bytes:
        return self._key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def x25519_bytes(self) -> bytes:
        """Birationally-equivalent X25519 public key (for sealing)."""
        return crypto_sign_ed25519_pk_to_curve25519(self.raw_bytes())

    def to_paserk(self) -> str:
        return PASERK_PUBLIC + b64url_encode(self.raw_bytes())

    def __eq__(self, other):
        if not isinstance(other, AsymmetricPublicKey):
            return NotImplemented
        return self.raw_bytes() == other.raw_bytes()

    def __hash__(self):
        return hash(self.raw_bytes())

    def __repr__(self):
        return f"AsymmetricPublicKey({self.to_paserk()!r})"


class AsymmetricSecretKey:
    def __init__(self, key: Ed25519PrivateKey):
        self._key = key

    @classmethod
    def generate(cls) -> "AsymmetricSecretKey":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "AsymmetricSecretKey":
        if len(seed) != 32:
            raise ConfigurationError("Ed25519 seed must be 32 bytes")
        return cls(Ed25519PrivateKey.from_private_bytes(bytes(seed)))

    @classmethod
    def from_b64(cls, sk_b64: str) -> "AsymmetricSecretKey":
        """Load a raw 32-byte Ed25519 seed from standard Base64 (env var friendly)."""
        try:
            raw = base64.b64decode(sk_b64.strip(), validate=True)
        except ValueError:
            raise ConfigurationError("Ed25519 seed is not valid base64")
        return cls.from_seed(raw)

    @classmethod
    def from_bytes(cls, raw: bytes) -> "AsymmetricSecretKey":
        """Load the 64-byte seed || pk form, checking the public half."""
        if len(raw) != SECRET_KEY_BYTES:
            raise ConfigurationError("Ed25519 secret key must be 64 bytes")
        sk = cls.from_seed(raw[:32])
        if sk.public_key().raw_bytes() != bytes(raw[32:]):
            raise ConfigurationError("Ed25519 secret key has a mismatched public half")
        return sk

    @classmethod
    def from_paserk(cls, value: str) -> "AsymmetricSecretKey":
        return cls.from_bytes(_strip_paserk(value, PASERK_SECRET, SECRET_KEY_BYTES))

    @property
    def ed25519(self) -> Ed25519PrivateKey:
        return self._key

    def public_key(self) -> AsymmetricPublicKey:
        return AsymmetricPublicKey(self._key.public_key())

    def seed_bytes(self) -> bytes:
        return self._key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def raw_bytes(self) -> bytes:
        return self.seed_bytes() + self.public_key().raw_bytes()

    def x25519_bytes(self) -> bytes:
        """Birationally-equivalent X25519 secret scalar (for unsealing)."""
        return crypto_sign_ed25519_sk_to_curve25519(self.raw_bytes())

    def sign(self, message: bytes) -> bytes:
        return self._key.sign(message)

    def to_paserk(self) -> str:
        return PASERK_SECRET + b64url_encode(self.raw_bytes())

    def __repr__(self):
        # never print secret material
        return f"AsymmetricSecretKey(public={self.public_key().to_paserk()!r})"


class SymmetricKey:
    def __init__(self, material: bytes):
        if len(material) != SYMMETRIC_KEY_BYTES:
            raise ValueError("symmetric key must be 32 bytes")
        self._material = bytearray(material)
        self._wiped = False

    @classmethod
    def generate(cls) -> "SymmetricKey":
        return cls(secrets.token_bytes(SYMMETRIC_KEY_BYTES))

    @classmethod
    def from_paserk(cls, value: str) -> "SymmetricKey":
        return cls(_strip_paserk(value, PASERK_LOCAL, SYMMETRIC_KEY_BYTES))

    def raw_bytes(self) -> bytes:
        if self.wiped:
            raise ValueError("symmetric key has been wiped")
        return bytes(self._material)

    def to_paserk(self) -> str:
        return PASERK_LOCAL + b64url_encode(self.raw_bytes())

    @property
    def wiped(self) -> bool:
        return self._wiped

    def wipe(self) -> None:
        for i in range(len(self._material)):
            self._material[i] = 0
        self._wiped = True

    def __len__(self):
        return len(self._material)

    def __repr__(self):
        return "SymmetricKey(<redacted>)"
