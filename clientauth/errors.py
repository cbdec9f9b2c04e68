"""
clientauth/errors.py

Failure taxonomy for the client-side handshake.

Every failure is terminal for the current authentication attempt. Nothing
here is retried; the caller restarts the flow with a fresh challenge.

Messages must stay "boring": they may name which claim or domain did not
match, but never carry key material, sealed blobs or decrypted payloads.
"""

from typing import Any, Dict, Optional


class ClientAuthError(Exception):
    """Base exception for clientauth."""

    code = "client_auth_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    @property
    def reason(self) -> str:
        return self.code

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "error": self.code,
            "reason": self.reason,
            "message": self.message,
        }
        if self.details:
            out["details"] = dict(self.details)
        return out


class ConfigurationError(ClientAuthError):
    """A required key or domain is missing. Raised before any protocol call."""

    code = "configuration_error"


# -----------------------------------------------------------------------------
# Token codec
# -----------------------------------------------------------------------------
class TokenError(ClientAuthError):
    code = "token_error"


class MalformedToken(TokenError):
    code = "malformed_token"


class InvalidSignature(TokenError):
    code = "invalid_signature"


class DecryptionFailed(TokenError):
    code = "decryption_failed"


class Expired(TokenError):
    code = "expired"


class AudienceMismatch(TokenError):
    code = "audience_mismatch"


class SubjectMismatch(TokenError):
    code = "subject_mismatch"


# -----------------------------------------------------------------------------
# Protocol layers
# -----------------------------------------------------------------------------
class _WrappingError(ClientAuthError):
    """
    Error raised by a protocol layer on behalf of a lower-level TokenError.

    `reason` exposes the underlying code (e.g. "expired") so callers can
    tell *why* the layer rejected the token without unwrapping __cause__.
    """

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        *,
        reason: Optional[str] = None,
    ):
        super().__init__(message, details)
        self._reason = reason

    @property
    def reason(self) -> str:
        return self._reason or self.code

    @classmethod
    def wrap(cls, exc: TokenError, message: str):
        return cls(f"{message}: {exc.message}", exc.details, reason=exc.code)


class EnvelopeError(_WrappingError):
    """The auth server's signed response envelope was rejected."""

    code = "invalid_envelope"


InvalidEnvelope = EnvelopeError


class MalformedEnvelope(EnvelopeError):
    code = "malformed_envelope"


class KeyUnwrapError(ClientAuthError):
    code = "key_error"


class UnsealFailed(KeyUnwrapError):
    code = "unseal_failed"


class UnexpectedKeyType(KeyUnwrapError):
    code = "unexpected_key_type"


class PayloadError(_WrappingError):
    """The inner (encrypted) identity token was rejected."""

    code = "invalid_payload"


class AuthenticationFailure(ClientAuthError):
    code = "authentication_failed"


class ChallengeMismatch(AuthenticationFailure):
    code = "challenge_mismatch"


class DomainMismatch(AuthenticationFailure):
    code = "domain_mismatch"
