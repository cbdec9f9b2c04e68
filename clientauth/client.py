# clientauth/client.py
#
# -----------------------------------------------------------------------------
# Architectural notes
# -----------------------------------------------------------------------------
# Relying-party side of the handshake. Two operations:
#
#   issue_request(challenge, redirect_url)
#       -> v4.public token signed with the client's key, aud = server domain,
#          valid for REQUEST_TOKEN_TTL.
#
#   process_response(outer_token, challenge)
#       1. AuthServer.verify_envelope()       signature / exp / sub
#       2. read `secret` + `sealed`           (one bounded swap if reversed)
#       3. unseal `sealed`                    -> one-time SymmetricKey
#       4. decrypt `secret`                   exp / aud = client domain
#       5. challenge check (constant time)    anti-replay, always on
#       6. org-domain check (policy hook)
#       7. User
#
# The client is stateless: nothing is cached between calls, and the one-time
# key is wiped before process_response() returns (or raises).
#
# Freshness relies on the challenge echo + short expirations only. There is
# no replay cache, so a captured response can be replayed until its `exp`
# by whoever also holds the matching challenge.
# -----------------------------------------------------------------------------

from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from pydantic import ValidationError

from .audit import AuditLog, build_event
from .auth_server import AuthServer
from .config import ClientConfig
from .errors import (
    ClientAuthError,
    MalformedEnvelope,
    PayloadError,
    TokenError,
)
from .keys import AsymmetricSecretKey
from .logging import get_logger
from .models import User
from .policy import DEFAULT_POLICY, VerificationPolicy, policy_for_domains
from .seal import SEAL_HEADER, unseal
from .v4_tokens import LOCAL_HEADER, encode_signed, now_utc

REQUEST_TOKEN_TTL = timedelta(minutes=5)

USER_CLAIMS = ("username", "userid", "org")

logger = get_logger("clientauth.client")


def order_envelope_fields(secret: Any, sealed: Any) -> Tuple[str, str]:
    """
    Return (secret, sealed) in the right order.

    The fields are told apart by their headers (v4.local. vs k4.seal.).
    If the server put them the wrong way round they are swapped ONCE;
    anything else is a malformed envelope.
    """
    if not isinstance(secret, str) or not isinstance(sealed, str):
        raise MalformedEnvelope("response envelope is missing secret/sealed")

    if secret.startswith(LOCAL_HEADER) and sealed.startswith(SEAL_HEADER):
        return secret, sealed
    if secret.startswith(SEAL_HEADER) and sealed.startswith(LOCAL_HEADER):
        return sealed, secret
    raise MalformedEnvelope("response envelope fields carry unexpected markers")


class Client:
    def __init__(
        self,
        server: AuthServer,
        client_secret_key: AsymmetricSecretKey,
        client_domain: str,
        *,
        policy: Optional[VerificationPolicy] = None,
        audit_log: Optional[AuditLog] = None,
    ):
        self._server = server
        self._client_secret_key = client_secret_key
        self.client_domain = client_domain
        self.policy = policy or DEFAULT_POLICY
        self.audit_log = audit_log

    @classmethod
    def from_config(
        cls,
        config: ClientConfig,
        *,
        policy: Optional[VerificationPolicy] = None,
        audit_log: Optional[AuditLog] = None,
    ) -> "Client":
        domain = config.get_domain()
        if policy is None and config.allowed_org_domains:
            policy = policy_for_domains(domain, *config.allowed_org_domains)
        return cls(
            config.get_auth_server(),
            config.get_secret_key(),
            domain,
            policy=policy,
            audit_log=audit_log,
        )

    def get_auth_server(self) -> AuthServer:
        return self._server

    # -------------------------------------------------------------------------
    # Request
    # -------------------------------------------------------------------------
    def issue_request(self, challenge: str, redirect_url: str) -> str:
        now = now_utc()
        token = encode_signed(
            {"challenge": challenge, "url": redirect_url},
            self._client_secret_key,
            audience=self._server.get_domain(),
            issued_at=now,
            not_before=now,
            expiration=now + REQUEST_TOKEN_TTL,
        )

        logger.info("auth_request_issued", server=self._server.get_domain())
        self._audit("issued", "request_token_issued", challenge=challenge, token=token)
        return token

    def get_login_url(self, challenge: str, redirect_url: str) -> str:
        return self._server.get_auth_url({"paseto": self.issue_request(challenge, redirect_url)})

    # -------------------------------------------------------------------------
    # Response
    # -------------------------------------------------------------------------
    def process_response(self, outer_token: str, challenge: str) -> User:
        try:
            user = self._process_response(outer_token, challenge)
        except ClientAuthError as e:
            logger.warning(
                "auth_response_rejected",
                error=e.code,
                reason=e.reason,
                server=self._server.get_domain(),
            )
            self._audit("denied", e.reason, challenge=challenge, token=outer_token, error=e.code)
            raise

        logger.info("auth_response_accepted", domain=user.domain)
        self._audit("approved", "response_verified", challenge=challenge, token=outer_token)
        return user

    def _process_response(self, outer_token: str, challenge: str) -> User:
        # Validate the server response against the pinned public key
        outer = self._server.verify_envelope(outer_token)

        # Decrypt the inner token ("secret") using the wrapped key ("sealed")
        secret, sealed = order_envelope_fields(outer.get("secret"), outer.get("sealed"))
        inner = self.decrypt_secret_payload(secret, sealed)

        # Validate the token was minted for us
        self.policy.check_challenge(challenge, inner)
        self.policy.check_org_domain(self.client_domain, inner)

        return self._user_from_claims(inner)

    def decrypt_secret_payload(self, secret: str, sealed: str) -> Dict[str, Any]:
        one_time_key = unseal(sealed, self._client_secret_key)
        try:
            parser = self.policy.payload_parser(one_time_key, self.client_domain)
            return parser.parse(secret)
        except TokenError as e:
            raise PayloadError.wrap(e, "secret payload rejected") from e
        finally:
            one_time_key.wipe()

    @staticmethod
    def _user_from_claims(claims: Dict[str, Any]) -> User:
        missing = [k for k in USER_CLAIMS if k not in claims]
        if missing:
            raise PayloadError(
                "secret payload is missing user claims",
                {"missing": missing},
                reason="malformed_token",
            )
        try:
            return User.from_claims(claims)
        except ValidationError:
            raise PayloadError("secret payload has invalid user claims", reason="malformed_token")

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------
    def _audit(self, result: str, reason: str, **fields: Any) -> None:
        if self.audit_log is None:
            return
        self.audit_log.append(
            build_event(
                result=result,
                reason=reason,
                server=self._server.get_domain(),
                client_domain=self.client_domain,
                **fields,
            )
        )

    def __repr__(self):
        return f"Client(domain={self.client_domain!r}, server={self._server!r})"

