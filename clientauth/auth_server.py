"""
clientauth/auth_server.py

The client's view of the central auth server.

Holds the server's PINNED public key plus its URL and domain, and verifies
the outer (signed) response envelope before the client looks at any of its
fields. The verification key is fixed at construction time; a key carried
by the request or the token itself is never consulted.
"""

from typing import Any, Dict, Optional
from urllib.parse import urlencode

from .errors import EnvelopeError, TokenError
from .keys import AsymmetricPublicKey
from .logging import get_logger
from .rules import PURPOSE_PUBLIC, NotExpired, Subject, TokenParser

DEFAULT_URL = "https://auth.piefrost.com"
DEFAULT_DOMAIN = "auth.piefrost.com"

logger = get_logger("clientauth.auth_server")


class AuthServer:
    def __init__(
        self,
        server_public_key: AsymmetricPublicKey,
        url: str = DEFAULT_URL,
        domain: str = DEFAULT_DOMAIN,
    ):
        if not isinstance(server_public_key, AsymmetricPublicKey):
            raise TypeError("server_public_key must be an AsymmetricPublicKey")
        self._server_public_key = server_public_key
        self.url = url.rstrip("/")
        self.domain = domain

    @property
    def public_key(self) -> AsymmetricPublicKey:
        return self._server_public_key

    def get_auth_url(self, params: Optional[Dict[str, Any]] = None) -> str:
        if params:
            return f"{self.url}/auth?{urlencode(params)}"
        return f"{self.url}/auth"

    def get_domain(self) -> str:
        return self.domain

    def envelope_parser(self) -> TokenParser:
        return TokenParser(
            PURPOSE_PUBLIC,
            self._server_public_key,
            [NotExpired(), Subject(self.domain)],
        )

    def verify_envelope(self, token: str) -> Dict[str, Any]:
        """
        Verify signature, expiration and subject of the server's response.

        Raises EnvelopeError chained from the underlying TokenError; its
        `reason` is the underlying code (invalid_signature, expired, ...).
        """
        try:
            return self.envelope_parser().parse(token)
        except TokenError as e:
            logger.info("envelope_rejected", reason=e.code, server=self.domain)
            raise EnvelopeError.wrap(e, "auth server response rejected") from e

    def __repr__(self):
        return f"AuthServer(url={self.url!r}, domain={self.domain!r})"
