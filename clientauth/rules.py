"""
clientauth/rules.py

Claim rules and the token parser.

A TokenParser pins three things up front:
  - purpose  ("public" -> signature check, "local" -> decrypt + tag check)
  - key      (never taken from the token or the caller at parse time)
  - rules    (callables run in order over the decoded claims)

Rules raise a TokenError subclass; the first failing rule wins.
Parsers are immutable: add_rule() returns a new parser.
"""

from datetime import datetime
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

from .errors import AudienceMismatch, Expired, MalformedToken, SubjectMismatch
from .keys import AsymmetricPublicKey, SymmetricKey
from .v4_tokens import decrypt_token_v4, now_utc, parse_time, verify_token_v4

Claims = Dict[str, Any]
Rule = Callable[[Claims], None]

PURPOSE_PUBLIC = "public"
PURPOSE_LOCAL = "local"


def _claim_time(claims: Claims, name: str) -> Optional[datetime]:
    if name not in claims:
        return None
    try:
        return parse_time(claims[name])
    except (TypeError, ValueError):
        raise MalformedToken(f"claim '{name}' is not an ISO-8601 timestamp")


class NotExpired:
    """
    now > exp  -> Expired
    now < nbf  -> Expired (not yet valid)

    A token without `exp` never passes.
    """

    def __init__(self, now: Optional[Callable[[], datetime]] = None):
        self._now = now or now_utc

    def __call__(self, claims: Claims) -> None:
        now = self._now()
        exp = _claim_time(claims, "exp")
        if exp is None:
            raise Expired("token has no expiration")
        if now > exp:
            raise Expired("token has expired")
        nbf = _claim_time(claims, "nbf")
        if nbf is not None and now < nbf:
            raise Expired("token is not yet valid")


class ForAudience:
    def __init__(self, audience: str):
        self.audience = audience

    def __call__(self, claims: Claims) -> None:
        got = claims.get("aud")
        if got != self.audience:
            raise AudienceMismatch(
                "token audience mismatch",
                {"expected": self.audience, "actual": got},
            )


class Subject:
    def __init__(self, subject: str):
        self.subject = subject

    def __call__(self, claims: Claims) -> None:
        got = claims.get("sub")
        if got != self.subject:
            raise SubjectMismatch(
                "token subject mismatch",
                {"expected": self.subject, "actual": got},
            )


class TokenParser:
    def __init__(
        self,
        purpose: str,
        key: Union[AsymmetricPublicKey, SymmetricKey],
        rules: Iterable[Rule] = (),
        footer: Optional[bytes] = None,
    ):
        if purpose == PURPOSE_PUBLIC and not isinstance(key, AsymmetricPublicKey):
            raise TypeError("public tokens need an AsymmetricPublicKey")
        if purpose == PURPOSE_LOCAL and not isinstance(key, SymmetricKey):
            raise TypeError("local tokens need a SymmetricKey")
        if purpose not in (PURPOSE_PUBLIC, PURPOSE_LOCAL):
            raise ValueError(f"unknown purpose: {purpose}")

        self.purpose = purpose
        self.key = key
        self.rules: Tuple[Rule, ...] = tuple(rules)
        self.footer = footer

    def add_rule(self, rule: Rule) -> "TokenParser":
        return TokenParser(self.purpose, self.key, self.rules + (rule,), self.footer)

    def parse(self, token: str) -> Claims:
        if self.purpose == PURPOSE_PUBLIC:
            claims = verify_token_v4(self.key, token, self.footer)
        else:
            claims = decrypt_token_v4(self.key, token, self.footer)

        for rule in self.rules:
            rule(claims)
        return claims


def _binding_rules(audience: Optional[str], subject: Optional[str]):
    rules = [NotExpired()]
    if audience is not None:
        rules.append(ForAudience(audience))
    if subject is not None:
        rules.append(Subject(subject))
    return rules


def decode_signed(
    token: str,
    key: AsymmetricPublicKey,
    *,
    audience: Optional[str] = None,
    subject: Optional[str] = None,
) -> Claims:
    return TokenParser(PURPOSE_PUBLIC, key, _binding_rules(audience, subject)).parse(token)


def decode_local(
    token: str,
    key: SymmetricKey,
    *,
    audience: Optional[str] = None,
    subject: Optional[str] = None,
) -> Claims:
    return TokenParser(PURPOSE_LOCAL, key, _binding_rules(audience, subject)).parse(token)
