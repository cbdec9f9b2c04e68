"""
clientauth/policy.py

Verification hooks used by Client.process_response().

Three seams are replaceable:

  org_domain       who may log in (default: exactly the client's own domain)
  payload_parser   how the inner v4.local token is parsed (default:
                   NotExpired + ForAudience(client_domain)); extend it with
                   TokenParser.add_rule()
  challenge_rules  EXTRA checks run after the built-in challenge comparison

The constant-time challenge comparison itself is not a hook. It is the only
anti-replay defense in the protocol (there is no server-side nonce store),
so policies can add to it but never replace it.
"""

import hmac
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import ChallengeMismatch, DomainMismatch
from .keys import SymmetricKey
from .rules import PURPOSE_LOCAL, ForAudience, NotExpired, TokenParser

Claims = Dict[str, Any]
OrgDomainCheck = Callable[[str, Claims], None]
ChallengeRule = Callable[[str, Claims], None]
PayloadParserFactory = Callable[[SymmetricKey, str], TokenParser]


def _str_equals(expected: str, actual: Any) -> bool:
    if not isinstance(actual, str):
        return False
    return hmac.compare_digest(expected.encode("utf-8"), actual.encode("utf-8"))


def verify_challenge(challenge: str, claims: Claims) -> None:
    if not _str_equals(challenge, claims.get("challenge")):
        raise ChallengeMismatch("Challenge/response authentication failed")


def verify_org_domain(client_domain: str, claims: Claims) -> None:
    org = claims.get("org")
    if not _str_equals(client_domain, org):
        raise DomainMismatch(
            f"Domain mismatch. Expected: {client_domain}; Actual: {org}",
            {"expected": client_domain, "actual": org},
        )


def allow_org_domains(*domains: str) -> OrgDomainCheck:
    """
    Accept any of `domains` (e.g. the same organization under several TLDs).

    Every candidate is compared so timing does not reveal which one matched.
    """
    allowed = tuple(domains)
    if not allowed:
        raise ValueError("at least one org domain is required")

    def check(client_domain: str, claims: Claims) -> None:
        org = claims.get("org")
        matched = False
        for d in allowed:
            matched |= _str_equals(d, org)
        if not matched:
            raise DomainMismatch(
                f"Domain mismatch. Expected one of: {', '.join(allowed)}; Actual: {org}",
                {"expected": list(allowed), "actual": org},
            )

    return check


def default_payload_parser(key: SymmetricKey, client_domain: str) -> TokenParser:
    return TokenParser(
        PURPOSE_LOCAL,
        key,
        [NotExpired(), ForAudience(client_domain)],
    )


@dataclass(frozen=True)
class VerificationPolicy:
    org_domain: OrgDomainCheck = verify_org_domain
    payload_parser: PayloadParserFactory = default_payload_parser
    challenge_rules: Tuple[ChallengeRule, ...] = ()

    def check_challenge(self, challenge: str, claims: Claims) -> None:
        verify_challenge(challenge, claims)
        for rule in self.challenge_rules:
            rule(challenge, claims)

    def check_org_domain(self, client_domain: str, claims: Claims) -> None:
        self.org_domain(client_domain, claims)


DEFAULT_POLICY = VerificationPolicy()


def policy_for_domains(*domains: str, base: Optional[VerificationPolicy] = None) -> VerificationPolicy:
    base = base or DEFAULT_POLICY
    return VerificationPolicy(
        org_domain=allow_org_domains(*domains),
        payload_parser=base.payload_parser,
        challenge_rules=base.challenge_rules,
    )
