"""
Tests for the hash-chained audit log.
"""

import json
from datetime import timedelta

import pytest

from clientauth.audit import GENESIS_HASH, AuditLog, build_event
from clientauth.client import Client
from clientauth.errors import ChallengeMismatch, EnvelopeError

from .conftest import CLIENT_DOMAIN


@pytest.fixture
def audit_log(tmp_path) -> AuditLog:
    return AuditLog(tmp_path / "audit" / "auth_audit.jsonl")


def _lines(log: AuditLog):
    return [json.loads(line) for line in log.path.read_text(encoding="utf-8").splitlines()]


def test_chain_links(audit_log):
    h1 = audit_log.append(build_event(result="issued", reason="one"))
    h2 = audit_log.append(build_event(result="issued", reason="two"))

    first, second = _lines(audit_log)
    assert first["prev_hash"] == GENESIS_HASH
    assert first["hash"] == h1
    assert second["prev_hash"] == h1
    assert second["hash"] == h2
    assert audit_log.verify_chain()


def test_callers_cannot_inject_chain_fields(audit_log):
    audit_log.append({"result": "issued", "prev_hash": "f" * 64, "hash": "e" * 64})
    assert _lines(audit_log)[0]["prev_hash"] == GENESIS_HASH
    assert audit_log.verify_chain()


def test_tampering_breaks_chain(audit_log):
    audit_log.append(build_event(result="approved", reason="response_verified"))
    audit_log.append(build_event(result="denied", reason="challenge_mismatch"))

    lines = audit_log.path.read_text(encoding="utf-8").splitlines()
    lines[0] = lines[0].replace("approved", "denied")
    audit_log.path.write_text("\n".join(lines) + "\n", encoding="utf-8")

    assert not audit_log.verify_chain()


def test_missing_log_verifies(audit_log):
    assert audit_log.verify_chain()


def test_event_never_stores_raw_tokens():
    event = build_event(result="issued", reason="x", challenge="C1", token="v4.public.abc")

    assert "C1" not in json.dumps(event)
    assert "v4.public.abc" not in json.dumps(event)
    assert event["token_len"] == len("v4.public.abc")


def test_client_records_outcomes(auth_server, client_sk, make_response, challenge, audit_log):
    client = Client(auth_server, client_sk, CLIENT_DOMAIN, audit_log=audit_log)

    client.issue_request(challenge, "http://pytest.localhost/callback")
    client.process_response(make_response(challenge), challenge)
    with pytest.raises(ChallengeMismatch):
        client.process_response(make_response(challenge), "wrong")
    with pytest.raises(EnvelopeError):
        client.process_response(make_response(challenge, outer_ttl=timedelta(minutes=-1)), challenge)

    results = [(e["result"], e["reason"]) for e in _lines(audit_log)]
    assert results == [
        ("issued", "request_token_issued"),
        ("approved", "response_verified"),
        ("denied", "challenge_mismatch"),
        ("denied", "expired"),
    ]
    assert all(e["client_domain"] == CLIENT_DOMAIN for e in _lines(audit_log))
    assert audit_log.verify_chain()
