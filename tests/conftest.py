"""
Shared fixtures: a client/server key pair and a factory that plays the
auth server's part of the handshake.
"""

from __future__ import annotations

import secrets
from datetime import timedelta
from typing import Any, Dict, Optional

import pytest

from clientauth.auth_server import AuthServer
from clientauth.client import Client
from clientauth.config import ClientConfig
from clientauth.keys import AsymmetricSecretKey, SymmetricKey
from clientauth.seal import seal
from clientauth.v4_tokens import encode_local, encode_signed, now_utc

SERVER_URL = "http://auth.localhost"
SERVER_DOMAIN = "auth.localhost"
CLIENT_DOMAIN = "pytest.localhost"


@pytest.fixture
def client_sk() -> AsymmetricSecretKey:
    return AsymmetricSecretKey.generate()


@pytest.fixture
def server_sk() -> AsymmetricSecretKey:
    return AsymmetricSecretKey.generate()


@pytest.fixture
def auth_server(server_sk) -> AuthServer:
    return AuthServer(server_sk.public_key(), SERVER_URL, SERVER_DOMAIN)


@pytest.fixture
def config(auth_server, client_sk) -> ClientConfig:
    return (
        ClientConfig()
        .with_auth_server(auth_server)
        .with_domain(CLIENT_DOMAIN)
        .with_secret_key(client_sk)
    )


@pytest.fixture
def client(config) -> Client:
    return Client.from_config(config)


@pytest.fixture
def challenge() -> str:
    return secrets.token_urlsafe(20)


class ResponseFactory:
    """Mints auth server responses the way the real server does."""

    def __init__(self, server_sk: AsymmetricSecretKey, client_sk: AsymmetricSecretKey):
        self.server_sk = server_sk
        self.client_sk = client_sk

    def __call__(
        self,
        challenge: str,
        *,
        username: str = "john.doe",
        userid: str = "U1",
        org: str = CLIENT_DOMAIN,
        inner_audience: str = CLIENT_DOMAIN,
        subject: str = SERVER_DOMAIN,
        inner_ttl: timedelta = timedelta(minutes=20),
        outer_ttl: timedelta = timedelta(minutes=15),
        seal_to: Optional[AsymmetricSecretKey] = None,
        sealed_key: Optional[AsymmetricSecretKey] = None,
        sign_with: Optional[AsymmetricSecretKey] = None,
        swap: bool = False,
        extra_inner: Optional[Dict[str, Any]] = None,
        outer_fields: Optional[Dict[str, Any]] = None,
    ) -> str:
        now = now_utc()
        one_time_key = SymmetricKey.generate()

        inner_claims = {
            "challenge": challenge,
            "username": username,
            "org": org,
            "userid": userid,
        }
        inner_claims.update(extra_inner or {})

        secret = encode_local(
            inner_claims,
            one_time_key,
            audience=inner_audience,
            issued_at=now,
            not_before=now,
            expiration=now + inner_ttl,
        )
        sealed = seal(sealed_key or one_time_key, (seal_to or self.client_sk).public_key())

        fields = {"secret": secret, "sealed": sealed}
        if swap:
            fields = {"secret": sealed, "sealed": secret}
        if outer_fields is not None:
            fields = outer_fields

        return encode_signed(
            fields,
            sign_with or self.server_sk,
            audience=org,
            subject=subject,
            issued_at=now,
            not_before=now,
            expiration=now + outer_ttl,
        )


@pytest.fixture
def make_response(server_sk, client_sk) -> ResponseFactory:
    return ResponseFactory(server_sk, client_sk)
