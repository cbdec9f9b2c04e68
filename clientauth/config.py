from dataclasses import dataclass, replace
from typing import Optional, Tuple
from urllib.parse import urlparse, urlunparse

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .auth_server import DEFAULT_DOMAIN, DEFAULT_URL, AuthServer
from .errors import ConfigurationError
from .keys import AsymmetricPublicKey, AsymmetricSecretKey


def _normalize_url(v: str, field: str) -> str:
    v = (v or "").strip().rstrip("/")
    p = urlparse(v)

    if p.scheme not in ("http", "https"):
        raise ValueError(f"{field} must start with http:// or https://")
    if not p.hostname:
        raise ValueError(f"{field} must include a hostname")

    netloc = p.hostname.lower()
    if p.port:
        netloc = f"{netloc}:{p.port}"
    return urlunparse((p.scheme, netloc, p.path, "", "", ""))


def _normalize_domain(v: str) -> str:
    """
    Domain-only value. Accepts accidental full URLs and strips
    scheme/path/trailing slashes.
    """
    v = (v or "").strip()

    if "://" in v:
        p = urlparse(v)
        if p.hostname:
            v = p.hostname

    v = v.strip().rstrip("/").lower()

    if not v:
        raise ValueError("domain cannot be empty")
    if "/" in v:
        raise ValueError("domain must be bare (no scheme, no path)")
    return v


class Settings(BaseSettings):
    SERVER_URL: str = DEFAULT_URL
    SERVER_DOMAIN: str = DEFAULT_DOMAIN

    # PASERK strings: k4.public.<...> / k4.secret.<...>
    SERVER_PUBLIC_KEY: Optional[str] = None
    CLIENT_SECRET_KEY: Optional[str] = None

    # this relying party's domain (inner token audience + default org)
    CLIENT_DOMAIN: Optional[str] = None

    # extra org domains accepted besides CLIENT_DOMAIN (e.g. other TLDs),
    # comma-separated
    ALLOWED_ORG_DOMAINS: str = ""

    # where the auth server sends the browser back to
    CALLBACK_URL: str = "http://127.0.0.1:8080/auth/callback"

    AUDIT_LOG_PATH: Optional[str] = None
    LOG_LEVEL: str = "info"

    model_config = SettingsConfigDict(env_prefix="CLIENTAUTH_", env_file=".env")

    @field_validator("SERVER_URL")
    @classmethod
    def normalize_server_url(cls, v: str) -> str:
        return _normalize_url(v, "SERVER_URL")

    @field_validator("CALLBACK_URL")
    @classmethod
    def normalize_callback_url(cls, v: str) -> str:
        return _normalize_url(v, "CALLBACK_URL")

    @field_validator("SERVER_DOMAIN")
    @classmethod
    def normalize_server_domain(cls, v: str) -> str:
        return _normalize_domain(v)

    @field_validator("CLIENT_DOMAIN")
    @classmethod
    def normalize_client_domain(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return _normalize_domain(v)

    @field_validator("ALLOWED_ORG_DOMAINS")
    @classmethod
    def normalize_org_domains(cls, v: str) -> str:
        return ",".join(_normalize_domain(d) for d in (v or "").split(",") if d.strip())

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        v = (v or "info").strip().lower()
        if v not in ("debug", "info", "warning", "error", "critical"):
            raise ValueError("LOG_LEVEL must be a standard logging level")
        return v

    @property
    def org_domains(self) -> list[str]:
        return [d for d in self.ALLOWED_ORG_DOMAINS.split(",") if d]


settings = Settings()


@dataclass(frozen=True)
class ClientConfig:
    """
    Immutable client configuration.

    with_*() return an updated copy; getters raise ConfigurationError
    for anything not yet configured.
    """

    server: Optional[AuthServer] = None
    secret_key: Optional[AsymmetricSecretKey] = None
    domain: Optional[str] = None
    allowed_org_domains: Tuple[str, ...] = ()

    @classmethod
    def from_settings(cls, s: Optional[Settings] = None) -> "ClientConfig":
        s = s or settings
        config = cls()
        if s.SERVER_PUBLIC_KEY:
            config = config.with_auth_server(
                AuthServer(
                    AsymmetricPublicKey.from_paserk(s.SERVER_PUBLIC_KEY),
                    s.SERVER_URL,
                    s.SERVER_DOMAIN,
                )
            )
        if s.CLIENT_SECRET_KEY:
            config = config.with_secret_key(AsymmetricSecretKey.from_paserk(s.CLIENT_SECRET_KEY))
        if s.CLIENT_DOMAIN:
            config = config.with_domain(s.CLIENT_DOMAIN)
        if s.org_domains:
            config = config.with_allowed_org_domains(*s.org_domains)
        return config

    def get_auth_server(self) -> AuthServer:
        if self.server is None:
            raise ConfigurationError("Server not configured")
        return self.server

    def get_secret_key(self) -> AsymmetricSecretKey:
        if self.secret_key is None:
            raise ConfigurationError("Client secret key not configured")
        return self.secret_key

    def get_domain(self) -> str:
        if self.domain is None:
            raise ConfigurationError("Client domain not configured")
        return self.domain

    def with_auth_server(self, server: AuthServer) -> "ClientConfig":
        return replace(self, server=server)

    def with_secret_key(self, secret_key: AsymmetricSecretKey) -> "ClientConfig":
        return replace(self, secret_key=secret_key)

    def with_domain(self, domain: str) -> "ClientConfig":
        return replace(self, domain=domain)

    def with_allowed_org_domains(self, *domains: str) -> "ClientConfig":
        return replace(self, allowed_org_domains=tuple(domains))
