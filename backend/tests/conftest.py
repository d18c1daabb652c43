"""Shared fixtures: isolated settings, in-memory databases, a fake OIDC provider."""

from __future__ import annotations

import json
import time
from urllib.parse import parse_qs, urlparse

import jwt
import pytest
import requests
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ISSUER = "https://idp.example.com"
CLIENT_ID = "bookclub-test-client"
CLIENT_SECRET = "bookclub-test-secret"
REDIRECT_URI = "http://testserver/api/auth/callback"
RETURN_URL = "https://app/callback"
KEY_ID = "test-key"


@pytest.fixture(autouse=True)
def settings_env(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("SESSION_SECRET_KEY", "test-session-secret-key")
    monkeypatch.setenv("WEB_BASE_URL", "http://localhost:5173")
    monkeypatch.setenv("ALLOWED_RETURN_URLS", f"{RETURN_URL},http://localhost:5173")
    monkeypatch.setenv("OIDC_ISSUER", ISSUER)
    monkeypatch.setenv("OIDC_CLIENT_ID", CLIENT_ID)
    monkeypatch.setenv("OIDC_CLIENT_SECRET", CLIENT_SECRET)
    monkeypatch.setenv("OIDC_REDIRECT_URI", REDIRECT_URI)

    from bookclub.api.deps import get_oidc_client
    from bookclub.core.settings import get_settings

    get_settings.cache_clear()
    get_oidc_client.cache_clear()
    yield
    get_settings.cache_clear()
    get_oidc_client.cache_clear()


@pytest.fixture
def engine():
    import bookclub.models  # noqa: F401  (registers tables)
    from bookclub.db.base import Base

    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def file_engine(tmp_path):
    """File-backed SQLite so several threads get real, separate connections."""
    import bookclub.models  # noqa: F401
    from bookclub.db.base import Base
    from bookclub.db.session import build_engine

    eng = build_engine(f"sqlite+pysqlite:///{tmp_path / 'bookclub.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


class FakeResponse:
    def __init__(self, payload, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code

    def json(self):
        return self._payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FakeProvider:
    """Stands in for the identity provider's token, JWKS and userinfo endpoints."""

    def __init__(self):
        self.private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        jwk = json.loads(RSAAlgorithm.to_jwk(self.private_key.public_key()))
        jwk.update({"kid": KEY_ID, "alg": "RS256", "use": "sig"})
        self.jwks = {"keys": [jwk]}
        self.codes: dict[str, dict] = {}
        self.userinfo: dict = {}
        self.token_requests: list[dict] = []
        self.post_error: Exception | None = None

    def metadata(self):
        from bookclub.providers.oidc import ProviderMetadata

        return ProviderMetadata(
            issuer=ISSUER,
            authorization_endpoint=f"{ISSUER}/authorize",
            token_endpoint=f"{ISSUER}/token",
            jwks_uri=f"{ISSUER}/jwks",
            userinfo_endpoint=f"{ISSUER}/userinfo",
        )

    def client(self, **kwargs):
        from bookclub.providers.oidc import OidcClient

        return OidcClient(
            issuer=ISSUER,
            client_id=CLIENT_ID,
            client_secret=CLIENT_SECRET,
            redirect_uri=REDIRECT_URI,
            metadata=self.metadata(),
            **kwargs,
        )

    def id_token(self, *, nonce: str | None, email: str = "a@b.com", key=None, **overrides) -> str:
        now = int(time.time())
        claims = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "sub": f"subject-{email}",
            "email": email,
            "email_verified": True,
            "given_name": "Ada",
            "family_name": "Lovelace",
            "iat": now,
            "exp": now + 300,
            "nonce": nonce,
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return jwt.encode(claims, key or self.private_key, algorithm="RS256", headers={"kid": KEY_ID})

    def grant(self, code: str, *, nonce: str | None, **claims) -> str:
        self.codes[code] = {"access_token": f"access-{code}", "token_type": "Bearer", "id_token": self.id_token(nonce=nonce, **claims)}
        return code

    def post(self, url, data=None, **kwargs):
        self.token_requests.append(dict(data or {}))
        if self.post_error is not None:
            raise self.post_error
        if url != f"{ISSUER}/token":
            return FakeResponse({"error": "not_found"}, status_code=404)
        payload = self.codes.pop((data or {}).get("code"), None)
        if payload is None:
            return FakeResponse({"error": "invalid_grant"}, status_code=400)
        return FakeResponse(payload)

    def get(self, url, headers=None, **kwargs):
        if url == f"{ISSUER}/userinfo":
            return FakeResponse(self.userinfo)
        return FakeResponse({}, status_code=404)


@pytest.fixture
def provider(monkeypatch):
    p = FakeProvider()
    monkeypatch.setattr(requests, "post", p.post)
    monkeypatch.setattr(requests, "get", p.get)
    monkeypatch.setattr(jwt.PyJWKClient, "fetch_data", lambda self: p.jwks)
    return p


def query_params(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}
