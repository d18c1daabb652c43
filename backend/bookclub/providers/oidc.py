"""OpenID Connect relying-party adapter.

Discovery, authorization URL, code exchange and ID token checks. Signature,
issuer, audience and expiry validation are PyJWT's job; this module only adds
the nonce binding and the claim requirements the login flow relies on.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

import jwt
import requests

from bookclub.core.errors import IdentityVerificationFailed
from bookclub.core.security import secrets_match
from bookclub.core.settings import Settings, oidc_redirect_uri

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = ("openid", "email", "profile")
ID_TOKEN_ALGORITHMS = ["RS256", "RS384", "RS512", "ES256", "ES384", "PS256"]
CLOCK_SKEW_SECONDS = 60


@dataclass(frozen=True)
class ProviderMetadata:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    userinfo_endpoint: str | None = None


@dataclass(frozen=True)
class VerifiedIdentity:
    subject: str
    email: str
    email_verified: bool
    given_name: str | None = None
    family_name: str | None = None


def discover(issuer: str, *, timeout: float) -> ProviderMetadata:
    url = f"{issuer.rstrip('/')}/.well-known/openid-configuration"
    # Following redirects here would let a hostile issuer point us anywhere.
    resp = requests.get(url, headers={"Accept": "application/json"}, timeout=timeout, allow_redirects=False)
    resp.raise_for_status()
    data = resp.json()
    try:
        return ProviderMetadata(
            issuer=data["issuer"],
            authorization_endpoint=data["authorization_endpoint"],
            token_endpoint=data["token_endpoint"],
            jwks_uri=data["jwks_uri"],
            userinfo_endpoint=data.get("userinfo_endpoint"),
        )
    except KeyError as e:
        raise ValueError(f"Discovery document for {issuer} is missing {e.args[0]}") from e


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


class OidcClient:
    def __init__(
        self,
        *,
        issuer: str,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timeout: float = 10.0,
        require_verified_email: bool = True,
        scopes: tuple[str, ...] = DEFAULT_SCOPES,
        metadata: ProviderMetadata | None = None,
    ):
        self.issuer = issuer
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self.require_verified_email = require_verified_email
        self.scopes = scopes
        self._metadata = metadata
        self._jwks_client: jwt.PyJWKClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "OidcClient":
        return cls(
            issuer=settings.oidc_issuer,
            client_id=settings.oidc_client_id,
            client_secret=settings.oidc_client_secret,
            redirect_uri=oidc_redirect_uri(settings),
            timeout=settings.oidc_http_timeout_seconds,
            require_verified_email=settings.oidc_require_verified_email,
        )

    @property
    def metadata(self) -> ProviderMetadata:
        if self._metadata is None:
            try:
                self._metadata = discover(self.issuer, timeout=self.timeout)
            except (requests.RequestException, ValueError) as e:
                logger.warning("OIDC discovery failed for %s: %s", self.issuer, e)
                raise IdentityVerificationFailed("Identity provider discovery failed") from e
        return self._metadata

    def _jwks(self) -> jwt.PyJWKClient:
        if self._jwks_client is None:
            self._jwks_client = jwt.PyJWKClient(self.metadata.jwks_uri, timeout=self.timeout)
        return self._jwks_client

    def build_authorize_url(self, csrf_state: str, nonce: str, return_url: str | None = None) -> str:
        # return_url stays server-side with the pending state; the provider only
        # ever redirects to the configured redirect_uri.
        q = urlencode(
            {
                "client_id": self.client_id,
                "response_type": "code",
                "redirect_uri": self.redirect_uri,
                "scope": " ".join(self.scopes),
                "state": csrf_state,
                "nonce": nonce,
            }
        )
        return f"{self.metadata.authorization_endpoint}?{q}"

    def exchange_and_verify(self, callback_params: Mapping[str, str | None], expected_nonce: str) -> VerifiedIdentity:
        error = callback_params.get("error")
        if error:
            # Provider-side denial (e.g. access_denied). Description is provider text, not a secret.
            logger.info("Provider returned error=%s description=%s", error, callback_params.get("error_description"))
            raise IdentityVerificationFailed(f"Provider returned error: {error}")

        code = callback_params.get("code")
        if not code:
            raise IdentityVerificationFailed("Missing authorization code")

        tokens = self._exchange_code(code)
        id_token = tokens.get("id_token")
        if not id_token:
            raise IdentityVerificationFailed("Provider did not return an ID token")

        claims = self._verify_id_token(id_token, expected_nonce)

        email = claims.get("email")
        if not email:
            raise IdentityVerificationFailed("ID token has no email claim")
        email_verified = _as_bool(claims.get("email_verified", False))
        if self.require_verified_email and not email_verified:
            raise IdentityVerificationFailed("Email address is not verified")

        given_name = claims.get("given_name")
        family_name = claims.get("family_name")
        access_token = tokens.get("access_token")
        if (not given_name or not family_name) and access_token:
            profile = self._fetch_userinfo(access_token)
            given_name = given_name or profile.get("given_name")
            family_name = family_name or profile.get("family_name")

        return VerifiedIdentity(
            subject=str(claims["sub"]),
            email=str(email).lower(),
            email_verified=email_verified,
            given_name=given_name,
            family_name=family_name,
        )

    def _exchange_code(self, code: str) -> dict:
        try:
            resp = requests.post(
                self.metadata.token_endpoint,
                headers={"Accept": "application/json"},
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                timeout=self.timeout,
                allow_redirects=False,
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.Timeout as e:
            logger.warning("Token exchange with %s timed out", self.issuer)
            raise IdentityVerificationFailed("Token exchange timed out") from e
        except (requests.RequestException, ValueError) as e:
            logger.warning("Token exchange with %s failed: %s", self.issuer, type(e).__name__)
            raise IdentityVerificationFailed("Token exchange failed") from e
        if not isinstance(data, dict):
            raise IdentityVerificationFailed("Malformed token response")
        return data

    def _verify_id_token(self, id_token: str, expected_nonce: str) -> dict:
        try:
            signing_key = self._jwks().get_signing_key_from_jwt(id_token)
            claims = jwt.decode(
                id_token,
                signing_key.key,
                algorithms=ID_TOKEN_ALGORITHMS,
                audience=self.client_id,
                issuer=self.metadata.issuer,
                leeway=CLOCK_SKEW_SECONDS,
                options={"require": ["exp", "iat", "iss", "aud", "sub"]},
            )
        except jwt.PyJWTError as e:
            logger.warning("ID token rejected: %s", type(e).__name__)
            raise IdentityVerificationFailed("ID token verification failed") from e

        if not secrets_match(expected_nonce, str(claims.get("nonce") or "")):
            logger.warning("ID token nonce mismatch")
            raise IdentityVerificationFailed("Nonce mismatch")
        return claims

    def _fetch_userinfo(self, access_token: str) -> dict:
        endpoint = self.metadata.userinfo_endpoint
        if not endpoint:
            return {}
        try:
            resp = requests.get(
                endpoint,
                headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
                timeout=self.timeout,
                allow_redirects=False,
            )
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            # Names are cosmetic; placeholders are used downstream.
            logger.warning("Userinfo lookup failed: %s", type(e).__name__)
            return {}
        return data if isinstance(data, dict) else {}
