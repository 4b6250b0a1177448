"""
auth/oidc.py -- OpenID Connect bridge to the external identity provider.

Covers the provider-facing half of federated login:
  discover()           -- fetch and cache <issuer>/.well-known/openid-configuration
  authorization_url()  -- front-channel redirect target, carries the state value
  exchange_code()      -- back-channel authorization-code exchange (authlib's
                          httpx OAuth2 client), bounded by a deadline
  verify_id_token()    -- signature against the provider JWKS, then iss/aud/exp/iat
  extract_identity()   -- email + name + expiry from verified claims
  end_session_url()    -- provider logout URL with id_token_hint

Every provider-side failure (network, bad code, bad signature, missing
claims) raises UpstreamError with the upstream text in .detail. The
orchestration (provisioning, session token, ID-token persistence) lives in
auth/service.py.

State binding:
  generate_state() produces 256 bits of URL-safe randomness and the value
  travels in the authorization URL. Checking it on callback is opt-in
  (Settings.oidc_verify_state); see the login routes.

Configuration:
  OIDCConfig.from_settings() returns None when any OIDC_* value is empty.
  The API then runs with federated login disabled.

Layer rule: no imports from api/, cache/, or crm/. Import from core/ is
allowed.
"""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from urllib.parse import urlencode

import httpx
from authlib.common.encoding import urlsafe_b64decode
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.jose import JsonWebKey, JsonWebToken
from authlib.jose.errors import JoseError

from auth.errors import UpstreamError
from auth.models import FederatedIdentity
from core.config import Settings

logger = logging.getLogger("microcrm.auth.oidc")

# Asymmetric algorithms only: an ID token signed with HS256 using a public
# key as the HMAC secret must never verify.
_id_token_jwt = JsonWebToken(["RS256", "RS384", "RS512", "ES256", "ES384", "ES512", "PS256", "PS384", "PS512"])

# Clock skew tolerated on exp/iat, in seconds.
_LEEWAY = 60


def _has_unknown_kid(raw_id_token: str, key_set) -> bool:
    """True when the token names a kid the cached key set does not hold."""
    try:
        header = json.loads(urlsafe_b64decode(raw_id_token.split(".", 1)[0].encode("ascii")))
    except ValueError:
        return False
    kid = header.get("kid") if isinstance(header, dict) else None
    return kid is not None and all(key.kid != kid for key in key_set.keys)


@dataclass(frozen=True)
class OIDCConfig:
    issuer: str
    client_id: str
    client_secret: str
    redirect_uri: str
    logout_url: str
    scope: str = "openid profile email"
    timeout: float = 10.0

    @classmethod
    def from_settings(cls, settings: Settings) -> OIDCConfig | None:
        if not settings.oidc_enabled:
            return None
        return cls(
            issuer=settings.oidc_issuer,
            client_id=settings.oidc_client_id,
            client_secret=settings.oidc_client_secret,
            redirect_uri=settings.oidc_redirect_uri,
            logout_url=settings.oidc_logout_url,
            timeout=settings.oidc_timeout_seconds,
        )


@dataclass(frozen=True)
class ProviderMetadata:
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str


class OIDCBridge:
    """Talks to one OIDC provider.

    transport is passed through to every httpx client the bridge creates.
    Production leaves it None; tests hand in an httpx.MockTransport that
    plays the provider.
    """

    def __init__(self, config: OIDCConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.config = config
        self._transport = transport
        self._metadata: ProviderMetadata | None = None
        self._key_set = None

    # ------------------------------------------------------------------
    # HTTP plumbing
    # ------------------------------------------------------------------

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport)

    def _oauth_client(self) -> AsyncOAuth2Client:
        return AsyncOAuth2Client(
            client_id=self.config.client_id,
            client_secret=self.config.client_secret,
            redirect_uri=self.config.redirect_uri,
            scope=self.config.scope,
            timeout=self.config.timeout,
            transport=self._transport,
        )

    async def _get_json(self, url: str, what: str) -> dict:
        try:
            async with self._http() as client:
                resp = await client.get(url)
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise UpstreamError(f"Failed to fetch {what}.", detail=str(exc)) from exc

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------

    async def discover(self) -> ProviderMetadata:
        """Return provider metadata, fetching it on first use."""
        if self._metadata is None:
            url = self.config.issuer.rstrip("/") + "/.well-known/openid-configuration"
            doc = await self._get_json(url, "OIDC discovery document")
            try:
                self._metadata = ProviderMetadata(
                    issuer=doc["issuer"],
                    authorization_endpoint=doc["authorization_endpoint"],
                    token_endpoint=doc["token_endpoint"],
                    jwks_uri=doc["jwks_uri"],
                )
            except KeyError as exc:
                raise UpstreamError(
                    "OIDC discovery document is incomplete.",
                    detail=f"missing {exc.args[0]!r}",
                ) from exc
            logger.info("OIDC provider discovered: %s", self._metadata.issuer)
        return self._metadata

    # ------------------------------------------------------------------
    # Front channel
    # ------------------------------------------------------------------

    @staticmethod
    def generate_state() -> str:
        """32 random bytes, URL-safe base64 without padding."""
        return secrets.token_urlsafe(32)

    async def authorization_url(self, state: str) -> str:
        metadata = await self.discover()
        async with self._oauth_client() as client:
            url, _ = client.create_authorization_url(metadata.authorization_endpoint, state=state)
        return url

    # ------------------------------------------------------------------
    # Back channel
    # ------------------------------------------------------------------

    async def exchange_code(self, code: str, timeout: float | None = None) -> dict:
        """Exchange an authorization code for the provider's token response.

        timeout is the caller's deadline for the whole exchange; it defaults
        to the configured OIDC timeout.
        """
        metadata = await self.discover()
        deadline = self.config.timeout if timeout is None else timeout
        try:
            async with self._oauth_client() as client:
                token = await asyncio.wait_for(
                    client.fetch_token(metadata.token_endpoint, code=code, redirect_uri=self.config.redirect_uri),
                    timeout=deadline,
                )
        except asyncio.TimeoutError as exc:
            raise UpstreamError("Failed to exchange token.", detail=f"deadline of {deadline}s exceeded") from exc
        except (OAuthError, httpx.HTTPError, ValueError) as exc:
            raise UpstreamError("Failed to exchange token.", detail=str(exc)) from exc
        return dict(token)

    async def _keys(self, refresh: bool = False):
        if self._key_set is None or refresh:
            metadata = await self.discover()
            jwks = await self._get_json(metadata.jwks_uri, "provider signing keys")
            try:
                self._key_set = JsonWebKey.import_key_set(jwks)
            except ValueError as exc:
                raise UpstreamError("Provider signing keys are invalid.", detail=str(exc)) from exc
        return self._key_set

    async def verify_id_token(self, raw_id_token: str, now: int | None = None) -> dict:
        """Verify signature and standard claims of an ID token; return its claims.

        The signing keys are cached. An unknown kid triggers one refetch, to
        follow provider key rotation.
        """
        metadata = await self.discover()
        claims_options = {
            "iss": {"essential": True, "value": metadata.issuer},
            "aud": {"essential": True, "value": self.config.client_id},
            "exp": {"essential": True},
            "iat": {"essential": True},
        }
        for refresh in (False, True):
            key_set = await self._keys(refresh=refresh)
            try:
                claims = _id_token_jwt.decode(raw_id_token, key_set, claims_options=claims_options)
                claims.validate(now=now, leeway=_LEEWAY)
                return dict(claims)
            except (JoseError, ValueError) as exc:
                if refresh or not _has_unknown_kid(raw_id_token, key_set):
                    raise UpstreamError("Failed to verify ID Token.", detail=str(exc)) from exc
        raise UpstreamError("Failed to verify ID Token.")

    @staticmethod
    def extract_identity(claims: dict) -> FederatedIdentity:
        """Pull email, display name, and expiry out of verified claims.

        email is required. A missing name is treated as empty.
        """
        email = claims.get("email")
        if not isinstance(email, str) or not email:
            raise UpstreamError("Failed to parse claims.", detail="ID token has no email claim")
        name = claims.get("name") or ""
        if not isinstance(name, str):
            raise UpstreamError("Failed to parse claims.", detail="ID token name claim is not a string")
        expires_at = datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
        return FederatedIdentity(email=email, name=name, expires_at=expires_at)

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def end_session_url(self, id_token: str, post_logout_redirect: str) -> str:
        query = urlencode({"id_token_hint": id_token, "post_logout_redirect_uri": post_logout_redirect})
        sep = "&" if "?" in self.config.logout_url else "?"
        return f"{self.config.logout_url}{sep}{query}"


async def build_oidc_bridge(settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> OIDCBridge | None:
    """Return a discovered bridge, or None when federated login must stay off.

    Missing configuration and a failed discovery both log a warning; neither
    stops the API from starting.
    """
    config = OIDCConfig.from_settings(settings)
    if config is None:
        logger.warning("OIDC not configured -- federated login disabled")
        return None
    bridge = OIDCBridge(config, transport=transport)
    try:
        await bridge.discover()
    except UpstreamError as exc:
        logger.warning("OIDC discovery failed (%s) -- federated login disabled", exc.detail or exc.message)
        return None
    return bridge
