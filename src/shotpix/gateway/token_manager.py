"""Service-account bearer tokens for the generation provider.

Tokens are minted by signing an RS256 assertion with the service account's
private key and exchanging it at the OAuth token endpoint. Minted tokens are
cached per identity with an expiry five minutes short of the provider's
one-hour validity.
"""
from __future__ import annotations

import time
from typing import Callable

import httpx
from google.auth import crypt, jwt
from pydantic import BaseModel, ConfigDict, ValidationError

from shotpix.gateway.cache import CacheBackend, NullCache, safe_get, safe_set
from shotpix.gateway.debug import excerpt
from shotpix.gateway.errors import AuthError, GatewayTimeout
from shotpix.gateway.log_config import logger

TOKEN_VALIDITY_SECONDS = 3600
TOKEN_CACHE_SECONDS = 3300
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
DEFAULT_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
DEFAULT_SCOPE = "https://www.googleapis.com/auth/cloud-platform"


class AccessToken(BaseModel):
    """A bearer token and the moment it stops being handed out."""

    model_config = ConfigDict(frozen=True)

    value: str
    expires_at: int
    identity: str

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


def cache_key(identity: str) -> str:
    return f"oauth_token:{identity}"


class TokenManager:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        *,
        cache: CacheBackend | None = None,
        token_endpoint: str = DEFAULT_TOKEN_ENDPOINT,
        scope: str = DEFAULT_SCOPE,
        timeout: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http = http_client
        self._cache = cache or NullCache()
        self._token_endpoint = token_endpoint
        self._scope = scope
        self._timeout = timeout
        self._clock = clock

    def build_assertion(self, identity: str, private_key: str, now: int) -> str:
        """Sign the JWT assertion presented to the token endpoint."""
        claims = {
            "iss": identity,
            "sub": identity,
            "aud": self._token_endpoint,
            "scope": self._scope,
            "iat": now,
            "exp": now + TOKEN_VALIDITY_SECONDS,
        }
        try:
            signer = crypt.RSASigner.from_string(private_key)
            assertion = jwt.encode(signer, claims)
        except Exception as exc:
            raise AuthError(
                "Failed to sign service account assertion",
                debug={"identity": identity, "error": str(exc)},
            ) from exc
        return assertion.decode("utf-8") if isinstance(assertion, bytes) else assertion

    async def _cached(self, identity: str, now: float) -> AccessToken | None:
        raw = await safe_get(self._cache, cache_key(identity))
        if not raw:
            return None
        try:
            token = AccessToken.model_validate_json(raw)
        except ValidationError:
            logger.warning("token.cache corrupt entry identity=%s", identity)
            return None
        return token if token.is_valid(now) else None

    async def _exchange(self, identity: str, assertion: str) -> str:
        try:
            response = await self._http.post(
                self._token_endpoint,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
                timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise GatewayTimeout("Token exchange timed out", debug={"identity": identity}) from exc
        except httpx.HTTPError as exc:
            raise AuthError("Token exchange failed", debug={"identity": identity, "error": str(exc)}) from exc

        if response.status_code >= 400:
            raise AuthError(
                "Failed to get access token",
                status_code=response.status_code,
                debug={"identity": identity, "rawResponse": excerpt(response.text)},
            )
        try:
            value = response.json()["access_token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthError(
                "Token endpoint returned no access_token",
                status_code=response.status_code,
                debug={"identity": identity, "rawResponse": excerpt(response.text)},
            ) from exc
        if not isinstance(value, str) or not value:
            raise AuthError("Token endpoint returned an empty access_token", status_code=response.status_code)
        return value

    async def get_token(self, identity: str, private_key: str) -> AccessToken:
        """Return a cached token for ``identity`` or mint a new one."""
        now = int(self._clock())
        cached = await self._cached(identity, now)
        if cached is not None:
            return cached

        assertion = self.build_assertion(identity, private_key, now)
        value = await self._exchange(identity, assertion)
        token = AccessToken(value=value, expires_at=now + TOKEN_CACHE_SECONDS, identity=identity)
        logger.info("token.minted identity=%s expiresAt=%d", identity, token.expires_at)

        if not await safe_set(self._cache, cache_key(identity), token.model_dump_json(), TOKEN_CACHE_SECONDS):
            logger.warning("token.cache write skipped identity=%s", identity)
        return token
