"""Bearer token verification against the identity provider's published keys."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import json
import logging
import time
from typing import Any, Awaitable, Callable

import httpx
import jwt

from railfleet.core.config import Settings, get_settings
from railfleet.core.errors import AuthError


logger = logging.getLogger(__name__)

_ALLOWED_ALGS = {"RS256", "RS384", "RS512", "ES256", "ES384", "ES512"}

JwksFetcher = Callable[[str], Awaitable[dict[str, Any]]]

_jwks_cache: dict[str, tuple[float, dict[str, Any]]] = {}
_cache_lock = asyncio.Lock()


@dataclass(frozen=True)
class Identity:
    email: str
    name: str
    external_tenant_id: str | None
    object_id: str | None
    groups: list[str] = field(default_factory=list)


def _normalize_list_claim(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return [str(item) for item in value]
    return [str(value)]


def identity_from_claims(claims: dict[str, Any]) -> Identity:
    # Entra ID access tokens carry upn; other providers fall back to email claims.
    email = claims.get("upn") or claims.get("email") or claims.get("preferred_username")
    if not email:
        raise AuthError("Token carries no user principal")
    return Identity(
        email=str(email),
        name=str(claims.get("name") or email),
        external_tenant_id=claims.get("tid"),
        object_id=claims.get("oid") or claims.get("sub"),
        groups=_normalize_list_claim(claims.get("groups")),
    )


async def fetch_jwks(jwks_url: str) -> dict[str, Any]:
    settings = get_settings()
    timeout = settings.ext_call_timeout_ms / 1000
    async with httpx.AsyncClient(timeout=timeout) as client:
        response = await client.get(jwks_url)
    response.raise_for_status()
    return response.json()


def clear_jwks_cache() -> None:
    _jwks_cache.clear()


async def _get_jwks(
    jwks_url: str, *, ttl_s: int, fetcher: JwksFetcher, force_refresh: bool = False
) -> dict[str, Any]:
    async with _cache_lock:
        cached = _jwks_cache.get(jwks_url)
        if cached is not None and not force_refresh and cached[0] > time.monotonic():
            return cached[1]
        try:
            jwks = await fetcher(jwks_url)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("jwks_fetch_failed url=%s", jwks_url, exc_info=exc)
            raise AuthError("Unable to load token signing keys") from exc
        _jwks_cache[jwks_url] = (time.monotonic() + max(ttl_s, 0), jwks)
        return jwks


def _select_jwk(jwks: dict[str, Any], kid: str | None) -> dict[str, Any] | None:
    keys = jwks.get("keys") or []
    if kid:
        for key in keys:
            if key.get("kid") == kid:
                return key
        return None
    if len(keys) == 1:
        return keys[0]
    return None


def _jwk_to_key(jwk: dict[str, Any], alg: str) -> Any:
    payload = json.dumps(jwk)
    if alg.startswith("RS"):
        return jwt.algorithms.RSAAlgorithm.from_jwk(payload)
    if alg.startswith("ES"):
        return jwt.algorithms.ECAlgorithm.from_jwk(payload)
    raise AuthError("Unsupported token algorithm")


async def verify_bearer_token(
    token: str,
    *,
    settings: Settings | None = None,
    fetcher: JwksFetcher | None = None,
) -> Identity:
    """Verify signature, issuer, audience and expiry, then map claims to an Identity.

    An unknown key id triggers one forced JWKS refresh so signing-key rotation
    does not fail requests until the cache expires.
    """
    settings = settings or get_settings()
    fetcher = fetcher or fetch_jwks
    if not settings.auth_jwks_url:
        raise AuthError("Token verification is not configured")
    try:
        header = jwt.get_unverified_header(token)
    except jwt.PyJWTError as exc:
        raise AuthError("Malformed bearer token") from exc
    alg = header.get("alg")
    if not alg or alg not in _ALLOWED_ALGS:
        raise AuthError("Unsupported token algorithm")

    ttl_s = settings.auth_jwks_cache_ttl_s
    jwks = await _get_jwks(settings.auth_jwks_url, ttl_s=ttl_s, fetcher=fetcher)
    jwk = _select_jwk(jwks, header.get("kid"))
    if jwk is None:
        jwks = await _get_jwks(settings.auth_jwks_url, ttl_s=ttl_s, fetcher=fetcher, force_refresh=True)
        jwk = _select_jwk(jwks, header.get("kid"))
    if jwk is None:
        raise AuthError("No signing key matches the token")

    options: dict[str, Any] = {"require": ["exp"]}
    if not settings.auth_audience:
        options["verify_aud"] = False
    try:
        claims = jwt.decode(
            token,
            _jwk_to_key(jwk, alg),
            algorithms=[alg],
            audience=settings.auth_audience or None,
            issuer=settings.auth_issuer or None,
            leeway=settings.auth_clock_skew_seconds,
            options=options,
        )
    except jwt.PyJWTError as exc:
        logger.info("token_rejected reason=%s", type(exc).__name__)
        raise AuthError("Invalid bearer token") from exc
    return identity_from_claims(claims)
