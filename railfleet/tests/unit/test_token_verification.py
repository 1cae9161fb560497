from __future__ import annotations

import json
import time
from typing import Any

import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from railfleet.core.config import Settings
from railfleet.core.errors import AuthError
from railfleet.services.auth.tokens import clear_jwks_cache, identity_from_claims, verify_bearer_token


JWKS_URL = "https://login.example.test/discovery/v2.0/keys"
ISSUER = "https://login.example.test/tenant/v2.0"
AUDIENCE = "api://railfleet"


@pytest.fixture(autouse=True)
def _reset_jwks_cache():
    clear_jwks_cache()
    yield
    clear_jwks_cache()


@pytest.fixture(scope="module")
def signing_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _jwk(private_key: rsa.RSAPrivateKey, kid: str) -> dict[str, Any]:
    jwk = json.loads(jwt.algorithms.RSAAlgorithm.to_jwk(private_key.public_key()))
    jwk.update({"kid": kid, "alg": "RS256", "use": "sig"})
    return jwk


def _settings() -> Settings:
    return Settings(auth_jwks_url=JWKS_URL, auth_issuer=ISSUER, auth_audience=AUDIENCE)


def _token(private_key: rsa.RSAPrivateKey, *, kid: str = "k1", **overrides: Any) -> str:
    now = int(time.time())
    claims: dict[str, Any] = {
        "iss": ISSUER,
        "aud": AUDIENCE,
        "iat": now,
        "exp": now + 600,
        "upn": "anna.tech@railfleet.app",
        "name": "Anna Tech",
        "tid": "71416bf2-04a4-4715-a8d2-6af239168e20",
        "oid": "object-1",
        "groups": ["5dc860e3-600d-4332-9200-5cdc53e7242b"],
    }
    claims.update(overrides)
    return jwt.encode(claims, private_key, algorithm="RS256", headers={"kid": kid})


class RecordingFetcher:
    def __init__(self, *responses: dict[str, Any]) -> None:
        self._responses = list(responses)
        self.calls = 0

    async def __call__(self, url: str) -> dict[str, Any]:
        assert url == JWKS_URL
        response = self._responses[min(self.calls, len(self._responses) - 1)]
        self.calls += 1
        return response


@pytest.mark.asyncio
async def test_valid_token_maps_claims(signing_key) -> None:
    fetcher = RecordingFetcher({"keys": [_jwk(signing_key, "k1")]})
    identity = await verify_bearer_token(_token(signing_key), settings=_settings(), fetcher=fetcher)
    assert identity.email == "anna.tech@railfleet.app"
    assert identity.name == "Anna Tech"
    assert identity.external_tenant_id == "71416bf2-04a4-4715-a8d2-6af239168e20"
    assert identity.groups == ["5dc860e3-600d-4332-9200-5cdc53e7242b"]


@pytest.mark.asyncio
async def test_key_set_is_cached_between_calls(signing_key) -> None:
    fetcher = RecordingFetcher({"keys": [_jwk(signing_key, "k1")]})
    for _ in range(3):
        await verify_bearer_token(_token(signing_key), settings=_settings(), fetcher=fetcher)
    assert fetcher.calls == 1


@pytest.mark.asyncio
async def test_unknown_kid_forces_one_refresh(signing_key) -> None:
    stale = {"keys": [_jwk(signing_key, "old-key")]}
    rotated = {"keys": [_jwk(signing_key, "old-key"), _jwk(signing_key, "k2")]}
    fetcher = RecordingFetcher(stale, rotated)
    identity = await verify_bearer_token(_token(signing_key, kid="k2"), settings=_settings(), fetcher=fetcher)
    assert identity.email == "anna.tech@railfleet.app"
    assert fetcher.calls == 2


@pytest.mark.asyncio
async def test_unmatched_kid_after_refresh_is_rejected(signing_key) -> None:
    fetcher = RecordingFetcher({"keys": [_jwk(signing_key, "other")]})
    with pytest.raises(AuthError):
        await verify_bearer_token(_token(signing_key, kid="k9"), settings=_settings(), fetcher=fetcher)
    assert fetcher.calls == 2


@pytest.mark.asyncio
async def test_expired_token_is_rejected(signing_key) -> None:
    fetcher = RecordingFetcher({"keys": [_jwk(signing_key, "k1")]})
    expired = _token(signing_key, exp=int(time.time()) - 3600)
    with pytest.raises(AuthError):
        await verify_bearer_token(expired, settings=_settings(), fetcher=fetcher)


@pytest.mark.asyncio
async def test_wrong_audience_is_rejected(signing_key) -> None:
    fetcher = RecordingFetcher({"keys": [_jwk(signing_key, "k1")]})
    with pytest.raises(AuthError):
        await verify_bearer_token(_token(signing_key, aud="api://other"), settings=_settings(), fetcher=fetcher)


@pytest.mark.asyncio
async def test_token_signed_by_another_key_is_rejected(signing_key) -> None:
    intruder = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    fetcher = RecordingFetcher({"keys": [_jwk(signing_key, "k1")]})
    with pytest.raises(AuthError):
        await verify_bearer_token(_token(intruder, kid="k1"), settings=_settings(), fetcher=fetcher)


@pytest.mark.asyncio
async def test_symmetric_algorithms_are_refused() -> None:
    token = jwt.encode({"upn": "x@railfleet.app", "exp": int(time.time()) + 60}, "s" * 32, algorithm="HS256")
    fetcher = RecordingFetcher({"keys": []})
    with pytest.raises(AuthError):
        await verify_bearer_token(token, settings=_settings(), fetcher=fetcher)
    assert fetcher.calls == 0


@pytest.mark.asyncio
async def test_verification_requires_jwks_url(signing_key) -> None:
    with pytest.raises(AuthError):
        await verify_bearer_token(_token(signing_key), settings=Settings(auth_jwks_url=None))


def test_identity_falls_back_through_email_claims() -> None:
    identity = identity_from_claims({"preferred_username": "p@railfleet.app", "sub": "s1", "groups": "g1"})
    assert identity.email == "p@railfleet.app"
    assert identity.name == "p@railfleet.app"
    assert identity.object_id == "s1"
    assert identity.groups == ["g1"]


def test_identity_requires_a_principal() -> None:
    with pytest.raises(AuthError):
        identity_from_claims({"name": "Nobody"})
