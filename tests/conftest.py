"""
Shared test configuration and fixtures for SIWA tests.

Provides a fake Apple ID service (token and revocation endpoints served by an
aiohttp TestServer), settings with a freshly generated signing key, and a
key-value store backed by fakeredis.
"""

import aiohttp
import fakeredis.aioredis
import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer
from jwcrypto import jwk

from study.applelogin.siwa.app.config import Settings
from study.applelogin.siwa.app.service import AuthorizationService
from study.applelogin.siwa.model.store import RedisKeyValueStore

from tests.helpers import BUNDLE_ID, KEY_ID, TEAM_ID, FakeAppleService


@pytest.fixture
def signing_key() -> jwk.JWK:
    return jwk.JWK.generate(kty="EC", crv="P-256")


@pytest.fixture
def private_key_pem(signing_key) -> bytes:
    return signing_key.export_to_pem(private_key=True, password=None)


@pytest.fixture
def public_key(signing_key) -> jwk.JWK:
    return jwk.JWK(**signing_key.export_public(as_dict=True))


@pytest_asyncio.fixture
async def apple():
    """Serve a FakeAppleService for the duration of a test."""
    fake = FakeAppleService()
    app = web.Application()
    app.router.add_post("/auth/token", fake.handle_token)
    app.router.add_post("/auth/revoke", fake.handle_revoke)

    server = TestServer(app)
    await server.start_server()
    fake.token_endpoint = str(server.make_url("/auth/token"))
    fake.revoke_endpoint = str(server.make_url("/auth/revoke"))

    yield fake

    await server.close()


@pytest.fixture
def settings(apple, private_key_pem) -> Settings:
    return Settings(
        team_id=TEAM_ID,
        bundle_id=BUNDLE_ID,
        key_id=KEY_ID,
        private_key=private_key_pem,
        token_endpoint=apple.token_endpoint,
        revoke_endpoint=apple.revoke_endpoint,
        settle_delay=0,
        authorization_timeout=5,
    )


@pytest_asyncio.fixture
async def fake_redis():
    """Provide fake Redis client for unit tests."""
    client = fakeredis.aioredis.FakeRedis(decode_responses=False)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def store(fake_redis) -> RedisKeyValueStore:
    return RedisKeyValueStore(fake_redis, prefix="test")


@pytest_asyncio.fixture
async def http_session():
    async with aiohttp.ClientSession() as session:
        yield session


@pytest.fixture
def service(settings, http_session, store) -> AuthorizationService:
    return AuthorizationService(settings, http_session, store)
