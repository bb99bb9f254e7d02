"""
Authorization Service

This module wires the pipeline steps to the application's configuration and
collaborators. One AuthorizationService instance is constructed at startup
with its dependencies (HTTP session, signer, key-value store, metrics client)
and handed to the orchestrators; there is no process-wide singleton.

The service holds no per-run state besides the single-flight guard shared by
its orchestrators. Nonces, codes, client secrets and refresh tokens flow
through the PipelineRun that owns them.
"""

from datetime import datetime, timedelta, timezone
import logging
from types import TracebackType
from typing import Any, Dict, Optional

import aiohttp
from pydantic import BaseModel
import redis.asyncio as redis

from study.applelogin.siwa.app.config import Settings
from study.applelogin.siwa.app.metrics import (
    MetricsClient,
    NoOpMetricsClient,
    create_metrics_client,
)
from study.applelogin.siwa.apple.jwt import (
    ClientSecretSigner,
    decode_payload,
    token_expires_at,
)
from study.applelogin.siwa.apple.nonce import generate_nonce
from study.applelogin.siwa.apple.provider import (
    AuthorizationCredential,
    AuthorizationRequest,
)
from study.applelogin.siwa.apple.revoke import RevocationResult, TokenRevocationClient
from study.applelogin.siwa.apple.token import TokenExchangeClient
from study.applelogin.siwa.model.pipeline import PipelineRun, RunGuard
from study.applelogin.siwa.model.store import (
    KeyValueStore,
    RedisKeyValueStore,
    StoreKey,
)

logger = logging.getLogger(__name__)

UNKNOWN_PROFILE_VALUE = "?"


class Profile(BaseModel):
    """Display fields remembered from the last sign-in."""

    name: str = UNKNOWN_PROFILE_VALUE
    email: str = UNKNOWN_PROFILE_VALUE


class AuthorizationService:
    def __init__(
        self,
        settings: Settings,
        http_session: aiohttp.ClientSession,
        store: KeyValueStore,
        metrics_client: Optional[MetricsClient] = None,
        signer: Optional[ClientSecretSigner] = None,
        exchange_client: Optional[TokenExchangeClient] = None,
        revocation_client: Optional[TokenRevocationClient] = None,
    ) -> None:
        self.settings = settings
        self.http_session = http_session
        self.store = store
        self.metrics_client = metrics_client or NoOpMetricsClient()
        self.signer = signer or ClientSecretSigner(
            settings.key_id, lifetime=settings.client_secret_lifetime
        )
        self.exchange_client = exchange_client or TokenExchangeClient(
            http_session, settings.token_endpoint, self.metrics_client
        )
        self.revocation_client = revocation_client or TokenRevocationClient(
            http_session,
            settings.revoke_endpoint,
            settings.bundle_id,
            self.metrics_client,
        )

        # Shared by every orchestrator built on this service.
        self.run_guard = RunGuard()

        self._owned_resources: list[Any] = []

    @classmethod
    async def create(cls, settings: Settings) -> "AuthorizationService":
        """Build a service and the network resources it owns."""
        http_session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=settings.http_timeout)
        )
        redis_client = redis.Redis.from_url(str(settings.redis_dsn))
        metrics_client = create_metrics_client(
            settings.metrics_backend,
            host=settings.statsd_host,
            port=settings.statsd_port,
            debug=settings.debug,
        )
        await metrics_client.connect()

        service = cls(
            settings,
            http_session,
            RedisKeyValueStore(redis_client, settings.store_prefix),
            metrics_client=metrics_client,
        )
        service._owned_resources = [http_session, redis_client, metrics_client]
        return service

    async def close(self) -> None:
        for resource in self._owned_resources:
            if isinstance(resource, redis.Redis):
                await resource.aclose()
            else:
                await resource.close()
        self._owned_resources = []

    async def __aenter__(self) -> "AuthorizationService":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def authorization_request(self, run: PipelineRun) -> AuthorizationRequest:
        """Generate a nonce for ``run`` and build the request carrying its hash.

        Raises:
            EntropyError: If the secure random source is unavailable
        """
        run.nonce, run.nonce_hash = generate_nonce(self.settings.nonce_length)
        return AuthorizationRequest(nonce_hash=run.nonce_hash)

    def create_client_secret(self, now: Optional[datetime] = None) -> str:
        return self.signer.sign(
            self.settings.team_id,
            self.settings.bundle_id,
            self.settings.audience,
            self.settings.private_key,
            now,
        )

    async def store_client_secret(self, client_secret: str) -> None:
        await self.store.set(StoreKey.client_secret, client_secret)

    async def stored_client_secret(self, min_validity: int = 60) -> Optional[str]:
        """The stored client secret, if it stays valid for ``min_validity`` seconds."""
        client_secret = await self.store.get(StoreKey.client_secret)
        if not client_secret:
            return None

        expires_at = token_expires_at(client_secret)
        if expires_at is None:
            return None

        if expires_at - timedelta(seconds=min_validity) <= datetime.now(timezone.utc):
            return None
        return client_secret

    async def exchange_code(self, code: str, client_secret: str) -> str:
        return await self.exchange_client.exchange_code(
            code, self.settings.bundle_id, client_secret
        )

    async def revoke_token(
        self, client_secret: str, refresh_token: str
    ) -> RevocationResult:
        return await self.revocation_client.revoke(client_secret, refresh_token)

    def decode(self, identity_token: Optional[str]) -> Dict[str, Any]:
        """Untrusted identity token claims. Display use only."""
        return decode_payload(identity_token)

    async def remember_credential(self, credential: AuthorizationCredential) -> None:
        """Store display fields and the authorization code of ``credential``."""
        if credential.full_name is not None:
            name = credential.full_name.display_name()
            if name is not None:
                await self.store.set(StoreKey.user_name, name)

        email = credential.email
        if not email:
            # Apple only sends the email on the first authorization.
            claim = self.decode(credential.identity_token).get("email", None)
            email = claim if isinstance(claim, str) else None
        if email:
            await self.store.set(StoreKey.user_email, email)

        if credential.authorization_code:
            await self.store.set(
                StoreKey.authorization_code, credential.authorization_code
            )

    async def profile(self) -> Profile:
        name = await self.store.get(StoreKey.user_name)
        email = await self.store.get(StoreKey.user_email)
        return Profile(
            name=name or UNKNOWN_PROFILE_VALUE,
            email=email or UNKNOWN_PROFILE_VALUE,
        )
