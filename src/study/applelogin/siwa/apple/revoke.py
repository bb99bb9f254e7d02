"""Refresh token revocation against the Apple ID revocation endpoint."""

import asyncio
from dataclasses import dataclass
import logging
from typing import Optional

from aiohttp import ClientError, ClientSession, FormData

from study.applelogin.siwa.app.metrics import MetricsClient, NoOpMetricsClient
from study.applelogin.siwa.apple.chain import (
    ChainMiddlewareClient,
    ClientAuthenticationMiddleware,
    MetricsMiddleware,
)
from study.applelogin.siwa.apple.errors import RevocationError

logger = logging.getLogger(__name__)


@dataclass
class RevocationResult:
    """Outcome of a revocation request.

    ``confirmed`` is True only for HTTP 200. Every unconfirmed result carries
    the ``RevocationError`` explaining why.
    """

    confirmed: bool
    status: Optional[int] = None
    error: Optional[RevocationError] = None

    def raise_for_confirmation(self) -> None:
        if self.confirmed:
            return
        if self.error is not None:
            raise self.error
        raise RevocationError("Revocation not confirmed", status=self.status)


class TokenRevocationClient:
    """
    Revokes a refresh token.

    Success is strict: any status other than exactly 200, including other 2xx
    codes, is treated as a failed revocation.
    """

    def __init__(
        self,
        http_session: ClientSession,
        revoke_endpoint: str,
        client_id: str,
        metrics_client: Optional[MetricsClient] = None,
    ) -> None:
        self.http_session = http_session
        self.revoke_endpoint = revoke_endpoint
        self.client_id = client_id
        self.metrics_client = metrics_client or NoOpMetricsClient()

    async def revoke(self, client_secret: str, refresh_token: str) -> RevocationResult:
        data = FormData({"token": refresh_token, "token_type_hint": "refresh_token"})

        chain_client = ChainMiddlewareClient(
            client_session=self.http_session,
            middleware=[
                MetricsMiddleware(self.metrics_client, "revoke"),
                ClientAuthenticationMiddleware(self.client_id, client_secret),
            ],
        )

        try:
            async with chain_client.post(self.revoke_endpoint, data=data) as (
                client_response,
                _,
            ):
                status = client_response.status
        except (ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.warning("Revocation request failed: %r", e)
            return RevocationResult(
                confirmed=False,
                error=RevocationError(f"Revocation request failed: {e!r}", cause=e),
            )

        if status != 200:
            logger.warning("Revocation not confirmed, status %d", status)
            return RevocationResult(
                confirmed=False,
                status=status,
                error=RevocationError(
                    f"Revocation not confirmed: {status}", status=status
                ),
            )

        logger.info("Apple refresh token revoked")
        return RevocationResult(confirmed=True, status=status)
