"""Authorization code exchange against the Apple ID token endpoint."""

import asyncio
import logging
from typing import Optional

from aiohttp import ClientError, ClientSession, FormData

from study.applelogin.siwa.app.metrics import MetricsClient, NoOpMetricsClient
from study.applelogin.siwa.apple.chain import (
    ChainMiddlewareClient,
    ClientAuthenticationMiddleware,
    MetricsMiddleware,
)
from study.applelogin.siwa.apple.errors import CodeRejectedError, ExchangeError

logger = logging.getLogger(__name__)


class TokenExchangeClient:
    """
    Exchanges a one-time authorization code for a refresh token.

    Exactly one POST is made per call. Codes are single use, so nothing here
    retries: a failed exchange requires a fresh authorization.
    """

    def __init__(
        self,
        http_session: ClientSession,
        token_endpoint: str,
        metrics_client: Optional[MetricsClient] = None,
    ) -> None:
        self.http_session = http_session
        self.token_endpoint = token_endpoint
        self.metrics_client = metrics_client or NoOpMetricsClient()

    async def exchange_code(self, code: str, client_id: str, client_secret: str) -> str:
        """
        Exchange an authorization code for a refresh token.

        Args:
            code: Authorization code returned by the identity provider
            client_id: App bundle id
            client_secret: Signed client secret valid at call time

        Returns:
            str: The refresh token

        Raises:
            CodeRejectedError: The code was consumed, expired, or invalid
            ExchangeError: Transport failure or any other non-2xx response
        """
        data = FormData({"code": code, "grant_type": "authorization_code"})

        chain_client = ChainMiddlewareClient(
            client_session=self.http_session,
            middleware=[
                MetricsMiddleware(self.metrics_client, "token"),
                ClientAuthenticationMiddleware(client_id, client_secret),
            ],
        )

        try:
            async with chain_client.post(self.token_endpoint, data=data) as (
                client_response,
                chain_response,
            ):
                status = client_response.status
                body = chain_response.body
        except (ClientError, asyncio.TimeoutError, ValueError) as e:
            raise ExchangeError(f"Token request failed: {e!r}", cause=e) from e

        if status < 200 or status >= 300:
            if chain_response.body_matches_kv("error", "invalid_grant"):
                raise CodeRejectedError(
                    "Authorization code rejected: invalid_grant", status=status
                )
            raise ExchangeError(f"Invalid token response: {status}", status=status)

        refresh_token = body.get("refresh_token", None) if isinstance(body, dict) else None
        if not isinstance(refresh_token, str) or len(refresh_token) == 0:
            # Apple answers 2xx without a refresh token when the code was
            # already used or has expired.
            raise CodeRejectedError("No refresh token in token response", status=status)

        logger.debug("Exchanged authorization code for refresh token")
        return refresh_token
