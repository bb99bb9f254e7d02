"""
Tests for the authorization code exchange client against a fake token endpoint.
"""

import pytest

from study.applelogin.siwa.apple.errors import CodeRejectedError, ExchangeError
from study.applelogin.siwa.apple.token import TokenExchangeClient

from tests.helpers import BUNDLE_ID


@pytest.mark.asyncio
class TestExchangeCode:
    async def test_returns_refresh_token(self, apple, http_session):
        client = TokenExchangeClient(http_session, apple.token_endpoint)

        refresh_token = await client.exchange_code("C1", BUNDLE_ID, "SECRET")

        assert refresh_token == "R1"

    async def test_posts_form(self, apple, http_session):
        client = TokenExchangeClient(http_session, apple.token_endpoint)

        await client.exchange_code("C1", BUNDLE_ID, "SECRET")

        assert apple.token_requests == [
            {
                "code": "C1",
                "grant_type": "authorization_code",
                "client_id": BUNDLE_ID,
                "client_secret": "SECRET",
            }
        ]

    async def test_error_status(self, apple, http_session):
        apple.token_status = 400
        apple.token_body = {"error": "invalid_client"}
        client = TokenExchangeClient(http_session, apple.token_endpoint)

        with pytest.raises(ExchangeError) as exc_info:
            await client.exchange_code("C1", BUNDLE_ID, "SECRET")

        assert not isinstance(exc_info.value, CodeRejectedError)
        assert exc_info.value.status == 400

    async def test_server_error(self, apple, http_session):
        apple.token_status = 500
        apple.token_body = {}
        client = TokenExchangeClient(http_session, apple.token_endpoint)

        with pytest.raises(ExchangeError) as exc_info:
            await client.exchange_code("C1", BUNDLE_ID, "SECRET")

        assert exc_info.value.status == 500

    async def test_invalid_grant(self, apple, http_session):
        apple.token_status = 400
        apple.token_body = {"error": "invalid_grant"}
        client = TokenExchangeClient(http_session, apple.token_endpoint)

        with pytest.raises(CodeRejectedError):
            await client.exchange_code("C1", BUNDLE_ID, "SECRET")

    @pytest.mark.parametrize(
        "body",
        [
            {"access_token": "A1"},
            {"refresh_token": ""},
            {"refresh_token": 12},
        ],
    )
    async def test_success_without_refresh_token(self, apple, http_session, body):
        apple.token_body = body
        client = TokenExchangeClient(http_session, apple.token_endpoint)

        with pytest.raises(CodeRejectedError):
            await client.exchange_code("C1", BUNDLE_ID, "SECRET")

    async def test_transport_failure(self, http_session):
        client = TokenExchangeClient(http_session, "http://127.0.0.1:1/auth/token")

        with pytest.raises(ExchangeError) as exc_info:
            await client.exchange_code("C1", BUNDLE_ID, "SECRET")

        assert exc_info.value.cause is not None
        assert exc_info.value.status is None

    async def test_single_request_per_call(self, apple, http_session):
        apple.token_status = 503
        client = TokenExchangeClient(http_session, apple.token_endpoint)

        with pytest.raises(ExchangeError):
            await client.exchange_code("C1", BUNDLE_ID, "SECRET")

        assert len(apple.token_requests) == 1
