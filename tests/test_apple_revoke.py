"""
Tests for the refresh token revocation client against a fake revocation
endpoint.
"""

import pytest

from study.applelogin.siwa.apple.errors import RevocationError
from study.applelogin.siwa.apple.revoke import RevocationResult, TokenRevocationClient

from tests.helpers import BUNDLE_ID


@pytest.mark.asyncio
class TestRevoke:
    async def test_confirmed_on_200(self, apple, http_session):
        client = TokenRevocationClient(http_session, apple.revoke_endpoint, BUNDLE_ID)

        result = await client.revoke("SECRET", "R1")

        assert result.confirmed
        assert result.status == 200
        assert result.error is None
        result.raise_for_confirmation()

    async def test_posts_form(self, apple, http_session):
        client = TokenRevocationClient(http_session, apple.revoke_endpoint, BUNDLE_ID)

        await client.revoke("SECRET", "R1")

        assert apple.revoke_requests == [
            {
                "token": "R1",
                "token_type_hint": "refresh_token",
                "client_id": BUNDLE_ID,
                "client_secret": "SECRET",
            }
        ]

    @pytest.mark.parametrize("status", [201, 204, 400, 401, 500])
    async def test_any_other_status_unconfirmed(self, apple, http_session, status):
        apple.revoke_status = status
        client = TokenRevocationClient(http_session, apple.revoke_endpoint, BUNDLE_ID)

        result = await client.revoke("SECRET", "R1")

        assert not result.confirmed
        assert result.status == status
        assert isinstance(result.error, RevocationError)
        with pytest.raises(RevocationError):
            result.raise_for_confirmation()

    async def test_transport_failure(self, http_session):
        client = TokenRevocationClient(
            http_session, "http://127.0.0.1:1/auth/revoke", BUNDLE_ID
        )

        result = await client.revoke("SECRET", "R1")

        assert not result.confirmed
        assert result.status is None
        assert result.error is not None
        assert result.error.cause is not None


class TestRevocationResult:
    def test_unconfirmed_without_error_still_raises(self):
        with pytest.raises(RevocationError):
            RevocationResult(confirmed=False, status=204).raise_for_confirmation()

    def test_revocation_errors_are_retryable(self):
        assert RevocationError("x").retryable
