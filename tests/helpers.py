"""
Common testing utilities for SIWA tests.

Provides test doubles for the identity provider gateway and pipeline observer,
a fake Apple ID service, and token construction helpers.
"""

import asyncio
import base64
import json
from typing import Any, Dict, List, Optional, Union

from aiohttp import web

from study.applelogin.siwa.apple.provider import (
    AuthorizationCredential,
    AuthorizationDelegate,
    AuthorizationRequest,
    CredentialState,
)

TEAM_ID = "TEAMID1234"
BUNDLE_ID = "com.example.applelogin"
KEY_ID = "KEYID12345"


def make_unsigned_token(payload: Any) -> str:
    """Build a three-segment token whose payload is ``payload`` (unpadded)."""
    header = base64.urlsafe_b64encode(b'{"alg":"ES256"}').rstrip(b"=").decode()
    body = (
        base64.urlsafe_b64encode(json.dumps(payload).encode()).rstrip(b"=").decode()
    )
    return f"{header}.{body}.signature"


def make_credential(
    code: Optional[str] = "C1", user: str = "001234.abcdef", **kwargs: Any
) -> AuthorizationCredential:
    return AuthorizationCredential(
        user=user,
        authorization_code=code,
        identity_token=kwargs.pop("identity_token", make_unsigned_token({"sub": user})),
        **kwargs,
    )


class FakeAppleService:
    """Stand-in for the Apple ID token and revocation endpoints."""

    def __init__(self) -> None:
        self.token_status = 200
        self.token_body: Dict[str, Any] = {
            "access_token": "A1",
            "token_type": "Bearer",
            "expires_in": 3600,
            "refresh_token": "R1",
            "id_token": "ID1",
        }
        self.revoke_status = 200
        self.token_requests: List[Dict[str, str]] = []
        self.revoke_requests: List[Dict[str, str]] = []
        self.token_endpoint = ""
        self.revoke_endpoint = ""

    async def handle_token(self, request: web.Request) -> web.Response:
        self.token_requests.append(dict(await request.post()))
        return web.json_response(self.token_body, status=self.token_status)

    async def handle_revoke(self, request: web.Request) -> web.Response:
        self.revoke_requests.append(dict(await request.post()))
        return web.Response(status=self.revoke_status)


class FakeGateway:
    """Identity provider gateway answering with scripted responses."""

    def __init__(
        self,
        responses: Optional[List[Union[AuthorizationCredential, BaseException]]] = None,
        state: CredentialState = CredentialState.authorized,
    ) -> None:
        self.responses = list(responses or [])
        self.state = state
        self.requests: List[AuthorizationRequest] = []
        self.state_queries: List[str] = []
        self.delegate: Optional[AuthorizationDelegate] = None

    def perform_request(
        self, request: AuthorizationRequest, delegate: AuthorizationDelegate
    ) -> None:
        self.requests.append(request)
        self.delegate = delegate
        loop = asyncio.get_running_loop()
        for response in self.responses:
            if isinstance(response, BaseException):
                loop.call_soon(delegate.authorization_failed, response)
            else:
                loop.call_soon(delegate.authorization_completed, response)

    async def credential_state(self, user: str) -> CredentialState:
        self.state_queries.append(user)
        return self.state


class RecordingObserver:
    """Pipeline observer recording every outcome it is told about."""

    def __init__(self) -> None:
        self.completed = 0
        self.errors: List[BaseException] = []

    def on_completed(self) -> None:
        self.completed += 1

    def on_failed(self, error: BaseException) -> None:
        self.errors.append(error)

    @property
    def outcomes(self) -> int:
        return self.completed + len(self.errors)
