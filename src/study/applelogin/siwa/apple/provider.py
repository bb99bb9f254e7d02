"""Interface of the native Sign in with Apple authorization UI.

The identity provider (the operating system's consent screen) is an external
authority. The pipeline only hands it an ``AuthorizationRequest`` and reacts
to what it reports back through an ``AuthorizationDelegate``.
"""

from enum import Enum
from typing import List, Optional, Protocol

from pydantic import BaseModel, Field


class Scope(str, Enum):
    full_name = "name"
    email = "email"


class CredentialState(str, Enum):
    """State of a user's Apple ID credential for this app."""

    authorized = "authorized"
    revoked = "revoked"
    not_found = "not_found"
    transferred = "transferred"


class AuthorizationRequest(BaseModel):
    """Request handed to the identity provider.

    Only the hash of the nonce leaves the device.
    """

    scopes: List[Scope] = Field(default_factory=lambda: [Scope.full_name, Scope.email])
    nonce_hash: str


class PersonName(BaseModel):
    given_name: Optional[str] = None
    family_name: Optional[str] = None

    def display_name(self) -> Optional[str]:
        if self.given_name and self.family_name:
            return f"{self.given_name} {self.family_name}"
        return None


class AuthorizationCredential(BaseModel):
    """Credential returned after the user consented.

    ``authorization_code`` is single use and valid for five minutes. Email and
    full name are only provided the first time a user authorizes the app.
    """

    user: str = ""
    authorization_code: Optional[str] = None
    identity_token: Optional[str] = None
    email: Optional[str] = None
    full_name: Optional[PersonName] = None


class AuthorizationDelegate(Protocol):
    def authorization_completed(self, credential: AuthorizationCredential) -> None:
        ...

    def authorization_failed(self, error: BaseException) -> None:
        ...


class IdentityProviderGateway(Protocol):
    """Opaque collaborator presenting the authorization UI."""

    def perform_request(
        self, request: AuthorizationRequest, delegate: AuthorizationDelegate
    ) -> None:
        """Present the consent UI. Results arrive through ``delegate``."""
        ...

    async def credential_state(self, user: str) -> CredentialState:
        ...
