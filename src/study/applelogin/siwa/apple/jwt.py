"""
Client secret and identity token utilities for Sign in with Apple.

Provides helper functions for creating the ES256-signed client secret that
authenticates the application to Apple's token and revocation endpoints, and
for reading claims out of identity tokens.

Identity token decoding here performs NO signature verification. Values read
from a decoded payload are untrusted and may only be used for display (for
example the user's email when the provider omitted it from the credential).
"""

import base64
import binascii
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from cryptography.exceptions import UnsupportedAlgorithm
from jwcrypto import jwk, jwt
from jwcrypto.common import JWException

from study.applelogin.siwa.apple.errors import ConfigurationError, SigningError

APPLE_AUDIENCE = "https://appleid.apple.com"
CLIENT_SECRET_LIFETIME = 3600

KeyMaterial = Union[bytes, str, jwk.JWK]


def load_signing_key(key_material: KeyMaterial) -> jwk.JWK:
    """Load an EC P-256 private key for client secret signing.

    Args:
        key_material: PEM encoded PKCS#8 private key (the ``.p8`` file
            contents) or an existing JWK

    Returns:
        jwk.JWK: The private key

    Raises:
        SigningError: If the key material is malformed, is not a private key,
            or is not on the P-256 curve
    """
    if isinstance(key_material, jwk.JWK):
        key = key_material
    else:
        if isinstance(key_material, str):
            key_material = key_material.encode("utf-8")
        try:
            key = jwk.JWK.from_pem(key_material)
        except (JWException, UnsupportedAlgorithm, ValueError, TypeError) as e:
            raise SigningError(f"Unreadable signing key: {e}") from e

    if not key.has_private:
        raise SigningError("Signing key has no private component")

    key_dict = key.export_public(as_dict=True)
    if key_dict.get("kty") != "EC" or key_dict.get("crv") != "P-256":
        raise SigningError("Signing key must be an EC P-256 key")

    return key


def create_client_secret_header(key_id: str) -> Dict[str, Any]:
    """Create the client secret JWT header."""
    return {"alg": "ES256", "kid": key_id}


def create_client_secret_claims(
    issuer: str,
    subject: str,
    audience: str = APPLE_AUDIENCE,
    issued_at: Optional[datetime] = None,
    expires_in_seconds: int = CLIENT_SECRET_LIFETIME,
) -> Dict[str, Any]:
    """Create the client secret claim set.

    Args:
        issuer: Apple developer team id
        subject: App bundle id (the OAuth client id)
        audience: Apple ID service URL
        issued_at: Issuance time (defaults to current UTC time)
        expires_in_seconds: Validity period in seconds (default: 3600)

    Raises:
        ConfigurationError: If issuer, subject or audience is empty
    """
    if not issuer:
        raise ConfigurationError("Client secret issuer (team id) is empty")
    if not subject:
        raise ConfigurationError("Client secret subject (bundle id) is empty")
    if not audience:
        raise ConfigurationError("Client secret audience is empty")

    if issued_at is None:
        issued_at = datetime.now(timezone.utc)

    iat = int(issued_at.timestamp())
    return {
        "iss": issuer,
        "iat": iat,
        "exp": iat + expires_in_seconds,
        "aud": audience,
        "sub": subject,
    }


def create_client_secret_jwt(
    signing_key: jwk.JWK,
    key_id: str,
    issuer: str,
    subject: str,
    audience: str = APPLE_AUDIENCE,
    issued_at: Optional[datetime] = None,
    expires_in_seconds: int = CLIENT_SECRET_LIFETIME,
) -> str:
    """Create a complete, signed client secret.

    Usage:
        ```python
        signing_key = load_signing_key(open("AuthKey_ABC123.p8", "rb").read())
        client_secret = create_client_secret_jwt(
            signing_key, "ABC123", "TEAMID1234", "com.example.app"
        )
        ```
    """
    header = create_client_secret_header(key_id)
    claims = create_client_secret_claims(
        issuer, subject, audience, issued_at, expires_in_seconds
    )

    try:
        client_secret = jwt.JWT(header=header, claims=claims)
        client_secret.make_signed_token(signing_key)
        return client_secret.serialize()
    except (JWException, ValueError, TypeError) as e:
        raise SigningError(f"Unable to sign client secret: {e}") from e


class ClientSecretSigner:
    """Signs time-bounded client secrets with the app's private key.

    Output is opaque to callers and valid for ``lifetime`` seconds after the
    ``now`` it was signed at. Callers must not reuse it past expiry.
    """

    def __init__(self, key_id: str, lifetime: int = CLIENT_SECRET_LIFETIME) -> None:
        if not key_id:
            raise ConfigurationError("Client secret key id is empty")
        self.key_id = key_id
        self.lifetime = lifetime

    def sign(
        self,
        issuer: str,
        subject: str,
        audience: str,
        key_material: KeyMaterial,
        now: Optional[datetime] = None,
    ) -> str:
        # Claims are validated first so that an empty issuer is reported as a
        # configuration problem even when the key is also bad.
        create_client_secret_claims(issuer, subject, audience, now, self.lifetime)
        signing_key = load_signing_key(key_material)
        return create_client_secret_jwt(
            signing_key,
            self.key_id,
            issuer,
            subject,
            audience,
            issued_at=now,
            expires_in_seconds=self.lifetime,
        )


def _base64url_decode(value: str) -> bytes:
    padding = -len(value) % 4
    return base64.urlsafe_b64decode(value + ("=" * padding))


def decode_payload(token: Union[str, bytes, None]) -> Dict[str, Any]:
    """Decode the payload segment of a signed token WITHOUT verifying it.

    Best-effort claim extraction for display fields only. Returns an empty
    dict when the token is malformed in any way; never raises.
    """
    if token is None:
        return {}

    try:
        if isinstance(token, bytes):
            token = token.decode("utf-8")

        segments = token.split(".")
        if len(segments) < 2:
            return {}

        payload = json.loads(_base64url_decode(segments[1]))
    except (
        ValueError,
        binascii.Error,
        UnicodeDecodeError,
        TypeError,
        RecursionError,
    ):
        return {}

    if not isinstance(payload, dict):
        return {}
    return payload


def token_expires_at(token: Union[str, bytes, None]) -> Optional[datetime]:
    """Read the (unverified) ``exp`` claim of a token we signed ourselves."""
    exp = decode_payload(token).get("exp", None)
    if not isinstance(exp, int):
        return None
    return datetime.fromtimestamp(exp, tz=timezone.utc)
