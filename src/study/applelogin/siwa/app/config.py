"""
Configuration Module for SIWA

This module defines the configuration system for the Sign in with Apple client,
using Pydantic for settings validation.

Settings are loaded from environment variables with defaults pointing at the
production Apple ID service. Deployment-specific identity (team id, bundle id,
key id and the private key) has no default and must always be provided.

Key configuration areas include:
- Application identity and signing key material
- Apple ID service endpoints
- Pipeline timing (client secret lifetime, settling delay, timeouts)
- Key-value store connection
- Monitoring and error reporting
"""

import logging
import os
from typing import Annotated, Optional

from pydantic import AliasChoices, Field, RedisDsn, field_validator
from pydantic_settings import BaseSettings, NoDecode

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings for the SIWA client.

    Environment variables are automatically mapped to settings fields, with
    aliases provided where an older name is still in use. For example, the key
    value store connection string can be set with either REDIS_DSN or
    REDIS_URL.
    """

    # Environment and debugging settings
    debug: bool = False
    """
    Enable debug mode for verbose logging.
    Set with DEBUG=true environment variable.
    """

    # Application identity
    team_id: str
    """
    Apple developer team id, used as the client secret issuer (iss).
    Set with TEAM_ID environment variable.
    """

    bundle_id: str
    """
    App bundle id, used as the client secret subject (sub) and as client_id.
    Set with BUNDLE_ID environment variable.
    """

    key_id: str
    """
    Id of the Sign in with Apple private key, sent as the kid header.
    Set with KEY_ID environment variable.
    """

    private_key: Annotated[bytes, NoDecode]
    """
    PEM encoded PKCS#8 private key (the AuthKey_XXXXXXXXXX.p8 file).
    Can be set to the PEM contents or to the path of the .p8 file.
    Set with PRIVATE_KEY environment variable.
    """

    # Apple ID service
    audience: str = "https://appleid.apple.com"
    """Audience (aud) claim of the client secret."""

    token_endpoint: str = "https://appleid.apple.com/auth/token"
    """Endpoint exchanging authorization codes for refresh tokens."""

    revoke_endpoint: str = "https://appleid.apple.com/auth/revoke"
    """Endpoint revoking refresh tokens."""

    # Pipeline timing
    client_secret_lifetime: int = 3600
    """Seconds between the iat and exp claims of a client secret."""

    nonce_length: int = 32
    """Length of the raw nonce generated for each authorization request."""

    settle_delay: float = 0.5
    """
    Seconds to wait after the last successful step before completion is
    signalled to observers.
    """

    authorization_timeout: float = 300.0
    """
    Seconds a run may wait for the identity provider before failing. Matches
    the five minute validity of an authorization code.
    """

    http_timeout: float = 30.0
    """Total timeout in seconds of a single call to the Apple ID service."""

    # Key-value store
    redis_dsn: RedisDsn = Field(
        "redis://localhost:6379/0?decode_responses=True",
        validation_alias=AliasChoices("redis_dsn", "redis_url"),
    )  # type: ignore
    """
    Redis connection string for the key-value store.
    Set with REDIS_DSN or REDIS_URL environment variables.
    """

    store_prefix: str = "siwa"
    """Namespace prepended to every key written to the store."""

    # Monitoring and error reporting
    sentry_dsn: Optional[str] = None
    """
    Sentry DSN for error reporting. Optional, no error reporting if not set.
    Set with SENTRY_DSN environment variable.
    """

    metrics_backend: str = "none"
    """
    Metrics backend, 'telegraf' or 'none'.
    Set with METRICS_BACKEND environment variable.
    """

    statsd_host: str = Field(alias="TELEGRAF_HOST", default="telegraf")
    """
    StatsD/Telegraf host for metrics collection.
    Set with TELEGRAF_HOST environment variable.
    """

    statsd_port: int = Field(alias="TELEGRAF_PORT", default=8125)
    """
    StatsD/Telegraf port for metrics collection.
    Set with TELEGRAF_PORT environment variable.
    """

    @field_validator("private_key", mode="before")
    @classmethod
    def decode_private_key(cls, v) -> bytes:
        """
        Validate and read the private_key setting.

        This validator accepts either:
        - Key material as bytes (for programmatic configuration)
        - A string containing the PEM encoded key
        - A file path to the .p8 file

        The key material itself is parsed by the client secret signer, which
        reports malformed keys as signing errors.

        Raises:
            ValueError: If the value is empty or names an unreadable file
        """
        if isinstance(v, bytes):
            return v
        elif isinstance(v, str):
            if v.lstrip().startswith("-----BEGIN"):
                return v.encode("utf-8")
            if len(v) > 0 and os.path.isfile(v):
                with open(v, "rb") as fd:
                    return fd.read()
        raise ValueError("private_key must be PEM key material or a readable file path")
