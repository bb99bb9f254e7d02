"""Error taxonomy for the Sign in with Apple credential pipeline.

Every pipeline step either returns a result or raises one of these errors.
``retryable`` tells the caller whether starting a new run may succeed.
"""

from typing import Optional


class SiwaError(Exception):
    """Base class for all pipeline errors."""

    retryable: bool = False


class ConfigurationError(SiwaError):
    """Missing or invalid issuer, subject, audience or signing key."""


class SigningError(SiwaError):
    """The client secret could not be signed with the supplied key material."""


class EntropyError(SiwaError):
    """The secure random source is unavailable.

    There is no safe fallback source, so this is never converted into a
    pipeline failure: it propagates to the caller and halts the process.
    """


class AuthorizationError(SiwaError):
    """The identity provider refused, failed, or never answered."""

    retryable = True


class ExchangeError(SiwaError):
    """The authorization code could not be exchanged for a refresh token.

    Authorization codes are single use, so the exchange is never retried with
    the same code.
    """

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        self.status = status


class CodeRejectedError(ExchangeError):
    """The code was already consumed, expired, or invalid."""


class RevocationError(SiwaError):
    """The refresh token revocation was not confirmed with HTTP 200."""

    retryable = True

    def __init__(
        self,
        message: str,
        cause: Optional[BaseException] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.cause = cause
        self.status = status
