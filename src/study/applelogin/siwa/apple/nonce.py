"""Nonce generation for authorization requests.

The raw nonce stays on the device for correlating the response; only its
SHA-256 hex digest is sent to the identity provider.
"""

import hashlib
import secrets
from typing import Tuple

from study.applelogin.siwa.apple.errors import EntropyError

NONCE_CHARSET = "0123456789ABCDEFGHIJKLMNOPQRSTUVXYZabcdefghijklmnopqrstuvwxyz-._"
DEFAULT_NONCE_LENGTH = 32


def hash_nonce(raw: str) -> str:
    """Hex encoded SHA-256 digest of the raw nonce's UTF-8 bytes."""
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def random_nonce(length: int = DEFAULT_NONCE_LENGTH) -> str:
    """
    Draw ``length`` characters from ``NONCE_CHARSET`` using the operating
    system's secure random source.

    Raises:
        ValueError: If length is not positive
        EntropyError: If the secure random source is unavailable
    """
    if length <= 0:
        raise ValueError("Nonce length must be positive")

    try:
        return "".join(secrets.choice(NONCE_CHARSET) for _ in range(length))
    except (NotImplementedError, OSError) as e:
        raise EntropyError(f"Unable to generate nonce: {e}") from e


def generate_nonce(length: int = DEFAULT_NONCE_LENGTH) -> Tuple[str, str]:
    """Generate a fresh nonce and its hash.

    Returns:
        Tuple[str, str]: A tuple containing (raw_nonce, nonce_hash)
    """
    raw = random_nonce(length)
    return raw, hash_nonce(raw)
