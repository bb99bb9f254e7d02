"""
Unit tests for nonce generation.

Tests cover length, charset, hashing and the fatal handling of an unavailable
secure random source.
"""

import hashlib
from unittest.mock import patch

import pytest

from study.applelogin.siwa.apple.errors import EntropyError
from study.applelogin.siwa.apple.nonce import (
    DEFAULT_NONCE_LENGTH,
    NONCE_CHARSET,
    generate_nonce,
    hash_nonce,
    random_nonce,
)


class TestGenerateNonce:
    """Test nonce and hash generation."""

    @pytest.mark.parametrize("length", [1, 16, 32, 64, 257])
    def test_raw_nonce_has_requested_length(self, length):
        raw, _ = generate_nonce(length)
        assert len(raw) == length

    @pytest.mark.parametrize("length", [1, 32, 100])
    def test_hash_is_sha256_hex_of_raw(self, length):
        raw, nonce_hash = generate_nonce(length)
        assert nonce_hash == hashlib.sha256(raw.encode("utf-8")).hexdigest()
        assert len(nonce_hash) == 64

    def test_default_length(self):
        raw, _ = generate_nonce()
        assert len(raw) == DEFAULT_NONCE_LENGTH == 32

    def test_characters_come_from_charset(self):
        raw = random_nonce(500)
        assert set(raw) <= set(NONCE_CHARSET)

    def test_every_call_returns_a_fresh_pair(self):
        pairs = {generate_nonce() for _ in range(20)}
        assert len(pairs) == 20

    @pytest.mark.parametrize("length", [0, -1])
    def test_non_positive_length_rejected(self, length):
        with pytest.raises(ValueError):
            generate_nonce(length)


class TestHashNonce:
    def test_known_digest(self):
        assert (
            hash_nonce("abc")
            == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
        )

    def test_hashes_utf8_bytes(self):
        assert hash_nonce("é") == hashlib.sha256("é".encode("utf-8")).hexdigest()


class TestEntropyFailure:
    """An unavailable random source is fatal and surfaces as EntropyError."""

    def test_not_implemented_becomes_entropy_error(self):
        with patch(
            "study.applelogin.siwa.apple.nonce.secrets.choice",
            side_effect=NotImplementedError("no urandom"),
        ):
            with pytest.raises(EntropyError):
                generate_nonce()

    def test_os_error_becomes_entropy_error(self):
        with patch(
            "study.applelogin.siwa.apple.nonce.secrets.choice",
            side_effect=OSError("getrandom failed"),
        ):
            with pytest.raises(EntropyError):
                random_nonce(8)

    def test_entropy_error_is_not_retryable(self):
        assert EntropyError.retryable is False
