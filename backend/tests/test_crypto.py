"""Tests for the per-chunk AES-CTR cipher."""

import os

import pytest

from blobcord.core.crypto import IV_SIZE, ChunkCipher
from blobcord.core.exceptions import ChunkCipherError


def test_chunked_round_trip_reproduces_original(cipher):
    original = os.urandom(10_000)
    chunk_size = 3_000
    stored = []
    for start in range(0, len(original), chunk_size):
        ciphertext, iv = cipher.encrypt(original[start:start + chunk_size])
        stored.append((ciphertext, iv))

    rebuilt = b"".join(cipher.decrypt(ciphertext, iv) for ciphertext, iv in stored)

    assert rebuilt == original
    assert len(stored) == 4


def test_ciphertext_length_matches_plaintext(cipher):
    for size in (0, 1, 15, 16, 17, 1024):
        ciphertext, iv = cipher.encrypt(b"x" * size)
        assert len(ciphertext) == size
        assert len(iv) == IV_SIZE


def test_each_encryption_gets_a_fresh_iv(cipher):
    first, iv1 = cipher.encrypt(b"\x00" * 64)
    second, iv2 = cipher.encrypt(b"\x00" * 64)
    assert iv1 != iv2
    assert first != second


def test_hex_iv_is_accepted(cipher):
    ciphertext, iv = cipher.encrypt(b"hello world")
    assert len(iv.hex()) == 32
    assert cipher.decrypt(ciphertext, iv.hex()) == b"hello world"


def test_key_derivation_is_deterministic():
    ciphertext, iv = ChunkCipher.from_secret("same-secret").encrypt(b"payload")
    assert ChunkCipher.from_secret("same-secret").decrypt(ciphertext, iv) == b"payload"


def test_wrong_secret_does_not_recover_plaintext():
    ciphertext, iv = ChunkCipher.from_secret("secret-a").encrypt(b"payload")
    assert ChunkCipher.from_secret("secret-b").decrypt(ciphertext, iv) != b"payload"


@pytest.mark.parametrize("bad_iv", ["not-hex", "abcd", b"\x00" * 8, b"\x00" * 17])
def test_malformed_iv_raises(cipher, bad_iv):
    ciphertext, _ = cipher.encrypt(b"payload")
    with pytest.raises(ChunkCipherError):
        cipher.decrypt(ciphertext, bad_iv)


def test_key_must_be_256_bits():
    with pytest.raises(ChunkCipherError):
        ChunkCipher(b"short")
