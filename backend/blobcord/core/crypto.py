import hashlib
import os
from typing import Union

from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from blobcord.core.config import settings
from blobcord.core.exceptions import ChunkCipherError

IV_SIZE = 16


class ChunkCipher:
    """
    AES-256-CTR wrapper used for every stored chunk.

    Each chunk is encrypted on its own with a fresh random IV, so chunks can be
    decrypted independently and in any order. CTR is a stream mode: no padding,
    ciphertext length equals plaintext length.
    """

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise ChunkCipherError("Chunk key must be 32 bytes")
        self._key = key

    @classmethod
    def from_secret(cls, secret: str) -> "ChunkCipher":
        """Derive the key as sha256(secret); the same secret always yields the same key"""
        return cls(hashlib.sha256(str(secret).encode("utf-8")).digest())

    def encrypt(self, plaintext: bytes) -> tuple[bytes, bytes]:
        """Encrypt with a new IV and return (ciphertext, iv)"""
        iv = os.urandom(IV_SIZE)
        encryptor = Cipher(algorithms.AES(self._key), modes.CTR(iv)).encryptor()
        return encryptor.update(plaintext) + encryptor.finalize(), iv

    def decrypt(self, ciphertext: bytes, iv: Union[bytes, str]) -> bytes:
        """Inverse of encrypt(); iv may be raw bytes or the stored hex string"""
        iv_bytes = self._coerce_iv(iv)
        decryptor = Cipher(algorithms.AES(self._key), modes.CTR(iv_bytes)).decryptor()
        return decryptor.update(ciphertext) + decryptor.finalize()

    @staticmethod
    def _coerce_iv(iv: Union[bytes, str]) -> bytes:
        if isinstance(iv, str):
            try:
                iv = bytes.fromhex(iv)
            except ValueError as exc:
                raise ChunkCipherError(f"IV is not valid hex: {iv!r}") from exc
        if len(iv) != IV_SIZE:
            raise ChunkCipherError(f"IV must be {IV_SIZE} bytes, got {len(iv)}")
        return iv


# Key is derived once per process
chunk_cipher = ChunkCipher.from_secret(settings.ENCRYPTION_KEY)
