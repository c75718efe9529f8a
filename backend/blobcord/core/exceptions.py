from typing import Optional


class BlobcordError(Exception):
    """Base class for errors raised by the storage core."""


class BlobStoreError(BlobcordError):
    """The blob host rejected a call, or kept failing until retries ran out."""

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.body = body


class BlobStoreTimeoutError(BlobStoreError):
    """Every upload attempt exceeded the wall-clock budget."""


class ChunkCipherError(BlobcordError):
    """A chunk could not be encrypted or decrypted (bad IV, bad key material)."""


class ChunkFetchError(BlobcordError):
    """Raw chunk bytes could not be downloaded from their URL."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class ReassemblyError(BlobcordError):
    """Chunk layout does not match the file's declared size."""
