import logging
from typing import Optional

import httpx

from blobcord.core.crypto import ChunkCipher
from blobcord.core.exceptions import ChunkFetchError, ReassemblyError
from blobcord.models.file import File
from blobcord.services.url_resolver import UrlResolver
from blobcord.types import RequestContext

logger = logging.getLogger(__name__)


class Reassembler:
    """
    Rebuilds a file from its chunks.

    Chunks are fetched and decrypted one at a time in chunk_index order and
    written at their offset in a buffer sized to the file's declared length.
    Only one chunk payload is held in memory besides the output buffer.
    """

    def __init__(
        self,
        resolver: UrlResolver,
        cipher: ChunkCipher,
        http: httpx.AsyncClient,
        strict: bool = False,
    ):
        self.resolver = resolver
        self.cipher = cipher
        self.http = http
        self.strict = strict

    async def fetch_chunk(self, url: str) -> bytes:
        response = await self.http.get(url)
        if not response.is_success:
            raise ChunkFetchError(
                f"Failed to fetch chunk: {response.status_code} {response.reason_phrase}",
                status=response.status_code,
            )
        return response.content

    async def reassemble(self, db_file: File, ctx: RequestContext = RequestContext()) -> bytearray:
        total_size = int(db_file.size or 0)
        body = bytearray(total_size)
        file_iv: Optional[str] = db_file.iv or None
        offset = 0

        for chunk in sorted(db_file.chunks, key=lambda c: c.chunk_index):
            chunk_size = int(chunk.size)
            url = await self.resolver.resolve(chunk, ctx)

            if not url:
                if self.strict:
                    raise ReassemblyError(f"Chunk {chunk.chunk_index} of {db_file.name} has no URL")
                logger.warning(
                    f"[{ctx.request_id}] [DOWNLOAD] Chunk {chunk.chunk_index} of {db_file.name} has no URL, skipping"
                )
                offset += chunk_size
                continue

            data = await self.fetch_chunk(url)
            iv = chunk.iv or file_iv
            # rows without any IV were stored in plain text
            decrypted = self.cipher.decrypt(data, iv) if iv else data

            if len(decrypted) != chunk_size:
                raise ReassemblyError(
                    f"Chunk {chunk.chunk_index} of {db_file.name} is {len(decrypted)} bytes, expected {chunk_size}"
                )
            if offset + chunk_size > total_size:
                raise ReassemblyError(
                    f"Chunk {chunk.chunk_index} of {db_file.name} overruns the declared size {total_size}"
                )

            body[offset:offset + chunk_size] = decrypted
            offset += chunk_size

        logger.debug(f"[{ctx.request_id}] [DOWNLOAD] Reassembled {db_file.name} ({total_size} bytes)")
        return body
