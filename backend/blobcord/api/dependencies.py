import uuid
from typing import Optional

import httpx
from fastapi import Depends
from sqlalchemy.orm import Session

from blobcord.core.config import settings
from blobcord.core.crypto import ChunkCipher, chunk_cipher
from blobcord.core.database import get_db
from blobcord.services.discord_client import DiscordClient, get_discord_client
from blobcord.services.reassembler import Reassembler
from blobcord.services.storage_service import StorageService
from blobcord.services.url_resolver import UrlResolver
from blobcord.types import RequestContext

# Plain client for attachment downloads - must not carry the bot token
_cdn_client: Optional[httpx.AsyncClient] = None


def get_request_context() -> RequestContext:
    """New request id for every request, passed down explicitly for log correlation"""
    return RequestContext(request_id=str(uuid.uuid4()))


def get_chunk_cipher() -> ChunkCipher:
    return chunk_cipher


def get_blob_client() -> DiscordClient:
    return get_discord_client()


def get_cdn_client() -> httpx.AsyncClient:
    global _cdn_client
    if _cdn_client is None:
        _cdn_client = httpx.AsyncClient(timeout=httpx.Timeout(60.0), follow_redirects=True)
    return _cdn_client


async def close_cdn_client() -> None:
    global _cdn_client
    if _cdn_client is not None:
        await _cdn_client.aclose()
        _cdn_client = None


def get_storage_service(db: Session = Depends(get_db)) -> StorageService:
    return StorageService(db)


def get_reassembler(
    blob_client: DiscordClient = Depends(get_blob_client),
    cipher: ChunkCipher = Depends(get_chunk_cipher),
    cdn_client: httpx.AsyncClient = Depends(get_cdn_client),
) -> Reassembler:
    return Reassembler(
        resolver=UrlResolver(blob_client),
        cipher=cipher,
        http=cdn_client,
        strict=settings.STRICT_REASSEMBLY,
    )
