import logging
import time
from typing import Callable, Optional
from urllib.parse import parse_qs, urlparse

import httpx

from blobcord.models.chunk import Chunk
from blobcord.services.discord_client import DiscordClient
from blobcord.types import RequestContext

logger = logging.getLogger(__name__)

# Treat URLs as expired this many seconds early so they cannot lapse mid-transfer
EXPIRY_MARGIN_SECONDS = 300


def url_expiry(url: Optional[str]) -> Optional[int]:
    """Unix expiry encoded as hex in the ``ex`` query parameter, if any"""
    if not url:
        return None
    try:
        values = parse_qs(urlparse(url).query).get("ex")
        return int(values[0], 16) if values else None
    except ValueError:
        return None


def is_expired(url: Optional[str], now: Optional[float] = None) -> bool:
    expiry = url_expiry(url)
    if expiry is None:
        return False
    if now is None:
        now = time.time()
    return int(now) > expiry - EXPIRY_MARGIN_SECONDS


class UrlResolver:
    """Return a usable URL for a chunk, refreshing signed URLs that are about to expire."""

    def __init__(self, discord: DiscordClient, clock: Callable[[], float] = time.time):
        self.discord = discord
        self._clock = clock

    async def resolve(self, chunk: Chunk, ctx: RequestContext = RequestContext()) -> Optional[str]:
        if not chunk.url:
            return None
        if not chunk.message_id or not is_expired(chunk.url, self._clock()):
            return chunk.url

        try:
            message = await self.discord.fetch_message(chunk.message_id)
        except httpx.HTTPError as exc:
            logger.warning(f"[{ctx.request_id}] Failed to refresh URL: {exc}")
            return chunk.url

        attachments = (message or {}).get("attachments") or []
        if attachments and attachments[0].get("url"):
            logger.info(f"[{ctx.request_id}] [DOWNLOAD] Refreshed URL for chunk {chunk.chunk_index}")
            return attachments[0]["url"]

        logger.warning(
            f"[{ctx.request_id}] Could not refresh URL for chunk {chunk.chunk_index}, using stored URL"
        )
        return chunk.url
