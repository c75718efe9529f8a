"""
Client for the Discord channel used as blob storage.

Every call goes through the same cooldown gate: once Discord reports a global
rate limit, all callers in the process wait until the window has passed
before issuing their next request.

Retries are explicit loops. The initial attempt plus ``max_retries`` retries
gives at most ``max_retries + 1`` requests per call, and the wait before each
retry comes from ``RetryPolicy.delay``.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from blobcord.core.config import settings
from blobcord.core.exceptions import BlobStoreError, BlobStoreTimeoutError
from blobcord.types import RateLimitInfo, UploadResult

logger = logging.getLogger(__name__)


class FailureKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    TIMEOUT = "timeout"
    NETWORK = "network"


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    upload_timeout: float = 30.0
    base_delay: float = 2.0
    rate_limit_padding: float = 0.1
    batch_size: int = 3
    batch_delay: float = 0.6

    def delay(self, kind: FailureKind, attempt: int, retry_after: Optional[float] = None) -> float:
        """Seconds to wait before retrying after a failure on the given (zero-based) attempt"""
        if kind is FailureKind.RATE_LIMITED:
            return (retry_after if retry_after is not None else 1.0) + self.rate_limit_padding
        if kind is FailureKind.SERVER_ERROR:
            return self.base_delay * (2 ** attempt)
        # timeouts and transport errors back off linearly
        return self.base_delay * (attempt + 1)


class DiscordClient:
    """Uploads, deletes and fetches channel messages with rate-limit handling."""

    def __init__(
        self,
        token: str,
        channel_id: str,
        api_base: str = "https://discord.com/api/v10",
        policy: Optional[RetryPolicy] = None,
        http: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.channel_id = channel_id
        self.policy = policy or RetryPolicy()
        self._http = http or httpx.AsyncClient(base_url=api_base, timeout=None)
        self._headers = {"Authorization": f"Bot {token}"}
        self._clock = clock
        self._sleep = sleep
        self._cooldown_until = 0.0

    @property
    def cooldown_until(self) -> float:
        return self._cooldown_until

    def extend_cooldown(self, seconds: float) -> None:
        """Push the shared cooldown forward; it never moves backwards"""
        # No await between read and write, so this is atomic on the event loop
        self._cooldown_until = max(self._cooldown_until, self._clock() + seconds)

    async def wait_for_cooldown(self) -> None:
        """Sleep until the cooldown has passed, including any extension made meanwhile"""
        remaining = self._cooldown_until - self._clock()
        while remaining > 0:
            logger.debug(f"[Discord] Cooling down for {remaining:.3f}s")
            await self._sleep(remaining)
            remaining = self._cooldown_until - self._clock()

    def _messages_path(self, message_id: Optional[str] = None) -> str:
        path = f"/channels/{self.channel_id}/messages"
        return f"{path}/{message_id}" if message_id else path

    @staticmethod
    def _parse_rate_limit(response: httpx.Response) -> RateLimitInfo:
        try:
            data = response.json()
        except ValueError:
            return RateLimitInfo()
        if not isinstance(data, dict):
            return RateLimitInfo()
        retry_after = data.get("retry_after") or 1
        return RateLimitInfo(retry_after=float(retry_after), is_global=bool(data.get("global", False)))

    async def upload(self, data: bytes, filename: str) -> UploadResult:
        """Post ``data`` as a new message attachment and return its message id and URL"""
        max_retries = self.policy.max_retries

        for attempt in range(max_retries + 1):
            can_retry = attempt < max_retries
            await self.wait_for_cooldown()

            try:
                response = await asyncio.wait_for(
                    self._http.post(
                        self._messages_path(),
                        headers=self._headers,
                        files={"files[0]": (filename, data, "application/octet-stream")},
                    ),
                    timeout=self.policy.upload_timeout,
                )
            except (asyncio.TimeoutError, httpx.TimeoutException):
                if can_retry:
                    logger.warning(f"[Discord] Upload timeout. Retry {attempt + 1}/{max_retries}")
                    await self._sleep(self.policy.delay(FailureKind.TIMEOUT, attempt))
                    continue
                raise BlobStoreTimeoutError(f"Upload timed out after {max_retries} retries")
            except httpx.TransportError as exc:
                if can_retry:
                    delay = self.policy.delay(FailureKind.NETWORK, attempt)
                    logger.warning(
                        f"[Discord] Upload error: {exc}. Retry {attempt + 1}/{max_retries} after {delay}s"
                    )
                    await self._sleep(delay)
                    continue
                raise BlobStoreError(f"Upload failed after {max_retries} retries: {exc}") from exc

            status = response.status_code

            if status in (200, 201):
                result = self._upload_result(response)
                if result is not None:
                    logger.debug(f"[Discord] Upload successful: {result.id} ({filename})")
                    return result
                if can_retry:
                    delay = self.policy.delay(FailureKind.NETWORK, attempt)
                    logger.warning(
                        f"[Discord] No attachments in response. Retry {attempt + 1}/{max_retries} after {delay}s"
                    )
                    await self._sleep(delay)
                    continue
                raise BlobStoreError(
                    f"Upload failed after {max_retries} retries: no attachments in response", status=status
                )

            if status == 429:
                rate_limit = self._parse_rate_limit(response)
                if rate_limit.is_global:
                    self.extend_cooldown(rate_limit.retry_after)
                    logger.warning(f"[Discord] Global rate limit hit. Cooldown: {rate_limit.retry_after}s")
                if can_retry:
                    scope = "global" if rate_limit.is_global else "local"
                    logger.warning(
                        f"[Discord] Rate limited ({scope}). Retry {attempt + 1}/{max_retries} "
                        f"after {rate_limit.retry_after}s"
                    )
                    await self._sleep(
                        self.policy.delay(FailureKind.RATE_LIMITED, attempt, rate_limit.retry_after)
                    )
                    continue

            elif status >= 500 and can_retry:
                delay = self.policy.delay(FailureKind.SERVER_ERROR, attempt)
                logger.warning(
                    f"[Discord] Server error {status}. Retry {attempt + 1}/{max_retries} after {delay}s"
                )
                await self._sleep(delay)
                continue

            text = response.text or response.reason_phrase
            raise BlobStoreError(f"Discord Upload Failed ({status}): {text}", status=status, body=text)

        raise BlobStoreError(f"Upload failed after {max_retries} retries")

    @staticmethod
    def _upload_result(response: httpx.Response) -> Optional[UploadResult]:
        try:
            message = response.json()
        except ValueError:
            return None
        if not isinstance(message, dict):
            return None
        attachments = message.get("attachments") or []
        if not attachments or not attachments[0].get("url"):
            return None
        return UploadResult(id=str(message["id"]), url=attachments[0]["url"])

    async def delete(self, message_id: str) -> bool:
        """
        Delete a message. A missing message counts as deleted.

        Errors are logged and swallowed so one bad id cannot stop a bulk
        cleanup; the return value tells whether the message is gone.
        """
        max_retries = self.policy.max_retries

        for attempt in range(max_retries + 1):
            await self.wait_for_cooldown()
            try:
                response = await self._http.delete(self._messages_path(message_id), headers=self._headers)
            except httpx.HTTPError as exc:
                logger.error(f"[Discord] Failed to delete msg {message_id}: {exc}")
                return False

            if response.is_success or response.status_code == 404:
                logger.debug(f"[Discord] Message {message_id} deleted successfully")
                return True

            if response.status_code == 429 and attempt < max_retries:
                rate_limit = self._parse_rate_limit(response)
                self.extend_cooldown(rate_limit.retry_after)
                logger.warning(f"[Discord] Rate limited. Retrying after {rate_limit.retry_after}s")
                await self._sleep(self.policy.delay(FailureKind.RATE_LIMITED, attempt, rate_limit.retry_after))
                continue

            logger.error(
                f"[Discord] Failed to delete msg {message_id}: HTTP {response.status_code}: {response.reason_phrase}"
            )
            return False

        return False

    async def bulk_delete(self, message_ids: List[str]) -> List[str]:
        """
        Delete messages in small concurrent batches with a pause between batches.

        Returns the ids that could not be deleted.
        """
        logger.info(f"[Discord] Bulk deleting {len(message_ids)} messages...")
        batch_size = self.policy.batch_size
        failed: List[str] = []

        for start in range(0, len(message_ids), batch_size):
            batch = message_ids[start:start + batch_size]
            results = await asyncio.gather(*(self.delete(mid) for mid in batch), return_exceptions=True)
            for message_id, result in zip(batch, results):
                if isinstance(result, BaseException):
                    logger.error(f"[Discord] Failed to delete message {message_id}: {result}")
                    failed.append(message_id)
                elif not result:
                    failed.append(message_id)

            if start + batch_size < len(message_ids):
                await self._sleep(self.policy.batch_delay)

        logger.info(f"[Discord] Bulk delete completed for {len(message_ids)} messages")
        return failed

    async def fetch_message(self, message_id: str) -> Optional[Dict[str, Any]]:
        """Fetch a message's metadata, mainly to get fresh attachment URLs"""
        await self.wait_for_cooldown()
        response = await self._http.get(self._messages_path(message_id), headers=self._headers)
        if response.status_code == 429:
            self.extend_cooldown(self._parse_rate_limit(response).retry_after)
            return None
        if not response.is_success:
            logger.debug(f"[Discord] Fetch of message {message_id} returned {response.status_code}")
            return None
        try:
            data = response.json()
        except ValueError:
            logger.debug(f"[Discord] Fetch of message {message_id} returned a non-JSON body")
            return None
        return data if isinstance(data, dict) else None

    async def aclose(self) -> None:
        await self._http.aclose()


_client: Optional[DiscordClient] = None


def get_discord_client() -> DiscordClient:
    """Process-wide client, built on first use"""
    global _client
    if _client is None:
        _client = DiscordClient(
            token=settings.DISCORD_BOT_TOKEN,
            channel_id=settings.DISCORD_CHANNEL_ID,
            api_base=settings.DISCORD_API_BASE,
            policy=RetryPolicy(upload_timeout=settings.UPLOAD_TIMEOUT_SECONDS),
        )
    return _client


async def close_discord_client() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
