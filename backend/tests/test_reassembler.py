"""Tests for fetching, decrypting and placing chunks in order."""

import os
import random

import httpx
import pytest

from blobcord.core.exceptions import ChunkFetchError, ReassemblyError
from blobcord.models.chunk import Chunk
from blobcord.models.file import File
from blobcord.services.reassembler import Reassembler
from blobcord.services.url_resolver import UrlResolver


def build_file(cipher, payload: bytes, chunk_size: int, name="movie.mp4"):
    """Encrypt payload in chunks; returns (File, {url: ciphertext})"""
    blobs = {}
    chunks = []
    for index, start in enumerate(range(0, len(payload), chunk_size)):
        piece = payload[start:start + chunk_size]
        ciphertext, iv = cipher.encrypt(piece)
        url = f"https://cdn.test/attachments/1/{index}/chunk.bin"
        blobs[url] = ciphertext
        chunks.append(Chunk(chunk_index=index, message_id=f"m{index}", url=url, iv=iv.hex(), size=len(piece)))
    return File(id="f1", name=name, size=len(payload), chunks=chunks), blobs


@pytest.fixture
def make_reassembler(cipher, make_discord_client, make_cdn_client):
    """Reassembler reading from an in-memory CDN of {url: ciphertext}"""
    def factory(blobs, strict=False, requested=None):
        def cdn(request):
            url = str(request.url)
            if requested is not None:
                requested.append(url)
            if url not in blobs:
                return httpx.Response(404)
            return httpx.Response(200, content=blobs[url])

        discord = make_discord_client(lambda request: httpx.Response(500))
        return Reassembler(UrlResolver(discord), cipher, make_cdn_client(cdn), strict=strict)

    return factory


@pytest.mark.asyncio
async def test_reassembles_byte_exact(cipher, make_reassembler):
    payload = os.urandom(2500)
    db_file, blobs = build_file(cipher, payload, 1000)

    body = await make_reassembler(blobs).reassemble(db_file)

    assert bytes(body) == payload


@pytest.mark.asyncio
async def test_chunk_order_comes_from_index_not_row_order(cipher, make_reassembler):
    payload = os.urandom(4096)
    db_file, blobs = build_file(cipher, payload, 512)
    shuffled = list(db_file.chunks)
    random.Random(7).shuffle(shuffled)
    db_file.chunks = shuffled
    requested = []

    body = await make_reassembler(blobs, requested=requested).reassemble(db_file)

    assert bytes(body) == payload
    assert requested == [f"https://cdn.test/attachments/1/{i}/chunk.bin" for i in range(8)]
    # bytes at offset sum(size[0..i-1]) belong to chunk i
    for i in range(8):
        assert body[i * 512:(i + 1) * 512] == payload[i * 512:(i + 1) * 512]


@pytest.mark.asyncio
async def test_file_level_iv_is_used_when_chunk_has_none(cipher, make_reassembler):
    payload = b"legacy file contents"
    ciphertext, iv = cipher.encrypt(payload)
    url = "https://cdn.test/legacy.bin"
    chunk = Chunk(chunk_index=0, message_id="m0", url=url, iv=None, size=len(payload))
    db_file = File(id="f1", name="legacy.txt", size=len(payload), iv=iv.hex(), chunks=[chunk])

    body = await make_reassembler({url: ciphertext}).reassemble(db_file)

    assert bytes(body) == payload


@pytest.mark.asyncio
async def test_chunk_without_url_leaves_zero_gap(cipher, make_reassembler):
    payload = b"A" * 10 + b"B" * 10 + b"C" * 10
    db_file, blobs = build_file(cipher, payload, 10)
    db_file.chunks[1].url = None

    body = await make_reassembler(blobs).reassemble(db_file)

    assert bytes(body) == b"A" * 10 + b"\x00" * 10 + b"C" * 10


@pytest.mark.asyncio
async def test_strict_mode_rejects_missing_url(cipher, make_reassembler):
    db_file, blobs = build_file(cipher, b"x" * 20, 10)
    db_file.chunks[0].url = None

    with pytest.raises(ReassemblyError):
        await make_reassembler(blobs, strict=True).reassemble(db_file)


@pytest.mark.asyncio
async def test_fetch_failure_is_raised(cipher, make_reassembler):
    db_file, _ = build_file(cipher, b"x" * 20, 10)

    with pytest.raises(ChunkFetchError) as exc_info:
        await make_reassembler({}).reassemble(db_file)
    assert exc_info.value.status == 404


@pytest.mark.asyncio
async def test_truncated_chunk_is_rejected(cipher, make_reassembler):
    db_file, blobs = build_file(cipher, b"x" * 20, 10)
    first_url = db_file.chunks[0].url
    blobs[first_url] = blobs[first_url][:5]

    with pytest.raises(ReassemblyError):
        await make_reassembler(blobs).reassemble(db_file)


@pytest.mark.asyncio
async def test_chunks_larger_than_declared_size_are_rejected(cipher, make_reassembler):
    db_file, blobs = build_file(cipher, b"x" * 20, 10)
    db_file.size = 15

    with pytest.raises(ReassemblyError):
        await make_reassembler(blobs).reassemble(db_file)


@pytest.mark.asyncio
async def test_empty_file(cipher, make_reassembler):
    db_file = File(id="f1", name="empty.txt", size=0, chunks=[])
    body = await make_reassembler({}).reassemble(db_file)
    assert bytes(body) == b""
