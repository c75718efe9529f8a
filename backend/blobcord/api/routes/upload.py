import logging
import re
import time
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from starlette.datastructures import UploadFile

from blobcord.api.dependencies import (
    get_blob_client,
    get_chunk_cipher,
    get_request_context,
    get_storage_service,
)
from blobcord.core.crypto import ChunkCipher
from blobcord.services.discord_client import DiscordClient
from blobcord.services.storage_service import StorageService
from blobcord.types import ChunkInput, FileManifest, RequestContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/upload", tags=["upload"])


class ChunkUploadResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(alias="messageId")
    url: str
    iv: str
    size: int


class FinalizeChunk(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    index: Optional[int] = None
    message_id: str = Field(alias="messageId")
    url: str
    iv: Optional[str] = None
    size: int = Field(ge=0)


class FinalizeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    filename: Optional[str] = None
    chunks: Optional[List[FinalizeChunk]] = None
    total_size: Optional[int] = Field(default=None, alias="totalSize", ge=0)
    type: Optional[str] = None
    folder_id: Optional[str] = Field(default=None, alias="folderId")


class CancelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_ids: Optional[List[str]] = Field(default=None, alias="messageIds")


def blob_filename(original_name: str) -> str:
    """Name the attachment gets on the blob host: sanitized original plus a millisecond stamp"""
    clean_name = re.sub(r"[^a-zA-Z0-9_-]", "", original_name)
    return f"{clean_name}_{int(time.time() * 1000)}.bin"


def build_manifest(body: FinalizeRequest) -> FileManifest:
    """Turn a finalize request into a manifest, rejecting chunk layouts that cannot be reassembled"""
    if not body.filename or body.chunks is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid metadata")

    chunks = [
        ChunkInput(
            index=chunk.index if chunk.index is not None else position,
            message_id=chunk.message_id,
            url=chunk.url,
            iv=chunk.iv or None,
            size=chunk.size,
        )
        for position, chunk in enumerate(body.chunks)
    ]

    # Indices must be exactly 0..N-1
    if sorted(c.index for c in chunks) != list(range(len(chunks))):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Chunk indices must be unique and contiguous from 0",
        )

    chunk_total = sum(c.size for c in chunks)
    total_size = body.total_size if body.total_size is not None else chunk_total
    if total_size != chunk_total:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"totalSize {total_size} does not match chunk sizes ({chunk_total})",
        )

    return FileManifest(
        file_id=str(uuid.uuid4()),
        name=body.filename,
        size=total_size,
        type=body.type,
        folder_id=body.folder_id,
        iv=None,
        date=datetime.now(timezone.utc),
        chunks=sorted(chunks, key=lambda c: c.index),
    )


@router.post("/chunk", response_model=ChunkUploadResponse)
async def upload_chunk(
    request: Request,
    cipher: ChunkCipher = Depends(get_chunk_cipher),
    blob_client: DiscordClient = Depends(get_blob_client),
    ctx: RequestContext = Depends(get_request_context),
):
    """Encrypt one chunk and store it as a new attachment"""
    form = await request.form()
    upload = next((value for _, value in form.multi_items() if isinstance(value, UploadFile)), None)
    if upload is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No file provided")

    original_name = upload.filename or "chunk"
    try:
        data = await upload.read()
        logger.info(f"[{ctx.request_id}] [CHUNK] Start: {original_name}")

        encrypted, iv = cipher.encrypt(data)
        remote_name = blob_filename(original_name)
        result = await blob_client.upload(encrypted, remote_name)
        logger.info(f"[{ctx.request_id}] [CHUNK] Done: {remote_name}")
    except Exception as exc:
        logger.error(f"[{ctx.request_id}] Chunk Upload Error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to upload chunk",
        )
    finally:
        await upload.close()

    return ChunkUploadResponse(message_id=result.id, url=result.url, iv=iv.hex(), size=len(data))


@router.post("/finalize")
async def finalize_upload(
    body: FinalizeRequest,
    storage: StorageService = Depends(get_storage_service),
    ctx: RequestContext = Depends(get_request_context),
):
    """Commit the chunk manifest of an uploaded file to the catalog"""
    manifest = build_manifest(body)
    try:
        storage.save(manifest, ctx)
    except SQLAlchemyError as exc:
        logger.error(f"[{ctx.request_id}] Metadata Save Error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save metadata",
        )

    logger.info(f"[{ctx.request_id}] [FINALIZE] Saved {manifest.name} ({manifest.size} bytes)")
    return {"success": True, "filename": manifest.name}


@router.delete("/cancel")
async def cancel_upload(
    body: CancelRequest,
    blob_client: DiscordClient = Depends(get_blob_client),
    ctx: RequestContext = Depends(get_request_context),
):
    """Remove chunks that were uploaded but never finalized"""
    if not body.message_ids:
        return {"status": "nothing to clean"}

    logger.info(f"[{ctx.request_id}] [UPLOAD CANCEL] Cleaning up {len(body.message_ids)} orphaned chunks...")
    failed = await blob_client.bulk_delete(body.message_ids)
    if failed:
        logger.warning(f"[{ctx.request_id}] [UPLOAD CANCEL] {len(failed)} chunks could not be removed")
    return {"status": "cleaned", "count": len(body.message_ids)}
