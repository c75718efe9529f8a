import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_serializer
from sqlalchemy.exc import SQLAlchemyError

from blobcord.api.dependencies import get_blob_client, get_request_context, get_storage_service
from blobcord.services.discord_client import DiscordClient
from blobcord.services.storage_service import ROOT_FOLDER_ALIASES, StorageService
from blobcord.types import RequestContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/files", tags=["files"])


class ChunkDetail(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    index: int = Field(validation_alias=AliasChoices("chunk_index", "index"))
    message_id: Optional[str] = Field(default=None, alias="messageId")
    url: Optional[str] = None
    iv: Optional[str] = None
    size: int


class FileSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: str
    name: str
    size: int
    type: Optional[str] = None
    folder_id: Optional[str] = Field(default=None, alias="folderId")
    folder: str
    iv: Optional[str] = None
    date: datetime

    @field_serializer("date")
    def serialize_date(self, value: datetime, _info):
        return value.isoformat() if value else None


class FileDetail(FileSummary):
    chunks: List[ChunkDetail] = []


class FolderDeleteRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    folder_path: Optional[str] = Field(default=None, alias="folderPath")


@router.get("", response_model=List[FileSummary])
async def list_files(
    folder_id: Optional[str] = Query(None, alias="folderId"),
    storage: StorageService = Depends(get_storage_service),
    ctx: RequestContext = Depends(get_request_context),
):
    """List files, newest first, optionally restricted to one folder"""
    try:
        return storage.list(folder_id)
    except SQLAlchemyError as exc:
        logger.error(f"[{ctx.request_id}] [GET FILES] Error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )


@router.delete("/folder")
async def delete_folder(
    body: FolderDeleteRequest,
    storage: StorageService = Depends(get_storage_service),
    blob_client: DiscordClient = Depends(get_blob_client),
    ctx: RequestContext = Depends(get_request_context),
):
    """
    Delete every file in a folder and its subfolders.

    Remote messages are removed first, then the catalog rows. The top level
    can never be deleted this way.
    """
    folder_path = body.folder_path
    if not folder_path:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="folderPath is required")
    if folder_path in ROOT_FOLDER_ALIASES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid folderPath")

    logger.info(f"[{ctx.request_id}] [DELETE FOLDER] Starting bulk deletion for: {folder_path}")
    try:
        files = storage.find_in_folder(folder_path)
        if not files:
            return {"status": "done", "count": 0}

        file_ids = [f.id for f in files]
        message_ids = storage.message_ids_for(files)
        storage.release()
        if message_ids:
            await blob_client.bulk_delete(message_ids)

        count = storage.delete_many(file_ids)
    except SQLAlchemyError as exc:
        logger.error(f"[{ctx.request_id}] [DELETE FOLDER] Error: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )

    logger.info(f"[{ctx.request_id}] [DELETE FOLDER] Removed {count} files from {folder_path}")
    return {"status": "done", "count": count}


@router.get("/{filename}", response_model=FileDetail)
async def get_file(
    filename: str,
    storage: StorageService = Depends(get_storage_service),
):
    """Get a file's metadata with its ordered chunks"""
    db_file = storage.get(filename)
    if not db_file:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return db_file


@router.delete("/{filename}")
async def delete_file(
    filename: str,
    storage: StorageService = Depends(get_storage_service),
    blob_client: DiscordClient = Depends(get_blob_client),
    ctx: RequestContext = Depends(get_request_context),
):
    """Delete a file's remote chunks, then its catalog entry"""
    db_file = storage.get(filename)
    if not db_file:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")

    try:
        message_ids = storage.message_ids_for([db_file])
        storage.release()
        if message_ids:
            await blob_client.bulk_delete(message_ids)
        storage.delete(filename)
    except SQLAlchemyError as exc:
        logger.error(f"[{ctx.request_id}] Delete File failure: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed",
        )

    return {"status": "deleted"}
