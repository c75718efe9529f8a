import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import delete, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from blobcord.models.chunk import Chunk
from blobcord.models.file import File
from blobcord.types import FileManifest, RequestContext

logger = logging.getLogger(__name__)

ROOT_FOLDER_ALIASES = ("root", "/")


def normalize_folder(folder_id: Optional[str]) -> Optional[str]:
    """Map every spelling of the top level to None"""
    if folder_id is None or folder_id in ROOT_FOLDER_ALIASES:
        return None
    return folder_id


class StorageService:
    """
    Catalog of files and their chunk layout.

    Only touches the database. Removing the remote blobs is the caller's job
    (see the delete routes), and it is never done inside a catalog
    transaction.
    """

    def __init__(self, db: Session):
        self.db = db

    def list(self, folder_id: Optional[str] = None) -> List[File]:
        """List files newest first; None/'all' lists everything, 'root' or '/' the top level"""
        query = self.db.query(File)
        if folder_id in ROOT_FOLDER_ALIASES:
            query = query.filter(File.folder_id.is_(None))
        elif folder_id and folder_id != "all":
            query = query.filter(File.folder_id == folder_id)
        return query.order_by(File.date.desc()).all()

    def get(self, name: str) -> Optional[File]:
        """First file with this name, chunks loaded in chunk_index order"""
        return (
            self.db.query(File)
            .options(selectinload(File.chunks))
            .filter(File.name == name)
            .order_by(File.date.asc(), File.id.asc())
            .first()
        )

    def find_in_folder(self, folder_path: str) -> List[File]:
        """Files directly in folder_path or anywhere below it"""
        prefix = folder_path if folder_path.endswith("/") else f"{folder_path}/"
        return (
            self.db.query(File)
            .options(selectinload(File.chunks))
            .filter(or_(File.folder_id == folder_path, File.folder_id.startswith(prefix, autoescape=True)))
            .all()
        )

    def release(self, *keep: File) -> None:
        """
        End the current read transaction before slow blob-host calls.

        Files passed in are detached first so their loaded columns and chunks
        stay readable without reopening a transaction.
        """
        for db_file in keep:
            self.db.expunge(db_file)
        self.db.rollback()

    @staticmethod
    def message_ids_for(files: List[File]) -> List[str]:
        return [chunk.message_id for f in files for chunk in f.chunks if chunk.message_id]

    def save(self, manifest: FileManifest, ctx: RequestContext = RequestContext()) -> File:
        """
        Upsert the file row and replace its whole chunk set in one transaction.

        Old and new chunk sets never coexist: if anything fails before the
        commit, the previous chunks are left exactly as they were.
        """
        try:
            db_file = self.db.get(File, manifest.file_id)
            if db_file is None:
                db_file = File(id=manifest.file_id)
                self.db.add(db_file)

            db_file.name = manifest.name
            db_file.size = manifest.size
            db_file.type = manifest.type
            db_file.folder_id = normalize_folder(manifest.folder_id)
            db_file.iv = manifest.iv
            db_file.date = manifest.date or datetime.now(timezone.utc)
            self.db.flush()

            self.db.execute(delete(Chunk).where(Chunk.file_id == manifest.file_id))
            self.db.expire(db_file, ["chunks"])

            self.db.add_all([
                Chunk(
                    file_id=manifest.file_id,
                    chunk_index=chunk.index,
                    message_id=chunk.message_id,
                    url=chunk.url,
                    iv=chunk.iv,
                    size=chunk.size,
                )
                for chunk in manifest.chunks
            ])
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.refresh(db_file)
        logger.info(f"[{ctx.request_id}] [Storage] Save complete for: {manifest.name}")
        return db_file

    def delete(self, name: str) -> bool:
        """Remove the file row; chunks go with it through the cascade"""
        db_file = self.get(name)
        if db_file is None:
            return False
        try:
            self.db.delete(db_file)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return True

    def delete_many(self, file_ids: List[str]) -> int:
        """Remove several files by id; returns how many rows were deleted"""
        try:
            files = self.db.query(File).filter(File.id.in_(file_ids)).all()
            for db_file in files:
                self.db.delete(db_file)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return len(files)
