from sqlalchemy import Column, String, DateTime, BigInteger
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from blobcord.core.database import Base


class File(Base):
    """
    Catalog entry for a stored file.

    Content lives on the blob host as encrypted chunks; this row only keeps
    what is needed to put them back together.
    """
    __tablename__ = "files"

    # UUID assigned at finalize time
    id = Column(String(36), primary_key=True)
    # Display name - used as the lookup key but not unique
    name = Column(String, nullable=False, index=True)
    # Total byte length - BigInteger handles files over 2GB
    size = Column(BigInteger, nullable=False, default=0)
    type = Column(String, nullable=True)
    # Logical folder path; NULL means top level
    folder_id = Column(String, nullable=True, index=True)
    # File-level IV, only used for chunks that have none of their own
    iv = Column(String, nullable=True)
    date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Ordered by chunk_index so file.chunks is always the reassembly order
    chunks = relationship(
        "Chunk",
        back_populates="file",
        order_by="Chunk.chunk_index",
        cascade="all, delete-orphan",
    )

    @property
    def folder(self) -> str:
        return self.folder_id or "/"
