from sqlalchemy import Column, Integer, String, BigInteger, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from blobcord.core.database import Base


class Chunk(Base):
    """One encrypted slice of a file, stored as a single blob-host message."""
    __tablename__ = "chunks"
    __table_args__ = (
        UniqueConstraint("file_id", "chunk_index", name="uq_chunks_file_id_chunk_index"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_id = Column(String(36), ForeignKey("files.id", ondelete="CASCADE"), nullable=False, index=True)
    # Zero-based position in the file
    chunk_index = Column(Integer, nullable=False)
    # Absent on legacy/imported rows
    message_id = Column(String, nullable=True)
    # Attachment URL, may carry an expiring signature
    url = Column(String, nullable=True)
    iv = Column(String, nullable=True)
    # Length of the decrypted payload
    size = Column(BigInteger, nullable=False)

    file = relationship("File", back_populates="chunks")
