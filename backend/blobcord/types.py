from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass(frozen=True)
class RequestContext:
    """Per-request values handed explicitly to the services"""
    request_id: str = "internal"


@dataclass(frozen=True)
class UploadResult:
    id: str
    url: str


@dataclass(frozen=True)
class RateLimitInfo:
    retry_after: float = 1.0
    is_global: bool = False


@dataclass
class ChunkInput:
    index: int
    message_id: Optional[str]
    url: Optional[str]
    iv: Optional[str]
    size: int


@dataclass
class FileManifest:
    """Everything StorageService.save() needs to (re)write a file and its chunks"""
    file_id: str
    name: str
    size: int
    type: Optional[str] = None
    folder_id: Optional[str] = None
    iv: Optional[str] = None
    date: Optional[datetime] = None
    chunks: List[ChunkInput] = field(default_factory=list)
