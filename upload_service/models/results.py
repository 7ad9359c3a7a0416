from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .upload_status import UploadStatus  # pylint: disable=relative-beyond-top-level


@dataclass
class ChunkUploadResult:
    upload_id: str
    chunk_index: int
    uploaded_chunks: int
    total_chunks: int
    status: UploadStatus


@dataclass
class CompletedUpload:
    upload_id: str
    storage_key: str
    file_name: str
    file_size: int
    mime_type: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class UploadProgress:
    upload_id: str
    uploaded_chunks: int
    total_chunks: int
    percentage: int
    status: UploadStatus
    expires_at: datetime


@dataclass
class SweepResult:
    expired: int = 0
    purged: int = 0
