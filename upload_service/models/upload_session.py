from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field

from .upload_status import TERMINAL_STATUSES, UploadStatus  # pylint: disable=relative-beyond-top-level

DEFAULT_MIME_TYPE = "application/octet-stream"


class UploadSession(BaseModel):
    """Server side record of one chunked upload attempt."""

    upload_id: str
    file_name: str
    file_size: int
    mime_type: str = DEFAULT_MIME_TYPE
    chunk_size: int
    total_chunks: int
    uploaded_chunks: set[int] = Field(default_factory=set)
    status: UploadStatus = UploadStatus.INITIALIZED
    storage_key: str | None = None
    file_checksum: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    last_activity: datetime
    expires_at: datetime
    completed_at: datetime | None = None
    assembly_started_at: datetime | None = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_assembling(self, now: datetime, timeout: timedelta) -> bool:
        # a claim older than the timeout belongs to a crashed worker
        return (
            self.assembly_started_at is not None
            and now - self.assembly_started_at < timeout
        )

    def missing_chunks(self) -> list[int]:
        return [i for i in range(self.total_chunks) if i not in self.uploaded_chunks]
