from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from upload_service.models.upload_status import UploadStatus


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitializeUploadRequest(CamelModel):
    file_name: str = Field(description="Original name of the file, used for the final key.")
    file_size: int = Field(description="Total size of the file in bytes.")
    mime_type: str | None = None
    chunk_size: int | None = Field(
        default=None, description="Requested chunk size. Server default when omitted."
    )
    metadata: dict[str, Any] | None = None
    file_checksum: str | None = Field(
        default=None, description="Hex encoded SHA-256 of the whole file."
    )


class InitializeUploadResponse(CamelModel):
    upload_id: str
    total_chunks: int
    chunk_size: int
    expires_at: datetime


class ChunkUploadResponse(CamelModel):
    upload_id: str
    chunk_index: int
    uploaded_chunks: int
    total_chunks: int
    status: UploadStatus


class CompleteUploadRequest(CamelModel):
    upload_id: str


class CompleteUploadResponse(CamelModel):
    upload_id: str
    storage_key: str
    file_name: str
    file_size: int
    mime_type: str
    metadata: dict[str, Any]


class UploadSessionResponse(CamelModel):
    upload_id: str
    file_name: str
    file_size: int
    mime_type: str
    chunk_size: int
    total_chunks: int
    uploaded_chunks: list[int] = Field(description="Received chunk indices, sorted.")
    status: UploadStatus
    storage_key: str | None
    metadata: dict[str, Any]
    created_at: datetime
    last_activity: datetime
    expires_at: datetime
    completed_at: datetime | None


class UploadProgressResponse(CamelModel):
    upload_id: str
    uploaded_chunks: int
    total_chunks: int
    percentage: int
    status: UploadStatus
    expires_at: datetime


class MissingChunksResponse(CamelModel):
    upload_id: str
    missing_chunks: list[int]
