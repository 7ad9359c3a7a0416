from enum import Enum


class UploadStatus(str, Enum):
    INITIALIZED = "initialized"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {
        UploadStatus.COMPLETED,
        UploadStatus.FAILED,
        UploadStatus.EXPIRED,
        UploadStatus.CANCELLED,
    }
)
