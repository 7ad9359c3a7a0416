from typing import Any

from .models.upload_status import UploadStatus


class UploadError(Exception):
    """Base class for upload session failures.

    ``kind`` is a stable, machine readable name and ``retryable`` tells the
    caller whether repeating the same request may succeed.
    """

    kind = "upload_error"
    retryable = False

    def __init__(self, upload_id: str | None, message: str) -> None:
        super().__init__(message)
        self.upload_id = upload_id
        self.message = message

    def details(self) -> dict[str, Any]:
        return {}


class InvalidArgumentError(UploadError):
    """Initialization parameters or chunk coordinates are invalid."""

    kind = "invalid_argument"


class UploadNotFoundError(UploadError):
    """No session exists for the given upload id."""

    kind = "not_found"


class UploadExpiredError(UploadError):
    """The session timed out or is already in a terminal state."""

    kind = "expired"

    def __init__(
        self, upload_id: str | None, message: str, status: UploadStatus | None = None
    ) -> None:
        super().__init__(upload_id, message)
        self.status = status

    def details(self) -> dict[str, Any]:
        return {"status": self.status.value} if self.status else {}


class ChecksumMismatchError(UploadError):
    """Received bytes do not match the digest declared by the client."""

    kind = "checksum_mismatch"

    def __init__(
        self, upload_id: str | None, message: str, chunk_index: int | None = None
    ) -> None:
        super().__init__(upload_id, message)
        self.chunk_index = chunk_index

    def details(self) -> dict[str, Any]:
        return {"chunkIndex": self.chunk_index} if self.chunk_index is not None else {}


class UploadIncompleteError(UploadError):
    """Completion was requested before every chunk arrived."""

    kind = "incomplete"

    def __init__(
        self, upload_id: str | None, message: str, missing_chunks: list[int]
    ) -> None:
        super().__init__(upload_id, message)
        self.missing_chunks = missing_chunks

    def details(self) -> dict[str, Any]:
        return {"missingChunks": self.missing_chunks}


class StorageFailureError(UploadError):
    """Blob store or session store operation failed; safe to retry."""

    kind = "storage_failure"
    retryable = True


class UploadConflictError(UploadError):
    """The session kept changing under concurrent requests; safe to retry."""

    kind = "conflict"
    retryable = True
