from typing import Any


class UploadClientError(Exception):
    """Request rejected by the upload API, carrying the server's error body."""

    def __init__(self, status_code: int, body: dict[str, Any]) -> None:
        super().__init__(body.get("message") or f"HTTP {status_code}")
        self.status_code = status_code
        self.body = body
        self.error = body.get("error")
        self.upload_id = body.get("uploadId")
        self.retryable = bool(body.get("retryable", False))


class UploadInterruptedError(Exception):
    """Some chunks could not be delivered; resume with the same upload id."""

    def __init__(self, upload_id: str, failed_chunks: list[int]) -> None:
        super().__init__(
            f"Upload {upload_id} interrupted, {len(failed_chunks)} chunks failed"
        )
        self.upload_id = upload_id
        self.failed_chunks = failed_chunks
