"""Client that uploads a local file through the chunked upload API."""

import argparse
import hashlib
import logging
import mimetypes
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Callable, TypeVar

import httpx

from .exceptions import UploadClientError, UploadInterruptedError

logger = logging.getLogger("upload_client")

T = TypeVar("T")

HASH_BLOCK_SIZE = 64 * 1024


class ChunkedUploader:
    """Splits a file into chunks, sends them in parallel and completes.

    Chunks are checksummed with SHA-256 so the server can reject corrupted
    bytes. Retryable failures (server says ``retryable`` or the connection
    broke) are retried with linear backoff. Passing ``upload_id`` to
    :meth:`upload_file` resumes an earlier session by sending only the chunks
    the server reports as missing.
    """

    def __init__(
        self,
        client: httpx.Client,
        chunk_size: int | None = None,
        max_workers: int = 4,
        max_retries: int = 3,
        retry_backoff_sec: float = 0.5,
    ) -> None:
        self.client = client
        self.chunk_size = chunk_size
        self.max_workers = max_workers
        self.max_retries = max_retries
        self.retry_backoff_sec = retry_backoff_sec

    @staticmethod
    def calculate_file_hash(file_path: Path) -> str:
        hash_obj = hashlib.sha256()
        with open(file_path, "rb") as f:
            while block := f.read(HASH_BLOCK_SIZE):
                hash_obj.update(block)
        return hash_obj.hexdigest()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        response = self.client.request(method, url, **kwargs)
        if response.is_success:
            return response
        try:
            body = response.json()
        except ValueError:
            body = {"message": response.text}
        raise UploadClientError(response.status_code, body)

    def _with_retries(self, action: Callable[[], T], description: str) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return action()
            except UploadClientError as error:
                if not error.retryable or attempt > self.max_retries:
                    raise
                logger.warning(
                    "Retrying %s after %s.", description, error.error,
                    extra={"attempt": attempt},
                )
            except httpx.TransportError as error:
                if attempt > self.max_retries:
                    raise
                logger.warning(
                    "Retrying %s after transport error %s.", description, error,
                    extra={"attempt": attempt},
                )
            time.sleep(self.retry_backoff_sec * attempt)

    def initialize(
        self,
        file_path: Path,
        mime_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "fileName": file_path.name,
            "fileSize": file_path.stat().st_size,
            "mimeType": mime_type or mimetypes.guess_type(file_path.name)[0],
            "metadata": metadata,
            "fileChecksum": self.calculate_file_hash(file_path),
        }
        if self.chunk_size is not None:
            payload["chunkSize"] = self.chunk_size
        return self._with_retries(
            lambda: self._request("POST", "/uploads/initialize", json=payload).json(),
            "initialize",
        )

    def upload_chunk(self, upload_id: str, chunk_index: int, data: bytes) -> dict[str, Any]:
        form = {
            "uploadId": upload_id,
            "chunkIndex": str(chunk_index),
            "checksum": hashlib.sha256(data).hexdigest(),
        }
        return self._with_retries(
            lambda: self._request(
                "POST",
                "/uploads/chunk",
                data=form,
                files={"chunk": (f"chunk-{chunk_index}", data)},
            ).json(),
            f"chunk {chunk_index}",
        )

    def get_session(self, upload_id: str) -> dict[str, Any]:
        return self._request("GET", f"/uploads/{upload_id}").json()

    def get_missing_chunks(self, upload_id: str) -> list[int]:
        response = self._request("GET", f"/uploads/{upload_id}/missing-chunks")
        return response.json()["missingChunks"]

    def complete(self, upload_id: str) -> dict[str, Any]:
        return self._with_retries(
            lambda: self._request(
                "POST", "/uploads/complete", json={"uploadId": upload_id}
            ).json(),
            "complete",
        )

    def cancel(self, upload_id: str) -> None:
        self._request("DELETE", f"/uploads/{upload_id}")

    def upload_file(
        self,
        file_path: str | Path,
        upload_id: str | None = None,
        mime_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        file_path = Path(file_path)
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {file_path}")

        if upload_id:
            session = self.get_session(upload_id)
            chunk_size = session["chunkSize"]
            pending = self.get_missing_chunks(upload_id)
            logger.info(
                "Resuming upload.",
                extra={"upload_id": upload_id, "pending_chunks": len(pending)},
            )
        else:
            initialized = self.initialize(file_path, mime_type, metadata)
            upload_id = initialized["uploadId"]
            chunk_size = initialized["chunkSize"]
            pending = list(range(initialized["totalChunks"]))
            logger.info(
                "Initialized upload.",
                extra={"upload_id": upload_id, "total_chunks": len(pending)},
            )

        failed = self._upload_chunks(file_path, upload_id, chunk_size, pending)
        if failed:
            raise UploadInterruptedError(upload_id, failed)

        result = self.complete(upload_id)
        logger.info(
            "Upload completed.",
            extra={"upload_id": upload_id, "storage_key": result["storageKey"]},
        )
        return result

    def _upload_chunks(
        self, file_path: Path, upload_id: str, chunk_size: int, indices: list[int]
    ) -> list[int]:
        def send(index: int) -> None:
            with open(file_path, "rb") as f:
                f.seek(index * chunk_size)
                data = f.read(chunk_size)
            self.upload_chunk(upload_id, index, data)

        failed: list[int] = []
        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {executor.submit(send, index): index for index in indices}
            for future in as_completed(futures):
                index = futures[future]
                try:
                    future.result()
                except (UploadClientError, httpx.HTTPError) as error:
                    logger.error(
                        "Chunk upload failed: %s", error,
                        extra={"upload_id": upload_id, "chunk_index": index},
                    )
                    failed.append(index)
        return sorted(failed)


def main() -> None:
    parser = argparse.ArgumentParser(description="Upload a file in chunks.")
    parser.add_argument("file_path")
    parser.add_argument("--api-url", default="http://localhost:8000")
    parser.add_argument("--resume", dest="upload_id")
    parser.add_argument("--chunk-size", type=int)
    parser.add_argument("--workers", type=int, default=4)
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    with httpx.Client(base_url=args.api_url, timeout=60.0) as client:
        uploader = ChunkedUploader(
            client, chunk_size=args.chunk_size, max_workers=args.workers
        )
        try:
            result = uploader.upload_file(args.file_path, upload_id=args.upload_id)
        except UploadInterruptedError as error:
            logger.error(
                "Upload incomplete, resume with --resume %s", error.upload_id
            )
            raise SystemExit(1) from error
    logger.info("Stored as %s", result["storageKey"])


if __name__ == "__main__":
    main()
