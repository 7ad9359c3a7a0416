import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Callable

from storage_service.object_storage import ObjectStorageService

from . import metrics
from .checksum import checksums_match, compute_checksum, is_valid_checksum
from .exceptions import (
    ChecksumMismatchError,
    InvalidArgumentError,
    StorageFailureError,
    UploadConflictError,
    UploadExpiredError,
    UploadIncompleteError,
    UploadNotFoundError,
)
from .logger import logger
from .models.results import (
    ChunkUploadResult,
    CompletedUpload,
    SweepResult,
    UploadProgress,
)
from .models.upload_session import DEFAULT_MIME_TYPE, UploadSession
from .models.upload_status import UploadStatus
from .schemas import UploadManagerConfig
from .session_store import UploadSessionStore
from .utils import (
    calculate_optimal_chunk_size,
    calculate_total_chunks,
    chunk_key,
    chunk_prefix,
    expected_chunk_length,
    final_object_key,
    generate_upload_id,
    utc_now,
)

ID_GENERATION_ATTEMPTS = 3

SessionMutation = Callable[[UploadSession], UploadSession | None]


class UploadSessionManager:
    """Drives upload sessions through initialize, chunk, complete and cancel.

    Session state lives in an :class:`UploadSessionStore` and is only changed
    through optimistic compare-and-set, so any number of workers may serve
    requests for the same upload. Chunk bytes go to the blob store under
    ``{upload_id}/chunks/{index}`` and are concatenated by index on completion.
    """

    def __init__(
        self,
        store: UploadSessionStore,
        storage: ObjectStorageService,
        config: UploadManagerConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.storage = storage
        self.config = config or UploadManagerConfig()
        self._clock = clock
        self._ttl = timedelta(seconds=self.config.session_ttl_sec)
        self._retention = timedelta(seconds=self.config.session_retention_sec)
        self._assembly_timeout = timedelta(seconds=self.config.assembly_timeout_sec)

    @metrics.track_errors
    async def initialize_upload(  # pylint: disable=too-many-arguments, too-many-positional-arguments
        self,
        file_name: str,
        file_size: int,
        mime_type: str | None = None,
        chunk_size: int | None = None,
        metadata: dict[str, Any] | None = None,
        file_checksum: str | None = None,
    ) -> UploadSession:
        if not file_name or not file_name.strip():
            raise InvalidArgumentError(None, "file_name must be a non-empty string")
        if file_size <= 0:
            raise InvalidArgumentError(None, "file_size must be a positive integer")
        if file_size > self.config.max_file_size:
            raise InvalidArgumentError(
                None, f"file_size must not exceed {self.config.max_file_size} bytes"
            )
        if chunk_size is None:
            chunk_size = self._default_chunk_size(file_size)
        if chunk_size <= 0:
            raise InvalidArgumentError(None, "chunk_size must be a positive integer")
        if chunk_size > self.config.max_chunk_size:
            raise InvalidArgumentError(
                None, f"chunk_size must not exceed {self.config.max_chunk_size} bytes"
            )
        if file_checksum is not None and not is_valid_checksum(file_checksum):
            raise InvalidArgumentError(
                None, "file_checksum must be a hex encoded SHA-256 digest"
            )
        total_chunks = calculate_total_chunks(file_size, chunk_size)
        if total_chunks > self.config.max_total_chunks:
            raise InvalidArgumentError(
                None,
                f"File would be split into {total_chunks} chunks, the limit is "
                f"{self.config.max_total_chunks}; use a larger chunk_size",
            )

        now = self._clock()
        for _ in range(ID_GENERATION_ATTEMPTS):
            session = UploadSession(
                upload_id=generate_upload_id(),
                file_name=file_name,
                file_size=file_size,
                mime_type=mime_type or DEFAULT_MIME_TYPE,
                chunk_size=chunk_size,
                total_chunks=total_chunks,
                file_checksum=file_checksum.strip().lower() if file_checksum else None,
                metadata=metadata or {},
                created_at=now,
                last_activity=now,
                expires_at=now + self._ttl,
            )
            if await self.store.create(session):
                metrics.SESSIONS_INITIALIZED.inc()
                logger.info(
                    "Initialized upload session",
                    extra={
                        "upload_id": session.upload_id,
                        "file_name": file_name,
                        "file_size": file_size,
                        "total_chunks": session.total_chunks,
                    },
                )
                return session
            logger.warning(
                "Upload id collision, generating a new one",
                extra={"upload_id": session.upload_id},
            )
        raise UploadConflictError(None, "Could not allocate a unique upload id")

    @metrics.track_errors
    async def upload_chunk(
        self,
        upload_id: str,
        chunk_index: int,
        data: bytes,
        checksum: str | None = None,
    ) -> ChunkUploadResult:
        session = await self._get_session(upload_id)
        await self._ensure_accepting(session)
        self._validate_chunk(session, chunk_index, data)

        if checksum is not None and not checksums_match(
            compute_checksum(data), checksum
        ):
            logger.warning(
                "Chunk checksum mismatch",
                extra={"upload_id": upload_id, "chunk_index": chunk_index},
            )
            raise ChecksumMismatchError(
                upload_id,
                f"Checksum mismatch for chunk {chunk_index}",
                chunk_index=chunk_index,
            )

        key = chunk_key(upload_id, chunk_index)
        try:
            await asyncio.to_thread(self.storage.write, key, data)
        except Exception as exception:
            raise StorageFailureError(
                upload_id, f"Failed to store chunk {chunk_index}"
            ) from exception

        def add_chunk(current: UploadSession) -> UploadSession | None:
            if current.is_terminal:
                raise UploadExpiredError(
                    upload_id,
                    f"Upload session is {current.status.value}",
                    status=current.status,
                )
            now = self._clock()
            if current.is_expired(now):
                raise self._expired_error(upload_id)
            return current.model_copy(
                update={
                    "uploaded_chunks": current.uploaded_chunks | {chunk_index},
                    "status": UploadStatus.UPLOADING,
                    "last_activity": now,
                    "expires_at": now + self._ttl,
                }
            )

        try:
            updated, _ = await self._update_session(upload_id, add_chunk)
        except UploadExpiredError:
            # the session ended while the bytes were in flight
            await self._discard(upload_id, [key])
            await self._expire_session(upload_id)
            raise

        metrics.CHUNKS_RECEIVED.inc()
        metrics.CHUNK_BYTES_RECEIVED.inc(len(data))
        logger.debug(
            "Chunk received",
            extra={
                "upload_id": upload_id,
                "chunk_index": chunk_index,
                "uploaded_chunks": len(updated.uploaded_chunks),
                "total_chunks": updated.total_chunks,
            },
        )
        return ChunkUploadResult(
            upload_id=upload_id,
            chunk_index=chunk_index,
            uploaded_chunks=len(updated.uploaded_chunks),
            total_chunks=updated.total_chunks,
            status=updated.status,
        )

    @metrics.track_errors
    async def complete_upload(self, upload_id: str) -> CompletedUpload:
        """Assemble all chunks into the final object and close the session.

        Calling this again on a completed session returns the same storage
        key. A request that finds another completion in flight waits for it
        instead of assembling a second time.
        """
        session = await self._get_session(upload_id)
        if session.status == UploadStatus.COMPLETED:
            return self._completed_result(session)
        await self._ensure_accepting(session)
        self._ensure_all_chunks(session)

        def claim_assembly(current: UploadSession) -> UploadSession | None:
            now = self._clock()
            if current.is_terminal or current.is_assembling(
                now, self._assembly_timeout
            ):
                return None
            if current.is_expired(now):
                raise self._expired_error(upload_id)
            self._ensure_all_chunks(current)
            return current.model_copy(
                update={
                    "assembly_started_at": now,
                    "last_activity": now,
                    "expires_at": now + self._ttl,
                }
            )

        try:
            session, claimed = await self._update_session(upload_id, claim_assembly)
        except UploadExpiredError:
            await self._expire_session(upload_id)
            raise
        if not claimed:
            if session.status == UploadStatus.COMPLETED:
                return self._completed_result(session)
            if session.is_terminal:
                raise self._terminal_error(session)
            return await self._wait_for_completion(upload_id)

        storage_key = final_object_key(
            self.config.final_key_prefix, upload_id, session.file_name
        )
        chunk_keys = [chunk_key(upload_id, i) for i in range(session.total_chunks)]
        digest: str | None = None
        try:
            await asyncio.to_thread(self.storage.assemble, chunk_keys, storage_key)
            if session.file_checksum:
                digest = await asyncio.to_thread(self.storage.digest, storage_key)
        except Exception as exception:
            await self._release_assembly(upload_id)
            raise StorageFailureError(
                upload_id, "Failed to assemble uploaded chunks"
            ) from exception

        if digest is not None and not checksums_match(
            digest, session.file_checksum or ""
        ):
            await self._fail_session(upload_id)
            await self._discard(upload_id, [storage_key])
            await self._discard_chunks(upload_id)
            raise ChecksumMismatchError(
                upload_id, "Assembled file does not match the declared checksum"
            )

        def mark_completed(current: UploadSession) -> UploadSession | None:
            if current.is_terminal:
                return None
            now = self._clock()
            return current.model_copy(
                update={
                    "status": UploadStatus.COMPLETED,
                    "storage_key": storage_key,
                    "completed_at": now,
                    "last_activity": now,
                    "assembly_started_at": None,
                }
            )

        updated, completed = await self._update_session(upload_id, mark_completed)
        if not completed:
            if updated.status == UploadStatus.COMPLETED:
                return self._completed_result(updated)
            await self._discard(upload_id, [storage_key])
            raise self._terminal_error(updated)

        await self._discard_chunks(upload_id)
        metrics.SESSIONS_COMPLETED.inc()
        logger.info(
            "Upload completed",
            extra={"upload_id": upload_id, "storage_key": storage_key},
        )
        return self._completed_result(updated)

    @metrics.track_errors
    async def cancel_upload(self, upload_id: str) -> None:
        session = await self._get_session(upload_id)
        if session.is_terminal:
            logger.debug(
                "Cancel on terminal session ignored",
                extra={"upload_id": upload_id, "status": session.status.value},
            )
            return

        def mark_cancelled(current: UploadSession) -> UploadSession | None:
            if current.is_terminal:
                return None
            return current.model_copy(
                update={
                    "status": UploadStatus.CANCELLED,
                    "last_activity": self._clock(),
                    "assembly_started_at": None,
                }
            )

        _, cancelled = await self._update_session(upload_id, mark_cancelled)
        if not cancelled:
            return
        await self._discard_chunks(upload_id)
        metrics.SESSIONS_CANCELLED.inc()
        logger.info("Upload cancelled", extra={"upload_id": upload_id})

    @metrics.track_errors
    async def get_upload_session(self, upload_id: str) -> UploadSession:
        return await self._get_session(upload_id)

    @metrics.track_errors
    async def get_upload_progress(self, upload_id: str) -> UploadProgress:
        session = await self._get_session(upload_id)
        uploaded = len(session.uploaded_chunks)
        return UploadProgress(
            upload_id=upload_id,
            uploaded_chunks=uploaded,
            total_chunks=session.total_chunks,
            percentage=round(uploaded / session.total_chunks * 100),
            status=session.status,
            expires_at=session.expires_at,
        )

    @metrics.track_errors
    async def get_missing_chunks(self, upload_id: str) -> list[int]:
        session = await self._get_session(upload_id)
        return session.missing_chunks()

    async def sweep_sessions(self) -> SweepResult:
        """Expire idle sessions and purge terminal ones past retention."""
        result = SweepResult()
        now = self._clock()
        async for session in self.store.list_sessions():
            if not session.is_terminal:
                if session.is_expired(now) and not session.is_assembling(
                    now, self._assembly_timeout
                ):
                    if await self._expire_session(session.upload_id):
                        await self._discard_chunks(session.upload_id)
                        result.expired += 1
            elif now - session.last_activity > self._retention:
                if session.status == UploadStatus.EXPIRED:
                    await self._discard_chunks(session.upload_id)
                if await self.store.delete(session.upload_id):
                    result.purged += 1
        if result.expired or result.purged:
            logger.info(
                "Swept upload sessions",
                extra={"expired": result.expired, "purged": result.purged},
            )
        return result

    def _default_chunk_size(self, file_size: int) -> int:
        if self.config.adaptive_chunk_size:
            return calculate_optimal_chunk_size(file_size)
        return self.config.default_chunk_size

    async def _get_session(self, upload_id: str) -> UploadSession:
        session = await self.store.get(upload_id)
        if session is None:
            raise UploadNotFoundError(upload_id, "Upload session not found")
        return session

    async def _update_session(
        self, upload_id: str, mutate: SessionMutation
    ) -> tuple[UploadSession, bool]:
        """Apply ``mutate`` to the latest session state with compare-and-set.

        ``mutate`` returns the new state, or None to leave the session as is.
        Returns the resulting session and whether a write happened.
        """
        for attempt in range(self.config.max_update_attempts):
            current = await self._get_session(upload_id)
            updated = mutate(current)
            if updated is None:
                return current, False
            updated = updated.model_copy(update={"version": current.version + 1})
            if await self.store.compare_and_set(updated, expected_version=current.version):
                return updated, True
            logger.debug(
                "Session changed concurrently, retrying",
                extra={"upload_id": upload_id, "attempt": attempt},
            )
            await asyncio.sleep(0)
        raise UploadConflictError(
            upload_id, "Upload session is being modified concurrently, retry later"
        )

    async def _ensure_accepting(self, session: UploadSession) -> None:
        if session.is_terminal:
            raise self._terminal_error(session)
        if session.is_expired(self._clock()):
            await self._expire_session(session.upload_id)
            raise self._expired_error(session.upload_id)

    def _ensure_all_chunks(self, session: UploadSession) -> None:
        missing = session.missing_chunks()
        if missing:
            raise UploadIncompleteError(
                session.upload_id,
                f"{len(missing)} of {session.total_chunks} chunks have not been received",
                missing_chunks=missing,
            )

    @staticmethod
    def _validate_chunk(session: UploadSession, chunk_index: int, data: bytes) -> None:
        if not 0 <= chunk_index < session.total_chunks:
            raise InvalidArgumentError(
                session.upload_id,
                f"Chunk index {chunk_index} is outside [0, {session.total_chunks})",
            )
        expected = expected_chunk_length(
            session.file_size, session.chunk_size, chunk_index, session.total_chunks
        )
        if len(data) != expected:
            raise InvalidArgumentError(
                session.upload_id,
                f"Chunk {chunk_index} must be {expected} bytes, got {len(data)}",
            )

    @staticmethod
    def _expired_error(upload_id: str) -> UploadExpiredError:
        return UploadExpiredError(
            upload_id, "Upload session has expired", status=UploadStatus.EXPIRED
        )

    @staticmethod
    def _terminal_error(session: UploadSession) -> UploadExpiredError:
        return UploadExpiredError(
            session.upload_id,
            f"Upload session is {session.status.value}",
            status=session.status,
        )

    @staticmethod
    def _completed_result(session: UploadSession) -> CompletedUpload:
        return CompletedUpload(
            upload_id=session.upload_id,
            storage_key=session.storage_key or "",
            file_name=session.file_name,
            file_size=session.file_size,
            mime_type=session.mime_type,
            metadata=session.metadata,
        )

    async def _wait_for_completion(self, upload_id: str) -> CompletedUpload:
        deadline = time.monotonic() + self.config.completion_wait_sec
        while time.monotonic() < deadline:
            await asyncio.sleep(self.config.completion_poll_interval_sec)
            session = await self._get_session(upload_id)
            if session.status == UploadStatus.COMPLETED:
                return self._completed_result(session)
            if session.is_terminal:
                raise self._terminal_error(session)
            if session.assembly_started_at is None:
                break
        raise UploadConflictError(
            upload_id, "Another completion request is in progress, retry later"
        )

    async def _expire_session(self, upload_id: str) -> bool:
        def mark_expired(current: UploadSession) -> UploadSession | None:
            if current.is_terminal or not current.is_expired(self._clock()):
                return None
            return current.model_copy(
                update={"status": UploadStatus.EXPIRED, "assembly_started_at": None}
            )

        try:
            _, expired = await self._update_session(upload_id, mark_expired)
        except (UploadConflictError, UploadNotFoundError):
            logger.warning("Could not mark session expired", extra={"upload_id": upload_id})
            return False
        if expired:
            metrics.SESSIONS_EXPIRED.inc()
            logger.info("Upload session expired", extra={"upload_id": upload_id})
        return expired

    async def _release_assembly(self, upload_id: str) -> None:
        def release(current: UploadSession) -> UploadSession | None:
            if current.is_terminal or current.assembly_started_at is None:
                return None
            return current.model_copy(update={"assembly_started_at": None})

        try:
            await self._update_session(upload_id, release)
        except (UploadConflictError, UploadNotFoundError):
            logger.warning(
                "Could not release assembly claim", extra={"upload_id": upload_id}
            )

    async def _fail_session(self, upload_id: str) -> None:
        def mark_failed(current: UploadSession) -> UploadSession | None:
            if current.is_terminal:
                return None
            return current.model_copy(
                update={
                    "status": UploadStatus.FAILED,
                    "last_activity": self._clock(),
                    "assembly_started_at": None,
                }
            )

        logger.error("Upload failed integrity check", extra={"upload_id": upload_id})
        try:
            await self._update_session(upload_id, mark_failed)
        except (UploadConflictError, UploadNotFoundError):
            logger.warning(
                "Could not mark session failed", extra={"upload_id": upload_id}
            )

    async def _discard_chunks(self, upload_id: str) -> None:
        """Best-effort removal of every chunk object of an upload."""
        try:
            await asyncio.to_thread(
                self.storage.delete_prefix, chunk_prefix(upload_id)
            )
        except Exception:  # pylint: disable=broad-exception-caught
            logger.warning(
                "Failed to clean up upload chunks",
                exc_info=True,
                extra={"upload_id": upload_id},
            )

    async def _discard(self, upload_id: str, keys: list[str]) -> None:
        """Best-effort removal of blob objects; failures are only logged."""
        try:
            failed = await asyncio.to_thread(self.storage.delete_many, keys)
        except Exception:  # pylint: disable=broad-exception-caught
            logger.warning(
                "Failed to clean up upload objects",
                exc_info=True,
                extra={"upload_id": upload_id},
            )
            return
        if failed:
            logger.warning(
                "Upload objects left behind",
                extra={"upload_id": upload_id, "keys": failed},
            )
