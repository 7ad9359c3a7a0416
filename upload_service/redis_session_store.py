from typing import AsyncIterator

from redis_service.redis import RedisService, RedisServiceError

from .exceptions import StorageFailureError
from .logger import logger
from .models.upload_session import UploadSession
from .session_store import UploadSessionStore

SESSION_KEY_PREFIX = "upload_session:"


class RedisUploadSessionStore(UploadSessionStore):
    """Sessions stored as JSON documents, one Redis key per upload id.

    Keys carry a TTL of ``retention_sec`` that is refreshed on every write, so
    abandoned records disappear even when no sweeper runs.
    """

    def __init__(self, redis_service: RedisService, retention_sec: int) -> None:
        self.redis_service = redis_service
        self.retention_sec = retention_sec

    @staticmethod
    def _key(upload_id: str) -> str:
        return f"{SESSION_KEY_PREFIX}{upload_id}"

    async def create(self, session: UploadSession) -> bool:
        try:
            return await self.redis_service.set(
                self._key(session.upload_id),
                session,
                ex=self.retention_sec,
                nx=True,
            )
        except RedisServiceError as exception:
            raise StorageFailureError(
                session.upload_id, "Session store unavailable"
            ) from exception

    async def get(self, upload_id: str) -> UploadSession | None:
        try:
            return await self.redis_service.get(self._key(upload_id), UploadSession)
        except RedisServiceError as exception:
            raise StorageFailureError(
                upload_id, "Session store unavailable"
            ) from exception

    async def compare_and_set(
        self, session: UploadSession, expected_version: int
    ) -> bool:
        try:
            return await self.redis_service.compare_and_set(
                self._key(session.upload_id),
                session,
                UploadSession,
                predicate=lambda current: current is not None
                and current.version == expected_version,
                ex=self.retention_sec,
            )
        except RedisServiceError as exception:
            raise StorageFailureError(
                session.upload_id, "Session store unavailable"
            ) from exception

    async def delete(self, upload_id: str) -> bool:
        try:
            return await self.redis_service.delete(self._key(upload_id))
        except RedisServiceError as exception:
            raise StorageFailureError(
                upload_id, "Session store unavailable"
            ) from exception

    async def list_sessions(self) -> AsyncIterator[UploadSession]:
        try:
            async for key in self.redis_service.scan_keys(f"{SESSION_KEY_PREFIX}*"):
                session = await self.redis_service.get(key, UploadSession)
                if session is None:
                    logger.debug("Session vanished during scan", extra={"key": key})
                    continue
                yield session
        except RedisServiceError as exception:
            raise StorageFailureError(None, "Session store unavailable") from exception

    async def is_alive(self) -> bool:
        return await self.redis_service.is_alive()
