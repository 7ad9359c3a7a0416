from abc import ABC, abstractmethod
from threading import Lock
from typing import AsyncIterator

from .models.upload_session import UploadSession


class UploadSessionStore(ABC):
    """Single source of truth for upload session state.

    Every mutation after creation goes through :meth:`compare_and_set`, which
    only succeeds when the stored ``version`` still equals the version the
    caller read.
    """

    @abstractmethod
    async def create(self, session: UploadSession) -> bool:
        """Persist a new session; False when the upload id is already taken."""

    @abstractmethod
    async def get(self, upload_id: str) -> UploadSession | None:
        pass

    @abstractmethod
    async def compare_and_set(
        self, session: UploadSession, expected_version: int
    ) -> bool:
        pass

    @abstractmethod
    async def delete(self, upload_id: str) -> bool:
        pass

    @abstractmethod
    def list_sessions(self) -> AsyncIterator[UploadSession]:
        pass

    @abstractmethod
    async def is_alive(self) -> bool:
        pass


class InMemoryUploadSessionStore(UploadSessionStore):
    """Process local store for development and tests.

    Sessions are copied in and out so callers never share mutable state with
    the store.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, UploadSession] = {}
        self._lock = Lock()

    async def create(self, session: UploadSession) -> bool:
        with self._lock:
            if session.upload_id in self._sessions:
                return False
            self._sessions[session.upload_id] = session.model_copy(deep=True)
            return True

    async def get(self, upload_id: str) -> UploadSession | None:
        with self._lock:
            session = self._sessions.get(upload_id)
            return session.model_copy(deep=True) if session else None

    async def compare_and_set(
        self, session: UploadSession, expected_version: int
    ) -> bool:
        with self._lock:
            current = self._sessions.get(session.upload_id)
            if current is None or current.version != expected_version:
                return False
            self._sessions[session.upload_id] = session.model_copy(deep=True)
            return True

    async def delete(self, upload_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(upload_id, None) is not None

    async def list_sessions(self) -> AsyncIterator[UploadSession]:
        with self._lock:
            snapshot = [s.model_copy(deep=True) for s in self._sessions.values()]
        for session in snapshot:
            yield session

    async def is_alive(self) -> bool:
        return True
