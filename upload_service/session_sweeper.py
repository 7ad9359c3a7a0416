import asyncio

from .logger import logger
from .upload_manager import UploadSessionManager


class SessionSweeper:
    """Runs :meth:`UploadSessionManager.sweep_sessions` every ``interval_sec``.

    Housekeeping only: correctness of the upload protocol never depends on it.
    """

    def __init__(self, manager: UploadSessionManager, interval_sec: float) -> None:
        self.manager = manager
        self.interval_sec = interval_sec
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run())
        logger.info(
            "Started upload session sweeper.", extra={"interval": self.interval_sec}
        )

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None
            logger.info("Stopped upload session sweeper.")

    async def _run(self) -> None:
        while not await self._wait_for_stop():
            try:
                await self.manager.sweep_sessions()
            except Exception:  # pylint: disable=broad-exception-caught
                logger.exception("Upload session sweep failed.")

    async def _wait_for_stop(self) -> bool:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_sec)
            return True
        except asyncio.TimeoutError:
            return False
