import functools
from typing import Any, Awaitable, Callable, TypeVar

import prometheus_client

from .exceptions import UploadError

SESSIONS_INITIALIZED = prometheus_client.Counter(
    "upload_sessions_initialized_total", "Upload sessions created."
)
CHUNKS_RECEIVED = prometheus_client.Counter(
    "upload_chunks_received_total", "Chunks accepted and recorded."
)
CHUNK_BYTES_RECEIVED = prometheus_client.Counter(
    "upload_chunk_bytes_received_total", "Bytes of accepted chunks."
)
SESSIONS_COMPLETED = prometheus_client.Counter(
    "upload_sessions_completed_total", "Upload sessions assembled and completed."
)
SESSIONS_CANCELLED = prometheus_client.Counter(
    "upload_sessions_cancelled_total", "Upload sessions cancelled by the caller."
)
SESSIONS_EXPIRED = prometheus_client.Counter(
    "upload_sessions_expired_total", "Upload sessions that timed out."
)
UPLOAD_ERRORS = prometheus_client.Counter(
    "upload_errors_total", "Failed upload operations.", ["kind"]
)

R = TypeVar("R")


def track_errors(
    func: Callable[..., Awaitable[R]],
) -> Callable[..., Awaitable[R]]:
    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> R:
        try:
            return await func(*args, **kwargs)
        except UploadError as error:
            UPLOAD_ERRORS.labels(kind=error.kind).inc()
            raise

    return wrapper
