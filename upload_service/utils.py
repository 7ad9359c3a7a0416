import secrets
from datetime import datetime, timezone
from pathlib import PurePosixPath

from .schemas import MIB


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def generate_upload_id() -> str:
    return secrets.token_hex(16)


def calculate_total_chunks(file_size: int, chunk_size: int) -> int:
    return -(-file_size // chunk_size)


def calculate_optimal_chunk_size(file_size: int) -> int:
    """Pick a chunk size that keeps request bodies under 4 MiB."""
    if file_size < 10 * MIB:
        return MIB
    if file_size < 50 * MIB:
        return 2 * MIB
    return 4 * MIB


def expected_chunk_length(
    file_size: int, chunk_size: int, chunk_index: int, total_chunks: int
) -> int:
    if chunk_index == total_chunks - 1:
        return file_size - chunk_size * (total_chunks - 1)
    return chunk_size


def chunk_prefix(upload_id: str) -> str:
    return f"{upload_id}/chunks"


def chunk_key(upload_id: str, chunk_index: int) -> str:
    return f"{chunk_prefix(upload_id)}/{chunk_index}"


def final_object_key(prefix: str, upload_id: str, file_name: str) -> str:
    name = PurePosixPath(file_name.replace("\\", "/")).name
    if name in ("", ".", ".."):
        name = "file"
    return f"{prefix.strip('/')}/{upload_id}/{name}"
