from pydantic.dataclasses import dataclass

MIB = 1024 * 1024


@dataclass
class UploadManagerConfig:
    # pylint: disable=too-many-instance-attributes
    default_chunk_size: int = 5 * MIB
    max_chunk_size: int = 64 * MIB
    max_file_size: int = 5 * 1024 * MIB
    max_total_chunks: int = 10_000
    adaptive_chunk_size: bool = False
    session_ttl_sec: int = 3600
    session_retention_sec: int = 7 * 24 * 3600
    assembly_timeout_sec: int = 300
    completion_wait_sec: float = 30.0
    completion_poll_interval_sec: float = 0.05
    max_update_attempts: int = 10
    final_key_prefix: str = "uploads"
