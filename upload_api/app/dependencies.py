from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request
from redis_service.redis import RedisService, RedisServiceConfig
from storage_service.object_storage import ObjectStorageService, ObjectStorageServiceConfig
from upload_service.redis_session_store import RedisUploadSessionStore
from upload_service.schemas import UploadManagerConfig
from upload_service.session_store import InMemoryUploadSessionStore, UploadSessionStore
from upload_service.upload_manager import UploadSessionManager

from .config import Settings


@dataclass
class UploadComponents:
    manager: UploadSessionManager
    store: UploadSessionStore
    storage: ObjectStorageService
    redis_service: RedisService | None = None


def build_components(settings: Settings) -> UploadComponents:
    storage = ObjectStorageService(
        ObjectStorageServiceConfig(
            protocol=settings.STORAGE_PROTOCOL,
            root=settings.STORAGE_ROOT,
            s3_endpoint_url=settings.S3_ENDPOINT_URL,
            s3_access_key=settings.S3_ACCESS_KEY,
            s3_secret_key=settings.S3_SECRET_KEY,
        )
    )
    storage.has_root(throw=True)
    redis_service = None
    store: UploadSessionStore
    if settings.SESSION_BACKEND == "redis":
        redis_service = RedisService(
            RedisServiceConfig(
                redis_host=settings.REDIS_HOST,
                redis_port=settings.REDIS_PORT,
                redis_db=settings.REDIS_DB,
                redis_password=settings.REDIS_PASSWORD,
                key_prefix=settings.REDIS_KEY_PREFIX,
            )
        )
        store = RedisUploadSessionStore(
            redis_service, retention_sec=settings.SESSION_RETENTION_SEC
        )
    else:
        store = InMemoryUploadSessionStore()

    manager = UploadSessionManager(
        store,
        storage,
        UploadManagerConfig(
            default_chunk_size=settings.DEFAULT_CHUNK_SIZE,
            max_chunk_size=settings.MAX_CHUNK_SIZE,
            max_file_size=settings.MAX_FILE_SIZE,
            max_total_chunks=settings.MAX_TOTAL_CHUNKS,
            adaptive_chunk_size=settings.ADAPTIVE_CHUNK_SIZE,
            session_ttl_sec=settings.SESSION_TTL_SEC,
            session_retention_sec=settings.SESSION_RETENTION_SEC,
            final_key_prefix=settings.FINAL_KEY_PREFIX,
        ),
    )
    return UploadComponents(
        manager=manager, store=store, storage=storage, redis_service=redis_service
    )


def get_components(request: Request) -> UploadComponents:
    return request.app.state.components


def get_upload_manager(
    components: Annotated[UploadComponents, Depends(get_components)],
) -> UploadSessionManager:
    return components.manager


ComponentsDep = Annotated[UploadComponents, Depends(get_components)]
ManagerDep = Annotated[UploadSessionManager, Depends(get_upload_manager)]
