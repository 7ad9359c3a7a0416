from datetime import datetime, timezone

import pytest
from faker import Faker
from storage_service.object_storage import ObjectStorageService, ObjectStorageServiceConfig
from upload_service.schemas import UploadManagerConfig
from upload_service.session_store import InMemoryUploadSessionStore
from upload_service.tests.fake_clock import FakeClock
from upload_service.upload_manager import UploadSessionManager

fake = Faker()


@pytest.fixture(name="clock")
def fixture_clock() -> FakeClock:
    return FakeClock(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture(name="storage")
def fixture_storage() -> ObjectStorageService:
    return ObjectStorageService(
        ObjectStorageServiceConfig(protocol="memory", root=f"test-{fake.uuid4()}")
    )


@pytest.fixture(name="store")
def fixture_store() -> InMemoryUploadSessionStore:
    return InMemoryUploadSessionStore()


@pytest.fixture(name="manager_config")
def fixture_manager_config() -> UploadManagerConfig:
    return UploadManagerConfig(
        session_ttl_sec=3600,
        completion_wait_sec=5.0,
        completion_poll_interval_sec=0.01,
    )


@pytest.fixture(name="manager")
def fixture_manager(
    store: InMemoryUploadSessionStore,
    storage: ObjectStorageService,
    manager_config: UploadManagerConfig,
    clock: FakeClock,
) -> UploadSessionManager:
    return UploadSessionManager(store, storage, manager_config, clock=clock)
