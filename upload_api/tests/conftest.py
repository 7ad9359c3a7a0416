from typing import Iterator

import pytest
from faker import Faker
from fastapi.testclient import TestClient
from storage_service.object_storage import ObjectStorageService, ObjectStorageServiceConfig
from upload_api.app.config import Settings
from upload_api.app.dependencies import UploadComponents
from upload_api.app.main import create_app
from upload_service.schemas import UploadManagerConfig
from upload_service.session_store import InMemoryUploadSessionStore
from upload_service.upload_manager import UploadSessionManager

fake = Faker()


@pytest.fixture(name="components")
def fixture_components() -> UploadComponents:
    storage = ObjectStorageService(
        ObjectStorageServiceConfig(protocol="memory", root=f"api-{fake.uuid4()}")
    )
    store = InMemoryUploadSessionStore()
    manager = UploadSessionManager(
        store,
        storage,
        UploadManagerConfig(completion_wait_sec=5.0, completion_poll_interval_sec=0.01),
    )
    return UploadComponents(manager=manager, store=store, storage=storage)


@pytest.fixture(name="client")
def fixture_client(components: UploadComponents) -> Iterator[TestClient]:
    app = create_app(Settings(SWEEP_INTERVAL_SEC=3600), components)
    with TestClient(app) as client:
        yield client
