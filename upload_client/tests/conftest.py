from typing import Iterator

import pytest
from faker import Faker
from fastapi.testclient import TestClient
from storage_service.object_storage import ObjectStorageService, ObjectStorageServiceConfig
from upload_api.app.config import Settings
from upload_api.app.dependencies import UploadComponents
from upload_api.app.main import create_app
from upload_service.session_store import InMemoryUploadSessionStore
from upload_service.upload_manager import UploadSessionManager

fake = Faker()


@pytest.fixture(name="components")
def fixture_components() -> UploadComponents:
    storage = ObjectStorageService(
        ObjectStorageServiceConfig(protocol="memory", root=f"client-{fake.uuid4()}")
    )
    store = InMemoryUploadSessionStore()
    return UploadComponents(
        manager=UploadSessionManager(store, storage), store=store, storage=storage
    )


@pytest.fixture(name="api_client")
def fixture_api_client(components: UploadComponents) -> Iterator[TestClient]:
    app = create_app(Settings(SWEEP_INTERVAL_SEC=3600), components)
    with TestClient(app) as client:
        yield client
