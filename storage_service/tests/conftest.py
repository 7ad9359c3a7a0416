import pytest
from faker import Faker
from storage_service.object_storage import ObjectStorageServiceConfig, ObjectStorageService

fake = Faker()


@pytest.fixture
def object_storage_config() -> ObjectStorageServiceConfig:
    return ObjectStorageServiceConfig(protocol="memory", root=f"test-{fake.uuid4()}")


@pytest.fixture
def s3_storage_config() -> ObjectStorageServiceConfig:
    return ObjectStorageServiceConfig(
        protocol="s3",
        root=fake.user_name(),
        s3_access_key=fake.password(),
        s3_endpoint_url=fake.url(),
        s3_secret_key=fake.password(),
    )


@pytest.fixture(name="object_storage_service")
def fixture_object_storage_service(
    object_storage_config: ObjectStorageServiceConfig,
) -> ObjectStorageService:
    return ObjectStorageService(object_storage_config)
