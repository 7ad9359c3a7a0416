# pylint: disable=protected-access
import json
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator
from unittest.mock import AsyncMock, MagicMock

import pytest
from faker import Faker
from pydantic import BaseModel
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import WatchError
from redis_service.redis import (
    CustomEncoder,
    RedisService,
    RedisServiceConfig,
    RedisServiceError,
)

fake = Faker()


class Color(Enum):
    RED = "red"


class Item(BaseModel):
    name: str
    version: int = 0


def build_pipeline(stored: str | None) -> MagicMock:
    pipe = MagicMock()
    pipe.__aenter__.return_value = pipe
    pipe.__aexit__.return_value = False
    pipe.watch = AsyncMock()
    pipe.get = AsyncMock(return_value=stored)
    pipe.unwatch = AsyncMock()
    pipe.execute = AsyncMock(return_value=[True])
    return pipe


@pytest.fixture(name="client")
def fixture_client() -> MagicMock:
    return MagicMock()


@pytest.fixture(name="service")
def fixture_service(client: MagicMock) -> RedisService:
    config = RedisServiceConfig(redis_host="localhost", redis_port=6379, key_prefix="test:")
    return RedisService(config, client=client)


def test_custom_encoder_handles_enum_and_datetime() -> None:
    moment = datetime(2026, 1, 1, tzinfo=timezone.utc)

    encoded = json.dumps({"color": Color.RED, "at": moment}, cls=CustomEncoder)

    assert json.loads(encoded) == {
        "color": "red",
        "at": moment.isoformat(),
    }


def test_client_raises_when_not_initialized(service: RedisService) -> None:
    service._client = None

    with pytest.raises(RedisServiceError):
        _ = service.client


@pytest.mark.asyncio
async def test_is_alive(service: RedisService, client: MagicMock) -> None:
    client.ping = AsyncMock(return_value=True)

    assert await service.is_alive() is True


@pytest.mark.asyncio
async def test_is_alive_connection_error(service: RedisService, client: MagicMock) -> None:
    client.ping = AsyncMock(side_effect=RedisConnectionError("down"))

    assert await service.is_alive() is False


@pytest.mark.asyncio
async def test_set_serializes_model_with_prefix(
    service: RedisService, client: MagicMock
) -> None:
    client.set = AsyncMock(return_value=True)
    item = Item(name=fake.word())

    result = await service.set("item", item, ex=60, nx=True)

    assert result is True
    client.set.assert_awaited_once_with(
        "test:item", item.model_dump_json(), ex=60, nx=True
    )


@pytest.mark.asyncio
async def test_set_nx_on_existing_key(service: RedisService, client: MagicMock) -> None:
    client.set = AsyncMock(return_value=None)

    assert await service.set("item", Item(name="a"), nx=True) is False


@pytest.mark.asyncio
async def test_set_wraps_redis_errors(service: RedisService, client: MagicMock) -> None:
    client.set = AsyncMock(side_effect=RedisConnectionError("down"))

    with pytest.raises(RedisServiceError):
        await service.set("item", Item(name="a"))


@pytest.mark.asyncio
async def test_get_returns_model(service: RedisService, client: MagicMock) -> None:
    client.get = AsyncMock(return_value='{"name": "a", "version": 2}')

    item = await service.get("item", Item)

    assert item == Item(name="a", version=2)
    client.get.assert_awaited_once_with("test:item")


@pytest.mark.parametrize("stored", [None, "not json", '{"version": 1}'])
@pytest.mark.asyncio
async def test_get_returns_none_for_missing_or_invalid(
    service: RedisService, client: MagicMock, stored: str | None
) -> None:
    client.get = AsyncMock(return_value=stored)

    assert await service.get("item", Item) is None


@pytest.mark.asyncio
async def test_get_wraps_redis_errors(service: RedisService, client: MagicMock) -> None:
    client.get = AsyncMock(side_effect=RedisConnectionError("down"))

    with pytest.raises(RedisServiceError):
        await service.get("item", Item)


@pytest.mark.asyncio
async def test_delete(service: RedisService, client: MagicMock) -> None:
    client.delete = AsyncMock(return_value=1)

    assert await service.delete("item") is True
    client.delete.assert_awaited_once_with("test:item")


@pytest.mark.asyncio
async def test_compare_and_set_writes_when_predicate_holds(
    service: RedisService, client: MagicMock
) -> None:
    pipe = build_pipeline('{"name": "a", "version": 1}')
    client.pipeline.return_value = pipe
    updated = Item(name="a", version=2)

    result = await service.compare_and_set(
        "item", updated, Item, lambda current: current is not None and current.version == 1, ex=30
    )

    assert result is True
    pipe.watch.assert_awaited_once_with("test:item")
    pipe.multi.assert_called_once()
    pipe.set.assert_called_once_with("test:item", updated.model_dump_json(), ex=30)
    pipe.execute.assert_awaited_once()


@pytest.mark.asyncio
async def test_compare_and_set_rejected_by_predicate(
    service: RedisService, client: MagicMock
) -> None:
    pipe = build_pipeline('{"name": "a", "version": 3}')
    client.pipeline.return_value = pipe

    result = await service.compare_and_set(
        "item", Item(name="a", version=2), Item, lambda current: current.version == 1
    )

    assert result is False
    pipe.unwatch.assert_awaited_once()
    pipe.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_compare_and_set_concurrent_write(
    service: RedisService, client: MagicMock
) -> None:
    pipe = build_pipeline('{"name": "a", "version": 1}')
    pipe.execute = AsyncMock(side_effect=WatchError("changed"))
    client.pipeline.return_value = pipe

    result = await service.compare_and_set(
        "item", Item(name="a", version=2), Item, lambda current: True
    )

    assert result is False


@pytest.mark.asyncio
async def test_compare_and_set_wraps_redis_errors(
    service: RedisService, client: MagicMock
) -> None:
    pipe = build_pipeline(None)
    pipe.watch = AsyncMock(side_effect=RedisConnectionError("down"))
    client.pipeline.return_value = pipe

    with pytest.raises(RedisServiceError):
        await service.compare_and_set("item", Item(name="a"), Item, lambda current: True)


@pytest.mark.asyncio
async def test_scan_keys_strips_prefix(service: RedisService, client: MagicMock) -> None:
    async def scan_iter(match: str) -> AsyncIterator[str]:
        assert match == "test:item:*"
        for key in ("test:item:1", "test:item:2"):
            yield key

    client.scan_iter = scan_iter

    keys = [key async for key in service.scan_keys("item:*")]

    assert keys == ["item:1", "item:2"]
