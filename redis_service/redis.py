from datetime import datetime
from enum import Enum
from typing import Any, AsyncIterator, Callable, Optional, Type, TypeVar
import json
import logging
from dataclasses import dataclass
from pydantic import BaseModel, ValidationError
import redis.asyncio as redis
from redis.exceptions import RedisError, WatchError

logger = logging.getLogger("redis_service")


class CustomEncoder(json.JSONEncoder):
    """Custom JSON encoder that can handle Enum objects and datetime objects."""

    def default(self, o: Any) -> Any:
        if isinstance(o, Enum):
            return o.value
        if isinstance(o, datetime):
            return o.isoformat()
        return super().default(o)


T = TypeVar("T", bound=BaseModel)


class RedisServiceError(Exception):
    """Raised when Redis cannot be reached or a command fails."""


@dataclass
class RedisServiceConfig:
    redis_host: str
    redis_port: int
    redis_db: int = 0
    redis_password: Optional[str] = None
    key_prefix: str = ""


class RedisService:
    def __init__(self, config: RedisServiceConfig, client: redis.Redis | None = None):
        self.config = config
        self._client: redis.Redis | None = client
        if self._client is None:
            self.connect()

    def connect(self) -> None:
        self._client = redis.Redis(
            host=self.config.redis_host,
            port=self.config.redis_port,
            db=self.config.redis_db,
            password=self.config.redis_password,
            decode_responses=True,
        )
        logger.info(
            "Redis client initialized.",
            extra={
                "host": self.config.redis_host,
                "port": self.config.redis_port,
                "db": self.config.redis_db,
            },
        )

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            logger.error("Redis client not initialized.")
            raise RedisServiceError("Redis client not initialized.")
        return self._client

    def build_key(self, key: str) -> str:
        return f"{self.config.key_prefix}{key}"

    async def is_alive(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except RedisError:
            logger.exception("Redis connection error during health check.")
            return False

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            logger.info("Redis client closed.")

    def _serialize(self, value: Any) -> str:
        if isinstance(value, BaseModel):
            return value.model_dump_json()
        return json.dumps(value, cls=CustomEncoder)

    def _deserialize(self, key: str, value: Any, model: Type[T]) -> T | None:
        if value is None:
            return None
        try:
            return model.model_validate(json.loads(str(value)))
        except json.JSONDecodeError:
            logger.exception("JSON Decode error.", extra={"key": key})
            return None
        except ValidationError:
            logger.exception(
                "Validation error.", extra={"key": key, "model": model.__name__}
            )
            return None

    async def set(
        self, key: str, value: Any, ex: int | None = None, nx: bool = False
    ) -> bool:
        """Store ``value`` as JSON. With ``nx`` the write only happens when the
        key does not exist yet."""
        try:
            result = await self.client.set(
                self.build_key(key), self._serialize(value), ex=ex, nx=nx
            )
            return bool(result)
        except RedisError as exception:
            logger.exception("Error setting Redis key.", extra={"key": key})
            raise RedisServiceError from exception

    async def get(self, key: str, model: Type[T]) -> T | None:
        try:
            value = await self.client.get(self.build_key(key))
        except RedisError as exception:
            logger.exception("Error getting Redis key.", extra={"key": key})
            raise RedisServiceError from exception
        return self._deserialize(key, value, model)

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self.client.delete(self.build_key(key)))
        except RedisError as exception:
            logger.exception("Error deleting Redis key.", extra={"key": key})
            raise RedisServiceError from exception

    async def compare_and_set(
        self,
        key: str,
        value: BaseModel,
        model: Type[T],
        predicate: Callable[[T | None], bool],
        ex: int | None = None,
    ) -> bool:
        """Replace ``key`` with ``value`` only if ``predicate`` accepts the
        currently stored model and nobody writes the key in between.

        Uses WATCH/MULTI/EXEC, so a concurrent write makes this return False
        instead of silently overwriting.
        """
        full_key = self.build_key(key)
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                try:
                    await pipe.watch(full_key)
                    current = self._deserialize(key, await pipe.get(full_key), model)
                    if not predicate(current):
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    pipe.set(full_key, self._serialize(value), ex=ex)
                    await pipe.execute()
                    return True
                except WatchError:
                    logger.debug("Concurrent write detected.", extra={"key": key})
                    return False
        except RedisError as exception:
            logger.exception("Error updating Redis key.", extra={"key": key})
            raise RedisServiceError from exception

    async def scan_keys(self, pattern: str) -> AsyncIterator[str]:
        """Yield keys matching ``pattern`` with the prefix stripped."""
        prefix = self.config.key_prefix
        try:
            async for full_key in self.client.scan_iter(match=self.build_key(pattern)):
                yield full_key[len(prefix):]
        except RedisError as exception:
            logger.exception("Error listing Redis keys.", extra={"pattern": pattern})
            raise RedisServiceError from exception

