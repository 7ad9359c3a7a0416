import hashlib
import logging
import posixpath
import shutil
import socket
from dataclasses import dataclass
from typing import Any, Iterable

import fsspec

from .exceptions import RequiredBucketNotFoundException

logger = logging.getLogger("object_storage_service")

COPY_BUFFER_SIZE = 1024 * 1024


@dataclass
class ObjectStorageServiceConfig:
    protocol: str = "memory"
    root: str = "uploads"
    s3_endpoint_url: str | None = None
    s3_access_key: str | None = None
    s3_secret_key: str | None = None


class ObjectStorageService:
    """Keyed byte storage on top of an fsspec filesystem.

    Keys are relative, slash separated paths resolved against the configured
    root (a bucket or bucket prefix for ``s3``, a directory otherwise).
    """

    client: Any = None

    def __init__(self, config: ObjectStorageServiceConfig) -> None:
        self.config = config
        self.root = config.root.rstrip("/")
        if config.protocol == "s3":
            self.client = fsspec.filesystem(
                "s3",
                key=config.s3_access_key,
                secret=config.s3_secret_key,
                client_kwargs={"endpoint_url": config.s3_endpoint_url},
            )
        else:
            self.client = fsspec.filesystem(config.protocol)
            self.client.makedirs(self.root, exist_ok=True)
        logger.info(
            "Initiated filesystem",
            extra={"protocol": config.protocol, "root": self.root},
        )

    def _path(self, key: str) -> str:
        return f"{self.root}/{key.lstrip('/')}"

    def _ensure_parent(self, path: str) -> None:
        # object stores have no directories, local ones need them
        if self.config.protocol == "file":
            self.client.makedirs(posixpath.dirname(path), exist_ok=True)

    def is_alive(self) -> bool:
        try:
            self.client.ls(path=self.root)
            return True
        except Exception:  # pylint: disable=broad-exception-caught
            return False

    def has_root(self, throw: bool = False) -> bool:
        try:
            self.client.ls(path=self.root)
            return True
        except Exception as exception:  # pylint: disable=broad-exception-caught
            if throw:
                logger.exception("Storage root not found", extra={"root": self.root})
                raise RequiredBucketNotFoundException from exception
            return False

    def write(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            logger.debug("Writing object", extra={"key": key, "size": len(data)})
            self._ensure_parent(path)
            with self.client.open(path=path, mode="wb") as fobj:
                fobj.write(data)
            logger.debug("Object written", extra={"key": key})
        except Exception as exception:
            logger.exception("Failed to write object", extra={"key": key})
            raise exception

    def read(self, key: str, max_tries: int = 3) -> bytes:
        path = self._path(key)
        for attempt in range(max_tries):
            try:
                logger.debug("Reading object", extra={"key": key})
                with self.client.open(path=path, mode="rb") as fobj:
                    content: bytes = fobj.read()
                logger.debug("Object read", extra={"key": key})
                return content
            except FileNotFoundError:
                logger.exception("Object not found", extra={"key": key})
                raise
            except (OSError, socket.error) as exception:
                if attempt == max_tries - 1:
                    logger.exception(
                        "Failed to read object after %d retries",
                        max_tries,
                        extra={"key": key},
                    )
                    raise exception
                logger.warning("Failed to read object, retrying...", extra={"key": key})
        raise NotImplementedError("This should never be reached")

    def exists(self, key: str) -> bool:
        return bool(self.client.exists(self._path(key)))

    def size(self, key: str) -> int:
        return int(self.client.size(self._path(key)))

    def delete(self, key: str, missing_ok: bool = True) -> None:
        try:
            self.client.rm_file(self._path(key))
            logger.debug("Object deleted", extra={"key": key})
        except FileNotFoundError:
            if not missing_ok:
                raise
        except Exception as exception:
            logger.exception("Failed to delete object", extra={"key": key})
            raise exception

    def delete_many(self, keys: Iterable[str]) -> list[str]:
        """Delete every key, returning the ones that could not be removed."""
        failed: list[str] = []
        for key in keys:
            try:
                self.delete(key)
            except Exception:  # pylint: disable=broad-exception-caught
                failed.append(key)
        if failed:
            logger.warning("Some objects were not deleted", extra={"keys": failed})
        return failed

    def delete_prefix(self, prefix: str) -> None:
        """Remove every object under ``prefix`` in one recursive call."""
        path = self._path(prefix).rstrip("/")
        try:
            self.client.rm(path, recursive=True)
            logger.debug("Objects deleted", extra={"prefix": prefix})
        except FileNotFoundError:
            logger.debug("No objects under prefix", extra={"prefix": prefix})
        except Exception as exception:
            logger.exception("Failed to delete objects", extra={"prefix": prefix})
            raise exception

    def assemble(self, ordered_keys: list[str], key: str) -> str:
        """Concatenate ``ordered_keys`` into a single object stored under ``key``.

        Parts are streamed in the given order, so the result is byte-identical
        to the original file as long as the keys are ordered by chunk index.
        A partially written destination is removed when any part fails.
        """
        path = self._path(key)
        try:
            logger.debug(
                "Assembling object", extra={"key": key, "parts": len(ordered_keys)}
            )
            self._ensure_parent(path)
            with self.client.open(path=path, mode="wb") as destination:
                for part_key in ordered_keys:
                    with self.client.open(
                        path=self._path(part_key), mode="rb"
                    ) as source:
                        shutil.copyfileobj(source, destination, COPY_BUFFER_SIZE)
            logger.debug("Object assembled", extra={"key": key})
            return key
        except Exception as exception:
            logger.exception("Failed to assemble object", extra={"key": key})
            try:
                self.client.rm_file(path)
            except Exception:  # pylint: disable=broad-exception-caught
                logger.debug("No partial object to remove", extra={"key": key})
            raise exception

    def digest(self, key: str, algorithm: str = "sha256") -> str:
        hash_obj = hashlib.new(algorithm)
        with self.client.open(path=self._path(key), mode="rb") as fobj:
            for block in iter(lambda: fobj.read(COPY_BUFFER_SIZE), b""):
                hash_obj.update(block)
        return hash_obj.hexdigest()
