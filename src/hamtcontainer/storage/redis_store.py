"""Redis block storage.

Blocks are kept in a Redis key-value cache, keyed by the link string with
the block bytes base64-encoded as the value.
"""

import base64
import binascii
import io
from typing import Any, BinaryIO, Optional, Tuple

import redis

from hamtcontainer.constants import DEFAULT_REDIS_HOST
from hamtcontainer.errors import (
    StorageCorruptedError,
    StorageNotFoundError,
    StorageUnavailableError,
)
from hamtcontainer.link import Link
from hamtcontainer.logging_config import get_logger
from hamtcontainer.storage.base import BufferedWrite, CommitCallback, Storage

_LOGGER = get_logger(__name__)


class RedisStorage(Storage):
    """Block store on a Redis server.

    The client is created lazily on first use from ``addr`` and
    ``password``, unless one is injected.

    Attributes:
        addr: "host:port" of the Redis server
        db: Redis database number
    """

    name = "redis"

    def __init__(
        self,
        addr: str = DEFAULT_REDIS_HOST,
        password: Optional[str] = None,
        db: int = 0,
        client: Optional[Any] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.addr = addr
        self.db = db
        self._password = password
        self._timeout = timeout
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            host, _, port = self.addr.partition(":")
            self._client = redis.Redis(
                host=host or "localhost",
                port=int(port) if port else 6379,
                password=self._password or None,
                db=self.db,
                socket_timeout=self._timeout,
            )
        return self._client

    def open_read(self, link: Link) -> BinaryIO:
        try:
            result = self.client.get(str(link))
        except redis.exceptions.RedisError as e:
            _LOGGER.warning("storage_read_failed", backend=self.name, link=str(link), error=str(e))
            raise StorageUnavailableError(
                f"Redis read failed for {link}: {e}", backend=self.name, link=str(link)
            ) from e

        if result is None:
            raise StorageNotFoundError(
                f"Block not found: {link}", backend=self.name, link=str(link)
            )

        try:
            data = base64.b64decode(result, validate=True)
        except (binascii.Error, ValueError) as e:
            raise StorageCorruptedError(
                f"Block {link} is not valid base64: {e}", backend=self.name, link=str(link)
            ) from e

        return io.BytesIO(data)

    def open_write(self) -> Tuple[BinaryIO, CommitCallback]:
        return BufferedWrite(self._put).as_tuple()

    def has(self, link: Link) -> bool:
        try:
            return bool(self.client.exists(str(link)))
        except redis.exceptions.RedisError as e:
            raise StorageUnavailableError(
                f"Redis exists failed for {link}: {e}", backend=self.name, link=str(link)
            ) from e

    def __repr__(self) -> str:
        return f"RedisStorage(addr={self.addr!r}, db={self.db})"

    def _put(self, link: Link, data: bytes) -> None:
        encoded = base64.b64encode(data).decode("ascii")
        try:
            self.client.set(str(link), encoded)
        except redis.exceptions.RedisError as e:
            _LOGGER.warning("storage_write_failed", backend=self.name, link=str(link), error=str(e))
            raise StorageUnavailableError(
                f"Redis write failed for {link}: {e}", backend=self.name, link=str(link)
            ) from e
