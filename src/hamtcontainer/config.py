"""Runtime configuration for hamtcontainer.

This module owns all environment variable parsing and validation.
The CLI consumes a typed config object instead of raw env reads.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from pathlib import Path

from hamtcontainer.constants import (
    DEFAULT_IPFS_URL,
    DEFAULT_REDIS_HOST,
    DEFAULT_TIMEOUT_SECONDS,
    STORE_DIR,
)
from hamtcontainer.errors import ConfigError
from hamtcontainer.storage import FileStorage, IPFSStorage, MemoryStorage, RedisStorage, Storage

STORAGE_KINDS = ("file", "memory", "redis", "ipfs")


@dataclass(frozen=True)
class HamtConfig:
    """Validated runtime configuration.

    Attributes:
        storage_kind: Backend to open, one of STORAGE_KINDS.
        store_dir: Directory for the file backend.
        ipfs_url: RPC API root of the IPFS node.
        redis_host: "host:port" of the Redis server.
        redis_password: Optional Redis password.
        timeout: Network timeout in seconds for remote backends.
    """

    storage_kind: str = "file"
    store_dir: Path = Path(STORE_DIR)
    ipfs_url: str = DEFAULT_IPFS_URL
    redis_host: str = DEFAULT_REDIS_HOST
    redis_password: str | None = None
    timeout: float = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "HamtConfig":
        """Build config from process environment variables.

        Raises:
            ConfigError: If environment values are invalid.
        """
        return cls(
            storage_kind=_parse_storage_kind(os.getenv("HAMT_STORAGE", "file")),
            store_dir=Path(os.getenv("HAMT_STORE_DIR", STORE_DIR)).expanduser(),
            ipfs_url=os.getenv("IPFS_URL", DEFAULT_IPFS_URL),
            redis_host=os.getenv("REDIS_HOST", DEFAULT_REDIS_HOST),
            redis_password=os.getenv("REDIS_PASSWORD") or None,
            timeout=_parse_timeout(os.getenv("HAMT_TIMEOUT", str(DEFAULT_TIMEOUT_SECONDS))),
        )

    def with_overrides(
        self,
        storage_kind: str | None = None,
        store_dir: Path | None = None,
        host: str | None = None,
    ) -> "HamtConfig":
        """Apply command-line overrides.

        ``host`` is the IPFS URL or the Redis address, depending on the
        selected backend.
        """
        config = self
        if storage_kind is not None:
            config = replace(config, storage_kind=_parse_storage_kind(storage_kind))
        if store_dir is not None:
            config = replace(config, store_dir=store_dir)
        if host:
            if config.storage_kind == "redis":
                config = replace(config, redis_host=host)
            else:
                config = replace(config, ipfs_url=host)
        return config

    def open_storage(self) -> Storage:
        """Construct the configured storage backend."""
        if self.storage_kind == "memory":
            return MemoryStorage()
        if self.storage_kind == "redis":
            return RedisStorage(self.redis_host, password=self.redis_password, timeout=self.timeout)
        if self.storage_kind == "ipfs":
            return IPFSStorage(self.ipfs_url, timeout=self.timeout)
        return FileStorage(self.store_dir)


def _parse_storage_kind(raw_value: str) -> str:
    value = raw_value.strip().lower()
    if value not in STORAGE_KINDS:
        raise ConfigError(
            f"Unsupported storage {raw_value!r}, expected one of {', '.join(STORAGE_KINDS)}",
            storage=raw_value,
        )
    return value


def _parse_timeout(raw_value: str) -> float:
    """Parse the timeout environment value.

    Raises:
        ConfigError: If the value is not a positive number.
    """
    try:
        timeout = float(raw_value)
    except ValueError as error:
        raise ConfigError(f"HAMT_TIMEOUT must be a number, got {raw_value!r}") from error
    if timeout <= 0:
        raise ConfigError(f"HAMT_TIMEOUT must be positive, got {timeout}")
    return timeout
