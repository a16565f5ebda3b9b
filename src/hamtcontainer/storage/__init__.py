"""Storage layer for hamtcontainer.

This module provides the block storage contract and its backends: an
in-memory map, a local directory, a Redis cache and an IPFS node.
"""

from hamtcontainer.errors import (
    StorageCorruptedError,
    StorageError,
    StorageNotFoundError,
    StorageUnavailableError,
)
from hamtcontainer.storage.base import CommitCallback, Storage
from hamtcontainer.storage.file_store import FileStorage
from hamtcontainer.storage.ipfs_store import IPFSStorage
from hamtcontainer.storage.memory import MemoryStorage
from hamtcontainer.storage.redis_store import RedisStorage

__all__ = [
    "Storage",
    "CommitCallback",
    "MemoryStorage",
    "FileStorage",
    "RedisStorage",
    "IPFSStorage",
    "StorageError",
    "StorageNotFoundError",
    "StorageUnavailableError",
    "StorageCorruptedError",
]
