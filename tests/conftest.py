"""Pytest configuration and shared fixtures."""

from pathlib import Path

import pytest

from hamtcontainer.core import HamtBuilder, HamtContainer
from hamtcontainer.storage import FileStorage, MemoryStorage


@pytest.fixture
def memory_storage() -> MemoryStorage:
    """Create an empty in-memory storage."""
    return MemoryStorage()


@pytest.fixture
def file_storage(tmp_path: Path) -> FileStorage:
    """Create a file storage in a temporary directory."""
    return FileStorage(tmp_path / ".hamt")


@pytest.fixture
def root(memory_storage: MemoryStorage) -> HamtContainer:
    """Create an uncommitted container named 'root'."""
    return HamtBuilder().identity(b"root").storage(memory_storage).build()
