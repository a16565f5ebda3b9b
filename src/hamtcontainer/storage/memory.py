"""In-memory block storage."""

import io
import threading
from typing import BinaryIO, Dict, Tuple

from hamtcontainer.errors import StorageNotFoundError
from hamtcontainer.link import Link
from hamtcontainer.storage.base import BufferedWrite, CommitCallback, Storage


class MemoryStorage(Storage):
    """Block store backed by a dict, safe to share between threads.

    Never fails after a successful write. Blocks live as long as the
    instance does.

    Example:
        >>> store = MemoryStorage()
        >>> sink, commit = store.open_write()
        >>> sink.write(b"data")
        4
        >>> commit(Link.from_bytes(b"data"))
        >>> store.open_read(Link.from_bytes(b"data")).read()
        b'data'
    """

    name = "memory"

    def __init__(self) -> None:
        self._blocks: Dict[Link, bytes] = {}
        self._lock = threading.Lock()

    def open_read(self, link: Link) -> BinaryIO:
        with self._lock:
            data = self._blocks.get(link)
        if data is None:
            raise StorageNotFoundError(
                f"Block not found: {link}", backend=self.name, link=str(link)
            )
        return io.BytesIO(data)

    def open_write(self) -> Tuple[BinaryIO, CommitCallback]:
        return BufferedWrite(self._put).as_tuple()

    def has(self, link: Link) -> bool:
        with self._lock:
            return link in self._blocks

    def __len__(self) -> int:
        with self._lock:
            return len(self._blocks)

    def _put(self, link: Link, data: bytes) -> None:
        # Same address always carries the same bytes, so a rewrite is a no-op.
        with self._lock:
            self._blocks.setdefault(link, data)
