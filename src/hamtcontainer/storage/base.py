"""Storage contract shared by every backend.

A backend persists opaque block bytes under an opaque Link. It never
computes addresses: the caller hashes the bytes and hands the Link to the
commit callback returned by ``open_write``.
"""

import io
from abc import ABC, abstractmethod
from typing import BinaryIO, Callable, Tuple

from hamtcontainer.errors import StorageNotFoundError
from hamtcontainer.link import Link

#: Callback that durably associates the written bytes with a Link.
CommitCallback = Callable[[Link], None]


class Storage(ABC):
    """Abstract block store keyed by content address.

    Subclasses implement ``open_read`` and ``open_write``. Read failures
    must distinguish an absent block (StorageNotFoundError) from a backend
    that could not answer (StorageUnavailableError).
    """

    name = "storage"

    @abstractmethod
    def open_read(self, link: Link) -> BinaryIO:
        """Open the block stored under ``link`` for reading.

        Raises:
            StorageNotFoundError: If no block exists for the link
            StorageUnavailableError: If the backend failed to answer
        """

    @abstractmethod
    def open_write(self) -> Tuple[BinaryIO, CommitCallback]:
        """Begin writing a block.

        Returns:
            A byte sink and the callback that commits the sink's contents
            under the link passed to it.
        """

    def has(self, link: Link) -> bool:
        """Check if a block exists in the store."""
        try:
            self.open_read(link).close()
        except StorageNotFoundError:
            return False
        return True

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class BufferedWrite:
    """Byte sink plus commit callback for backends that write on commit.

    The sink buffers everything in memory; ``commit`` hands the buffered
    bytes to ``persist`` together with the link.
    """

    def __init__(self, persist: Callable[[Link, bytes], None]) -> None:
        self.buffer = io.BytesIO()
        self._persist = persist

    def commit(self, link: Link) -> None:
        self._persist(link, self.buffer.getvalue())

    def as_tuple(self) -> Tuple[BinaryIO, CommitCallback]:
        return self.buffer, self.commit
