"""On-disk block storage.

Blocks are stored under a root directory using Git-like sharding, with
atomic writes, deduplication and optional gzip compression for large
blocks.
"""

import gzip
import io
import os
import tempfile
from pathlib import Path
from typing import BinaryIO, Optional, Tuple

from hamtcontainer.constants import GZIP_THRESHOLD
from hamtcontainer.errors import StorageNotFoundError, StorageUnavailableError
from hamtcontainer.link import Link
from hamtcontainer.logging_config import get_logger
from hamtcontainer.storage.base import BufferedWrite, CommitCallback, Storage

_LOGGER = get_logger(__name__)


class FileStorage(Storage):
    """Content-addressed block storage in a local directory.

    Storage layout:
        <root>/<digest[:2]>/<digest[2:]>      # Raw block
        <root>/<digest[:2]>/<digest[2:]>.gz   # Compressed block

    Attributes:
        root: Directory holding the shards

    Example:
        >>> store = FileStorage(Path(".hamt"))
        >>> sink, commit = store.open_write()
        >>> sink.write(b"block")
        >>> commit(Link.from_bytes(b"block"))
    """

    name = "file"

    def __init__(
        self,
        root: Path,
        create: bool = True,
        compress_threshold: Optional[int] = GZIP_THRESHOLD,
    ) -> None:
        """Initialize the file store.

        Args:
            root: Directory that holds the blocks
            create: Create the directory if it doesn't exist
            compress_threshold: Gzip blocks at least this large; None
                disables compression

        Raises:
            ValueError: If root doesn't exist and create is False
        """
        self.root = Path(root)
        self.compress_threshold = compress_threshold

        if not self.root.exists():
            if not create:
                raise ValueError(f"Storage directory not found: {root}")
            self.root.mkdir(parents=True, exist_ok=True)

    def open_read(self, link: Link) -> BinaryIO:
        compressed_path = self._get_block_path(link, compressed=True)
        uncompressed_path = self._get_block_path(link, compressed=False)

        try:
            if compressed_path.exists():
                data = gzip.decompress(compressed_path.read_bytes())
            elif uncompressed_path.exists():
                data = uncompressed_path.read_bytes()
            else:
                raise StorageNotFoundError(
                    f"Block not found: {link} (tried {uncompressed_path} and {compressed_path})",
                    backend=self.name,
                    link=str(link),
                )
        except OSError as e:
            _LOGGER.warning("storage_read_failed", backend=self.name, link=str(link), error=str(e))
            raise StorageUnavailableError(
                f"Failed to read block {link}: {e}", backend=self.name, link=str(link)
            ) from e

        return io.BytesIO(data)

    def open_write(self) -> Tuple[BinaryIO, CommitCallback]:
        return BufferedWrite(self._write_block).as_tuple()

    def has(self, link: Link) -> bool:
        compressed_path = self._get_block_path(link, compressed=True)
        uncompressed_path = self._get_block_path(link, compressed=False)
        return compressed_path.exists() or uncompressed_path.exists()

    def __repr__(self) -> str:
        return f"FileStorage(root={str(self.root)!r})"

    def _write_block(self, link: Link, content: bytes) -> None:
        """Persist a block atomically (tmp file + rename).

        An existing block is left untouched since its bytes are identical.

        Raises:
            StorageUnavailableError: If the write fails (permissions, disk full, etc.)
        """
        if self.has(link):
            return

        should_compress = (
            self.compress_threshold is not None and len(content) >= self.compress_threshold
        )
        data_to_write = gzip.compress(content, compresslevel=6) if should_compress else content

        block_path = self._get_block_path(link, compressed=should_compress)
        try:
            block_path.parent.mkdir(parents=True, exist_ok=True)
            tmp_fd, tmp_path = tempfile.mkstemp(
                dir=block_path.parent,
                prefix=".tmp_",
                suffix=".block",
            )
        except OSError as e:
            raise StorageUnavailableError(
                f"Failed to write block {link}: {e}", backend=self.name, link=str(link)
            ) from e

        try:
            with os.fdopen(tmp_fd, "wb") as f:
                f.write(data_to_write)
                f.flush()
                os.fsync(f.fileno())

            try:
                os.replace(tmp_path, block_path)
            except OSError:
                # Another writer created the same block first
                if block_path.exists():
                    os.unlink(tmp_path)
                    return
                raise

        except OSError as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            _LOGGER.warning("storage_write_failed", backend=self.name, link=str(link), error=str(e))
            raise StorageUnavailableError(
                f"Failed to write block {link}: {e}", backend=self.name, link=str(link)
            ) from e

    def _get_block_path(self, link: Link, compressed: bool = False) -> Path:
        """Get the filesystem path for a block: <root>/<digest[:2]>/<digest[2:]>[.gz]."""
        prefix = link.digest[:2]
        suffix = link.digest[2:]
        filename = f"{suffix}.gz" if compressed else suffix
        return self.root / prefix / filename
