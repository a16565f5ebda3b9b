"""Block encoding and the link system.

Blocks are encoded as canonical JSON (sorted keys, no whitespace, UTF-8)
so that equal content always produces equal bytes and therefore an equal
Link. The LinkSystem moves encoded blocks in and out of a Storage.
"""

import json
from typing import Any, Dict

from hamtcontainer.errors import MalformedNodeError, StorageCorruptedError
from hamtcontainer.link import Link
from hamtcontainer.storage.base import Storage


def encode_block(block: Dict[str, Any]) -> bytes:
    """Serialize a block into its canonical byte form."""
    canonical_json = json.dumps(
        block,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )
    return canonical_json.encode("utf-8")


def decode_block(data: bytes) -> Dict[str, Any]:
    """Parse block bytes.

    Raises:
        MalformedNodeError: If the bytes are not a JSON object
    """
    try:
        block = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MalformedNodeError(f"Block is not valid JSON: {e}") from e

    if not isinstance(block, dict):
        raise MalformedNodeError(f"Block must be a map, got {type(block).__name__}")

    return block


class LinkSystem:
    """Stores and loads blocks through a Storage backend.

    Attributes:
        storage: Backend the blocks are persisted in
    """

    def __init__(self, storage: Storage) -> None:
        self.storage = storage

    def store(self, block: Dict[str, Any]) -> Link:
        """Encode, hash and persist a block.

        Returns:
            Link of the block's bytes
        """
        data = encode_block(block)
        link = Link.from_bytes(data)
        sink, commit = self.storage.open_write()
        sink.write(data)
        commit(link)
        return link

    def load(self, link: Link) -> Dict[str, Any]:
        """Read, verify and decode the block stored under ``link``.

        Raises:
            StorageNotFoundError: If the backend holds no such block
            StorageUnavailableError: If the backend failed to answer
            StorageCorruptedError: If the bytes don't hash to ``link``
            MalformedNodeError: If the bytes are not a block
        """
        stream = self.storage.open_read(link)
        try:
            data = stream.read()
        finally:
            stream.close()

        actual = Link.from_bytes(data)
        if actual != link:
            raise StorageCorruptedError(
                f"Block corrupted: expected {link}, got {actual}",
                backend=self.storage.name,
                link=str(link),
            )

        return decode_block(data)
