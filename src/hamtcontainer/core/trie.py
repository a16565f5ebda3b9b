"""Hash array mapped trie used as the committed form of a container.

Keys are hashed with SHA-256. Each level of the trie consumes
``bit_width`` bits of the digest (most significant first) to pick one of
``2 ** bit_width`` slots. A slot holding at most ``bucket_size`` entries
keeps them inline in a bucket sorted by key; a fuller slot becomes a
child node persisted as its own block and referenced by link.

Root block layout::

    {"bitWidth": 3, "bucketSize": 64, "hashAlg": "sha256", "v": 1,
     "hamt": {"map": <bitmap>, "data": [<bucket> | <link>, ...]}}

where a bucket is a list of ``[key, value]`` pairs. The layout is a pure
function of the final entry set, so the root link does not depend on the
order entries were assigned in.

Usage::

    builder = begin_structural_build(link_system)
    assembler = builder.begin_map(0)
    assembler.assign_key("666f6f")
    assembler.assign_text("bar")
    assembler.finish()
    node = finalize_trie(builder)
"""

import hashlib
from typing import Any, Dict, Iterator, List, Optional, Tuple

from hamtcontainer.constants import (
    DEFAULT_BIT_WIDTH,
    DEFAULT_BUCKET_SIZE,
    FORMAT_VERSION,
    HASH_ALGORITHM,
    HASH_BITS,
)
from hamtcontainer.core.codec import LinkSystem
from hamtcontainer.core.values import decode_value, encode_bytes, encode_link, encode_text
from hamtcontainer.errors import InvalidAssemblyError, MalformedNodeError
from hamtcontainer.link import Link

_Entry = Tuple[int, str, Any]
_MISSING = object()


def _hash_key(key: str) -> int:
    return int.from_bytes(hashlib.sha256(key.encode("utf-8")).digest(), "big")


def _slot(hash_value: int, depth: int, bit_width: int) -> int:
    shift = HASH_BITS - (depth + 1) * bit_width
    if shift < 0:
        raise InvalidAssemblyError(f"Hash bits exhausted at depth {depth}")
    return (hash_value >> shift) & ((1 << bit_width) - 1)


def _position(bitmap: int, index: int) -> int:
    return bin(bitmap & ((1 << index) - 1)).count("1")


class MapAssembler:
    """Collects key/value assignments for one trie.

    Keys and values are assigned alternately: ``assign_key`` followed by
    exactly one of ``assign_text``, ``assign_bytes`` or ``assign_link``.
    A repeated key replaces the earlier value.
    """

    def __init__(self, size_hint: int = 0) -> None:
        self.size_hint = size_hint
        self._entries: Dict[str, Any] = {}
        self._pending_key: Optional[str] = None
        self._finished = False

    def assign_key(self, key: str) -> None:
        self._check_open()
        if self._pending_key is not None:
            raise InvalidAssemblyError(
                f"Key {self._pending_key!r} was assigned without a value"
            )
        if not isinstance(key, str):
            raise InvalidAssemblyError(f"Trie keys must be strings, got {type(key).__name__}")
        self._pending_key = key

    def assign_text(self, value: str) -> None:
        self._assign_value(encode_text(value))

    def assign_bytes(self, value: bytes) -> None:
        self._assign_value(encode_bytes(value))

    def assign_link(self, value: Link) -> None:
        self._assign_value(encode_link(value))

    def finish(self) -> None:
        self._check_open()
        if self._pending_key is not None:
            raise InvalidAssemblyError(
                f"Key {self._pending_key!r} was assigned without a value"
            )
        self._finished = True

    @property
    def finished(self) -> bool:
        return self._finished

    def entries(self) -> Dict[str, Any]:
        return dict(self._entries)

    def _assign_value(self, raw: Any) -> None:
        self._check_open()
        if self._pending_key is None:
            raise InvalidAssemblyError("Value assigned before its key")
        self._entries[self._pending_key] = raw
        self._pending_key = None

    def _check_open(self) -> None:
        if self._finished:
            raise InvalidAssemblyError("Map assembly already finished")


class TrieBuilder:
    """Handle for one structural build targeting a link system."""

    def __init__(
        self,
        link_system: LinkSystem,
        bit_width: int = DEFAULT_BIT_WIDTH,
        bucket_size: int = DEFAULT_BUCKET_SIZE,
    ) -> None:
        if bit_width < 1 or bit_width > 8:
            raise ValueError(f"bit_width must be between 1 and 8, got {bit_width}")
        if bucket_size < 1:
            raise ValueError(f"bucket_size must be positive, got {bucket_size}")
        self.link_system = link_system
        self.bit_width = bit_width
        self.bucket_size = bucket_size
        self.assembler: Optional[MapAssembler] = None

    def begin_map(self, size_hint: int = 0) -> MapAssembler:
        if self.assembler is not None:
            raise InvalidAssemblyError("Map assembly already started for this build")
        self.assembler = MapAssembler(size_hint)
        return self.assembler

    def build(self) -> "HamtNode":
        """Lay out the assembled entries, persisting child nodes.

        The root block itself is not stored; see ``LinkSystem.store``.
        """
        if self.assembler is None or not self.assembler.finished:
            raise InvalidAssemblyError("Map assembly must be finished before building")

        entries = [
            (_hash_key(key), key, value) for key, value in self.assembler.entries().items()
        ]
        root = {
            "bitWidth": self.bit_width,
            "bucketSize": self.bucket_size,
            "hashAlg": HASH_ALGORITHM,
            "v": FORMAT_VERSION,
            "hamt": self._build_node(entries, depth=0),
        }
        return HamtNode(self.link_system, root)

    def _build_node(self, entries: List[_Entry], depth: int) -> Dict[str, Any]:
        slots: Dict[int, List[_Entry]] = {}
        for entry in entries:
            slots.setdefault(_slot(entry[0], depth, self.bit_width), []).append(entry)

        bitmap = 0
        data: List[Any] = []
        for index in sorted(slots):
            bitmap |= 1 << index
            group = slots[index]
            if len(group) <= self.bucket_size:
                data.append([[key, value] for _, key, value in sorted(group, key=lambda e: e[1])])
            else:
                child_link = self.link_system.store(self._build_node(group, depth + 1))
                data.append(encode_link(child_link))

        return {"map": bitmap, "data": data}


def begin_structural_build(
    link_system: LinkSystem,
    bit_width: int = DEFAULT_BIT_WIDTH,
    bucket_size: int = DEFAULT_BUCKET_SIZE,
) -> TrieBuilder:
    """Start a new trie build whose blocks go to ``link_system``."""
    return TrieBuilder(link_system, bit_width=bit_width, bucket_size=bucket_size)


def finalize_trie(builder: TrieBuilder) -> "HamtNode":
    """Turn a finished build into an immutable node."""
    return builder.build()


class HamtNode:
    """Immutable view over a trie root block.

    Child nodes are loaded from the link system as lookups and iteration
    reach them.
    """

    def __init__(self, link_system: LinkSystem, root: Dict[str, Any]) -> None:
        self.link_system = link_system
        self._root = root
        self.bit_width, self.bucket_size = _validate_root(root)
        self._length: Optional[int] = None

    @classmethod
    def load(cls, link_system: LinkSystem, link: Link) -> "HamtNode":
        return cls(link_system, link_system.load(link))

    def representation(self) -> Dict[str, Any]:
        """The root block, ready to be stored."""
        return self._root

    def lookup(self, key: str, default: Any = _MISSING) -> Any:
        """Return the raw value stored under ``key``.

        Raises:
            KeyError: If the key is absent and no default was given
        """
        hash_value = _hash_key(key)
        node = self._root["hamt"]
        depth = 0
        while True:
            index = _slot(hash_value, depth, self.bit_width)
            bitmap = node["map"]
            if not bitmap & (1 << index):
                break
            element = node["data"][_position(bitmap, index)]
            if isinstance(element, list):
                for entry_key, value in element:
                    if entry_key == key:
                        return value
                break
            node = self._load_child(element)
            depth += 1

        if default is _MISSING:
            raise KeyError(key)
        return default

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        absent = object()
        return self.lookup(key, absent) is not absent

    def __iter__(self) -> Iterator[Tuple[str, Any]]:
        """Yield ``(key, raw value)`` in slot order, then key order."""
        return self._iter_node(self._root["hamt"])

    def __len__(self) -> int:
        if self._length is None:
            self._length = sum(1 for _ in self)
        return self._length

    def _iter_node(self, node: Dict[str, Any]) -> Iterator[Tuple[str, Any]]:
        for element in node["data"]:
            if isinstance(element, list):
                for entry_key, value in element:
                    yield entry_key, value
            else:
                yield from self._iter_node(self._load_child(element))

    def _load_child(self, element: Any) -> Dict[str, Any]:
        link = decode_value(element)
        if not isinstance(link, Link):
            raise MalformedNodeError(f"Trie element is neither bucket nor link: {element!r}")
        child = self.link_system.load(link)
        _validate_node(child)
        return child


def _validate_root(root: Dict[str, Any]) -> Tuple[int, int]:
    try:
        bit_width = root["bitWidth"]
        bucket_size = root["bucketSize"]
        hash_alg = root["hashAlg"]
        version = root["v"]
        node = root["hamt"]
    except (KeyError, TypeError) as e:
        raise MalformedNodeError(f"Not a trie root block: missing {e}") from e

    if hash_alg != HASH_ALGORITHM:
        raise MalformedNodeError(f"Unsupported hash algorithm: {hash_alg}")
    if version != FORMAT_VERSION:
        raise MalformedNodeError(f"Unsupported trie format version: {version}")
    if not isinstance(bit_width, int) or not isinstance(bucket_size, int):
        raise MalformedNodeError("Trie bitWidth and bucketSize must be integers")

    _validate_node(node)
    return bit_width, bucket_size


def _validate_node(node: Any) -> None:
    if (
        not isinstance(node, dict)
        or not isinstance(node.get("map"), int)
        or not isinstance(node.get("data"), list)
    ):
        raise MalformedNodeError("Trie node must have an integer map and a data list")
    if bin(node["map"]).count("1") != len(node["data"]):
        raise MalformedNodeError("Trie node bitmap does not match its data")
