"""Persistent, content-addressed key/value container.

A HamtContainer stages writes in memory and commits them into an
immutable hashed trie persisted through its Storage. Every commit is a
full rebuild: the previously committed entries are carried forward, the
staged writes are laid over them, and the resulting root block gets a
new Link. Committed state can be loaded again from that Link, and a
container can store another container, which is written as a link to the
child's own committed state.

Keys are arbitrary byte strings, stored hex-encoded. Every committed
trie carries one reserved entry holding the container identity; it is
hidden from lookups and iteration.
"""

from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from hamtcontainer.constants import DEFAULT_BIT_WIDTH, DEFAULT_BUCKET_SIZE, RESERVED_NAME_KEY
from hamtcontainer.core.codec import LinkSystem
from hamtcontainer.core.locking import ReadWriteLock
from hamtcontainer.core.trie import (
    HamtNode,
    MapAssembler,
    begin_structural_build,
    finalize_trie,
)
from hamtcontainer.core.values import (
    STORABLE_KINDS,
    DecodedValue,
    ValueKind,
    decode_value,
    kind_of,
)
from hamtcontainer.errors import (
    KindMismatchError,
    MalformedNodeError,
    NoNestedFoundError,
    NotCommittedError,
    UnsupportedKeyTypeError,
    UnsupportedValueKindError,
    ValueNotFoundError,
)
from hamtcontainer.link import Link
from hamtcontainer.logging_config import get_logger
from hamtcontainer.storage.base import Storage

_LOGGER = get_logger(__name__)

Key = Union[bytes, bytearray, str]

RESERVED_KEY_HEX = RESERVED_NAME_KEY.encode("utf-8").hex()


def encode_key(key: Key) -> str:
    """Normalize a caller key to its stored (hex) form.

    Raises:
        UnsupportedKeyTypeError: If the key is neither bytes nor str, or is
            text that does not encode as UTF-8
    """
    if isinstance(key, str):
        try:
            return key.encode("utf-8").hex()
        except UnicodeEncodeError as e:
            raise UnsupportedKeyTypeError(
                f"Text key is not valid UTF-8: {key!r}", key_type="str"
            ) from e
    if isinstance(key, (bytes, bytearray, memoryview)):
        return bytes(key).hex()
    raise UnsupportedKeyTypeError(
        f"Key type not supported: {type(key).__name__}", key_type=type(key).__name__
    )


def decode_key(stored: str) -> bytes:
    """Inverse of encode_key."""
    try:
        return bytes.fromhex(stored)
    except ValueError as e:
        raise MalformedNodeError(f"Stored key is not hexadecimal: {stored!r}") from e


class Setter:
    """Writes entries straight into an in-progress commit.

    Handed to the writer callables passed to ``HamtContainer.commit``;
    entries written here win over staged and previously committed ones.
    """

    def __init__(self, container: "HamtContainer", assembler: MapAssembler) -> None:
        self._container = container
        self._assembler = assembler

    def set(self, key: Key, value: Any) -> None:
        stored_key = self._container._stageable_key(key)
        self._container._check_value(value)
        self._assembler.assign_key(stored_key)
        self._container._assign(self._assembler, value)


Writer = Callable[[Setter], None]


class HamtContainer:
    """Key/value container committed as a hashed trie.

    Thread-safe: a reader/writer lock guards identity, staged writes, the
    committed node and its link. Operations that walk the committed node
    take the write lock, so an iteration never interleaves with a commit.
    The lock is re-entrant for its holder: ``view`` visitors and commit
    writers may call back into the same container.

    Attributes:
        auto_commit: Commit staged writes before reads

    Example:
        >>> container = HamtContainer(b"root", MemoryStorage())
        >>> container.set(b"foo", "bar")
        >>> link = container.commit()
        >>> container.get_as_text(b"foo")
        'bar'
    """

    def __init__(
        self,
        identity: Optional[bytes],
        storage: Storage,
        auto_commit: bool = False,
        bit_width: int = DEFAULT_BIT_WIDTH,
        bucket_size: int = DEFAULT_BUCKET_SIZE,
    ) -> None:
        """Initialize an uncommitted container.

        Args:
            identity: Name the container records about itself; None when
                it will be read back from a loaded node
            storage: Backend the container persists through
            auto_commit: Commit staged writes before reads
            bit_width: Trie bits consumed per level
            bucket_size: Entries per bucket before a slot splits
        """
        self._lock = ReadWriteLock()
        self._identity = bytes(identity) if identity is not None else None
        self._storage = storage
        self._link_system = LinkSystem(storage)
        self._bit_width = bit_width
        self._bucket_size = bucket_size
        self._pending: Dict[str, Any] = {}
        self._node: Optional[HamtNode] = None
        self._link: Optional[Link] = None
        self._committing = False
        self.auto_commit = auto_commit

    # Guarded reads

    def identity(self) -> Optional[bytes]:
        """Identity recorded in the reserved entry."""
        with self._lock.read():
            return self._identity

    def storage(self) -> Storage:
        """Storage this container persists through."""
        with self._lock.read():
            return self._storage

    def link(self) -> Link:
        """Link of the last commit or load.

        Raises:
            NotCommittedError: If nothing was committed or loaded yet
        """
        if self.auto_commit:
            with self._lock.write():
                self._auto_commit_locked()
                return self._require_link()

        with self._lock.read():
            return self._require_link()

    content_address = link

    def is_committed(self) -> bool:
        with self._lock.read():
            return self._link is not None

    def pending(self) -> int:
        """Number of staged writes waiting for the next commit."""
        with self._lock.read():
            return len(self._pending)

    # Loading and staging

    def load(self, link: Link) -> None:
        """Replace the committed state with the trie stored under ``link``.

        Staged writes are kept and apply on the next commit.

        Raises:
            StorageNotFoundError: If the storage has no block for the link
            StorageUnavailableError: If the storage failed to answer
            MalformedNodeError: If the block is not a container trie
        """
        with self._lock.write():
            node = HamtNode.load(self._link_system, link)
            identity = _identity_from_node(node)

            self._node = node
            self._link = link
            self._identity = identity
            self._bit_width = node.bit_width
            self._bucket_size = node.bucket_size

        _LOGGER.info("container_loaded", identity=_display(identity), link=str(link))

    def set(self, key: Key, value: Any) -> None:
        """Stage ``value`` under ``key`` for the next commit.

        Values may be text, bytes, a Link or another HamtContainer (stored
        as a link to its committed state). Never touches storage.

        Raises:
            UnsupportedKeyTypeError: If the key is not bytes/str or is the
                reserved metadata key
            UnsupportedValueKindError: If the value kind can't be stored
        """
        stored_key = self._stageable_key(key)
        self._check_value(value)
        if isinstance(value, (bytearray, memoryview)):
            value = bytes(value)

        with self._lock.write():
            self._pending[stored_key] = value

    def set_many(self, entries: Mapping[Key, Any]) -> None:
        """Stage several entries; nothing is staged if any entry is invalid."""
        staged = {}
        for key, value in entries.items():
            self._check_value(value)
            if isinstance(value, (bytearray, memoryview)):
                value = bytes(value)
            staged[self._stageable_key(key)] = value

        with self._lock.write():
            self._pending.update(staged)

    # Commit

    def commit(self, *writers: Writer) -> Link:
        """Merge staged writes with the committed entries and persist.

        Args:
            *writers: Callables receiving a Setter; applied last, in order,
                so their entries win over everything else

        Returns:
            Link of the new root block

        Raises:
            NotCommittedError: If a nested container value was never committed
            StorageError: If persisting a block failed

        On failure the previous committed state stays in place and staged
        writes are kept, so the commit can be retried.
        """
        with self._lock.write():
            return self._commit_locked(writers)

    # Lookups

    def get(self, key: Key) -> DecodedValue:
        """Return the committed value stored under ``key``.

        Raises:
            NotCommittedError: If nothing was committed or loaded yet
            ValueNotFoundError: If the key is absent
        """
        stored_key = encode_key(key)
        with self._lock.write():
            self._auto_commit_locked()
            node = self._require_node()

            if stored_key == RESERVED_KEY_HEX:
                raw = None
                found = False
            else:
                try:
                    raw = node.lookup(stored_key)
                    found = True
                except KeyError:
                    raw = None
                    found = False

        if not found:
            raise ValueNotFoundError(f"Value not found: {_display(key)}", key=_display(key))
        return decode_value(raw)

    def get_as_link(self, key: Key) -> Link:
        """Return the value under ``key`` as a Link.

        Raises:
            KindMismatchError: If the stored value is not a link
        """
        value = self.get(key)
        if isinstance(value, Link):
            return value
        raise _mismatch(key, ValueKind.LINK, value)

    def get_as_bytes(self, key: Key) -> bytes:
        """Return the value under ``key`` as bytes.

        Raises:
            KindMismatchError: If the stored value is not bytes
        """
        value = self.get(key)
        if isinstance(value, bytes):
            return value
        raise _mismatch(key, ValueKind.BYTES, value)

    def get_as_text(self, key: Key) -> str:
        """Return the value under ``key`` as text.

        Bytes values are accepted when they decode as UTF-8.

        Raises:
            KindMismatchError: If the stored value is neither text nor
                UTF-8 bytes
        """
        value = self.get(key)
        if isinstance(value, str):
            return value
        if isinstance(value, bytes):
            try:
                return value.decode("utf-8")
            except UnicodeDecodeError:
                pass
        raise _mismatch(key, ValueKind.TEXT, value)

    def get_nested(self, key: Key) -> "HamtContainer":
        """Load the container linked under ``key``."""
        return resolve_nested(self, key)

    def __contains__(self, key: object) -> bool:
        try:
            self.get(key)  # type: ignore[arg-type]
        except (ValueNotFoundError, NotCommittedError, UnsupportedKeyTypeError):
            return False
        return True

    # Iteration

    def view(self, visit: Callable[[bytes, DecodedValue], None]) -> None:
        """Call ``visit(key, value)`` for every committed entry.

        Entries come in trie order, not insertion order. The reserved
        entry is skipped. ``visit`` may read from this container, for
        instance to resolve nested children. An exception raised by
        ``visit`` stops the iteration and propagates.

        Raises:
            NotCommittedError: If nothing was committed or loaded yet
        """
        with self._lock.write():
            self._auto_commit_locked()
            node = self._require_node()
            for stored_key, raw in node:
                if stored_key == RESERVED_KEY_HEX:
                    continue
                visit(decode_key(stored_key), decode_value(raw))

    def items(self) -> List[Tuple[bytes, DecodedValue]]:
        """Snapshot of the committed entries as ``(key, value)`` pairs."""
        collected: List[Tuple[bytes, DecodedValue]] = []
        self.view(lambda key, value: collected.append((key, value)))
        return collected

    def keys(self) -> List[bytes]:
        return [key for key, _ in self.items()]

    def __len__(self) -> int:
        """Number of committed entries, 0 before the first commit."""
        with self._lock.write():
            if self._node is None:
                return 0
            return len(self._node) - 1

    def __repr__(self) -> str:
        with self._lock.read():
            link = self._link.short() if self._link is not None else None
            return (
                f"HamtContainer(identity={_display(self._identity)!r}, "
                f"link={link!r}, pending={len(self._pending)}, "
                f"storage={self._storage!r})"
            )

    # Internals (caller holds the write lock where noted)

    def _commit_locked(self, writers: Tuple[Writer, ...] = ()) -> Link:
        identity = self._identity
        if identity is None:
            identity = _identity_from_node(self._require_node())

        builder = begin_structural_build(
            self._link_system, bit_width=self._bit_width, bucket_size=self._bucket_size
        )

        merged: Dict[str, Any] = {}
        if self._node is not None:
            for stored_key, raw in self._node:
                if stored_key != RESERVED_KEY_HEX:
                    merged[stored_key] = decode_value(raw)
        staged = dict(self._pending)
        merged.update(staged)

        assembler = builder.begin_map(len(merged) + 1)
        assembler.assign_key(RESERVED_KEY_HEX)
        assembler.assign_bytes(identity)

        for stored_key, value in merged.items():
            assembler.assign_key(stored_key)
            self._assign(assembler, value)

        setter = Setter(self, assembler)
        self._committing = True
        try:
            for writer in writers:
                writer(setter)
        finally:
            self._committing = False

        assembler.finish()
        node = finalize_trie(builder)
        link = self._link_system.store(node.representation())

        self._node = node
        self._link = link
        self._identity = identity
        # Writes staged by a writer callback during this commit stay pending.
        for stored_key, value in staged.items():
            if self._pending.get(stored_key) is value:
                del self._pending[stored_key]

        _LOGGER.info(
            "container_committed",
            identity=_display(identity),
            link=str(link),
            entries=len(assembler.entries()) - 1,
        )
        return link

    def _auto_commit_locked(self) -> None:
        if self._committing:
            return
        if self.auto_commit and (self._pending or self._node is None):
            self._commit_locked()

    def _assign(self, assembler: MapAssembler, value: Any) -> None:
        if isinstance(value, HamtContainer):
            assembler.assign_link(self._nested_link(value))
            return

        kind = kind_of(value)
        if kind is ValueKind.TEXT:
            assembler.assign_text(value)
        elif kind is ValueKind.BYTES:
            assembler.assign_bytes(bytes(value))
        elif kind is ValueKind.LINK:
            assembler.assign_link(value)
        else:
            raise UnsupportedValueKindError(
                f"Containers cannot store {kind.value} values", value_kind=kind.value
            )

    def _nested_link(self, child: "HamtContainer") -> Link:
        # A container storing itself already holds its own lock.
        if child is self:
            link = self._link
        else:
            try:
                link = child.link()
            except NotCommittedError:
                link = None
        if link is None:
            raise NotCommittedError(
                f"Nested container {_display(child._identity)!r} was never committed",
                identity=_display(child._identity),
            )
        return link

    def _stageable_key(self, key: Key) -> str:
        stored_key = encode_key(key)
        if stored_key == RESERVED_KEY_HEX:
            raise UnsupportedKeyTypeError(
                f"Key {RESERVED_NAME_KEY!r} is reserved for container metadata",
                key=RESERVED_NAME_KEY,
            )
        return stored_key

    def _check_value(self, value: Any) -> None:
        if isinstance(value, HamtContainer):
            return
        kind = kind_of(value)
        if kind not in STORABLE_KINDS:
            raise UnsupportedValueKindError(
                f"Containers cannot store {kind.value} values", value_kind=kind.value
            )
        if kind is ValueKind.TEXT:
            try:
                value.encode("utf-8")
            except UnicodeEncodeError as e:
                raise UnsupportedValueKindError(
                    f"Text value is not valid UTF-8: {value!r}", value_kind=kind.value
                ) from e

    def _require_node(self) -> HamtNode:
        if self._node is None:
            raise NotCommittedError("Container not committed, commit or load first")
        return self._node

    def _require_link(self) -> Link:
        if self._link is None:
            raise NotCommittedError("Container not committed, commit or load first")
        return self._link


def resolve_nested(parent: HamtContainer, key: Key, auto_commit: bool = False) -> HamtContainer:
    """Load the child container whose link is stored under ``key`` in ``parent``.

    The child shares the parent's storage; its identity is read back from
    its own reserved entry.

    Raises:
        NoNestedFoundError: If the parent is not committed, lacks the key,
            or holds something other than a link under it
        StorageError: If the child's blocks cannot be read
    """
    try:
        link = parent.get_as_link(key)
    except (NotCommittedError, ValueNotFoundError, KindMismatchError) as e:
        _LOGGER.warning("nested_not_found", key=_display(key), reason=e.kind.value)
        raise NoNestedFoundError(
            f"No nested container found with key {_display(key)!r}",
            key=_display(key),
            reason=e.kind.value,
        ) from e

    child = HamtContainer(None, parent.storage(), auto_commit=auto_commit)
    child.load(link)
    return child


def _identity_from_node(node: HamtNode) -> bytes:
    try:
        raw = node.lookup(RESERVED_KEY_HEX)
    except KeyError as e:
        raise MalformedNodeError("Trie has no reserved identity entry") from e

    identity = decode_value(raw)
    if isinstance(identity, str):
        return identity.encode("utf-8")
    if isinstance(identity, bytes):
        return identity
    raise MalformedNodeError(f"Reserved identity entry holds a {kind_of(identity).value} value")


def _mismatch(key: Key, expected: ValueKind, value: DecodedValue) -> KindMismatchError:
    actual = kind_of(value).value
    return KindMismatchError(
        f"Value under {_display(key)!r} should be {expected.value}, got {actual}",
        expected=expected.value,
        actual=actual,
        key=_display(key),
    )


def _display(key: Any) -> Any:
    if isinstance(key, (bytes, bytearray)):
        return bytes(key).decode("utf-8", errors="backslashreplace")
    return key
