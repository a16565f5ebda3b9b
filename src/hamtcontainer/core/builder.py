"""Builder producing ready-to-use containers.

The builder collects options into a BuilderConfig, validates the
combination once in ``parse_configuration`` and constructs the container,
optionally loading it from a link or from a parent container's nested
slot.
"""

from dataclasses import dataclass
from typing import Optional

from hamtcontainer.constants import DEFAULT_BIT_WIDTH, DEFAULT_BUCKET_SIZE, DEFAULT_IDENTITY
from hamtcontainer.core.container import HamtContainer, Key, resolve_nested
from hamtcontainer.errors import ConfigurationConflictError
from hamtcontainer.link import Link
from hamtcontainer.storage.base import Storage
from hamtcontainer.storage.memory import MemoryStorage


@dataclass
class BuilderConfig:
    """Candidate options for one container.

    Attributes:
        identity: Name the container records about itself
        storage: Explicit storage binding
        link: Link to load the initial state from
        parent: Container to resolve a nested child from
        nested_key: Key of the child inside ``parent`` (defaults to identity)
        auto_commit: Commit staged writes before reads
        bit_width: Trie bits consumed per level
        bucket_size: Entries per bucket before a slot splits
    """

    identity: Optional[bytes] = None
    storage: Optional[Storage] = None
    link: Optional[Link] = None
    parent: Optional[HamtContainer] = None
    nested_key: Optional[Key] = None
    auto_commit: bool = False
    bit_width: int = DEFAULT_BIT_WIDTH
    bucket_size: int = DEFAULT_BUCKET_SIZE


def parse_configuration(config: BuilderConfig) -> BuilderConfig:
    """Validate option combinations and fill in defaults.

    Returns:
        A new config with identity and storage resolved

    Raises:
        ConfigurationConflictError: If mutually exclusive options were given
    """
    if config.parent is not None and config.storage is not None:
        raise ConfigurationConflictError(
            "Storage and parent are mutually exclusive: nested containers use the parent's storage"
        )
    if config.parent is not None and config.link is not None:
        raise ConfigurationConflictError(
            "Link and parent are mutually exclusive: ambiguous source of initial state"
        )
    if config.nested_key is not None and config.parent is None:
        raise ConfigurationConflictError("A nested key requires a parent container")

    identity = config.identity
    if identity is None or len(identity) == 0:
        identity = DEFAULT_IDENTITY
    elif isinstance(identity, str):
        identity = identity.encode("utf-8")

    storage = config.storage
    if config.parent is not None:
        storage = config.parent.storage()
    elif storage is None:
        storage = MemoryStorage()

    nested_key = config.nested_key
    if config.parent is not None and nested_key is None:
        nested_key = identity

    return BuilderConfig(
        identity=bytes(identity),
        storage=storage,
        link=config.link,
        parent=config.parent,
        nested_key=nested_key,
        auto_commit=config.auto_commit,
        bit_width=config.bit_width,
        bucket_size=config.bucket_size,
    )


class HamtBuilder:
    """Fluent builder for HamtContainer.

    Example:
        >>> store = MemoryStorage()
        >>> root = HamtBuilder().identity(b"root").storage(store).build()
        >>> loaded = HamtBuilder().storage(store).from_link(link).build()
        >>> child = HamtBuilder().from_nested(parent, b"child").build()
    """

    def __init__(self, config: Optional[BuilderConfig] = None) -> None:
        self._config = config if config is not None else BuilderConfig()
        self._built = False

    def identity(self, identity: bytes) -> "HamtBuilder":
        """Set the identity; ignored when loading, the stored one wins."""
        self._config.identity = identity
        return self

    def storage(self, storage: Storage) -> "HamtBuilder":
        self._config.storage = storage
        return self

    def from_link(self, link: Link) -> "HamtBuilder":
        """Load the container committed under ``link``."""
        self._config.link = link
        return self

    def from_nested(self, parent: HamtContainer, key: Optional[Key] = None) -> "HamtBuilder":
        """Load the child linked under ``key`` in ``parent``.

        Without a key the configured identity is used as the key.
        """
        self._config.parent = parent
        self._config.nested_key = key
        return self

    def auto_commit(self, enabled: bool = True) -> "HamtBuilder":
        self._config.auto_commit = enabled
        return self

    def trie_shape(self, bit_width: int, bucket_size: int) -> "HamtBuilder":
        self._config.bit_width = bit_width
        self._config.bucket_size = bucket_size
        return self

    def build(self) -> HamtContainer:
        """Validate the options and produce the container.

        Raises:
            ConfigurationConflictError: On conflicting options, or if this
                builder was already used
            NoNestedFoundError: If the parent holds no child under the key
            StorageError: If loading from storage failed
        """
        if self._built:
            raise ConfigurationConflictError("Builder configuration was already consumed")
        config = parse_configuration(self._config)
        self._built = True

        if config.parent is not None:
            return resolve_nested(config.parent, config.nested_key, auto_commit=config.auto_commit)

        container = HamtContainer(
            config.identity,
            config.storage,
            auto_commit=config.auto_commit,
            bit_width=config.bit_width,
            bucket_size=config.bucket_size,
        )
        if config.link is not None:
            container.load(config.link)
        return container
