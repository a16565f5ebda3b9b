"""Exception hierarchy for hamtcontainer.

Every failure raised by the library is a HamtError carrying an ErrorKind
from a closed enumeration, so callers can either catch a specific class or
branch on ``error.kind``. Storage backends raise the StorageError family
with the transport exception chained as ``__cause__``.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(str, Enum):
    """All failure kinds the library can report."""

    NOT_COMMITTED = "not_committed"
    NOT_FOUND = "not_found"
    NO_NESTED_FOUND = "no_nested_found"
    KIND_MISMATCH = "kind_mismatch"
    UNSUPPORTED_VALUE_KIND = "unsupported_value_kind"
    UNSUPPORTED_KEY_TYPE = "unsupported_key_type"
    CONFIGURATION_CONFLICT = "configuration_conflict"
    STORAGE_NOT_FOUND = "storage_not_found"
    STORAGE_UNAVAILABLE = "storage_unavailable"
    STORAGE_CORRUPTED = "storage_corrupted"
    MALFORMED_NODE = "malformed_node"
    INVALID_LINK = "invalid_link"
    INVALID_ASSEMBLY = "invalid_assembly"


class HamtError(Exception):
    """Base exception for all hamtcontainer failures.

    Attributes:
        kind: Failure kind, set by each subclass
        message: Human-readable description
        context: Extra debugging fields (keys, links, backend names)
    """

    kind: Optional[ErrorKind] = None

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = context

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"kind={_kind_value(self.kind)}, "
            f"message={self.message!r}, "
            f"context={self.context!r})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "kind": _kind_value(self.kind),
            "message": self.message,
            "context": self.context,
        }


class NotCommittedError(HamtError):
    """Raised when a link or lookup is requested before any commit/load."""

    kind = ErrorKind.NOT_COMMITTED


class ValueNotFoundError(HamtError):
    """Raised when a key is absent from the committed node."""

    kind = ErrorKind.NOT_FOUND


class NoNestedFoundError(HamtError):
    """Raised when a nested container cannot be resolved from its parent."""

    kind = ErrorKind.NO_NESTED_FOUND


class KindMismatchError(HamtError):
    """Raised when a typed accessor finds a value of another kind."""

    kind = ErrorKind.KIND_MISMATCH

    def __init__(self, message: str, expected: str, actual: str, **context: Any) -> None:
        super().__init__(message, expected=expected, actual=actual, **context)
        self.expected = expected
        self.actual = actual


class UnsupportedValueKindError(HamtError):
    """Raised for values the container cannot encode or decode."""

    kind = ErrorKind.UNSUPPORTED_VALUE_KIND


class UnsupportedKeyTypeError(HamtError):
    """Raised when a key is neither bytes nor str."""

    kind = ErrorKind.UNSUPPORTED_KEY_TYPE


class ConfigurationConflictError(HamtError):
    """Raised when the builder receives mutually exclusive options."""

    kind = ErrorKind.CONFIGURATION_CONFLICT


class ConfigError(ConfigurationConflictError):
    """Raised for invalid runtime configuration values."""


class InvalidLinkError(HamtError):
    """Raised when a string is not a well-formed content address."""

    kind = ErrorKind.INVALID_LINK


class InvalidAssemblyError(HamtError):
    """Raised when the trie map assembler is driven out of order."""

    kind = ErrorKind.INVALID_ASSEMBLY


class MalformedNodeError(HamtError):
    """Raised when stored bytes do not decode into a trie block."""

    kind = ErrorKind.MALFORMED_NODE


class StorageError(HamtError):
    """Base class for failures reported by a storage backend."""

    kind = ErrorKind.STORAGE_UNAVAILABLE

    def __init__(self, message: str, backend: Optional[str] = None, **context: Any) -> None:
        super().__init__(message, backend=backend, **context)
        self.backend = backend


class StorageNotFoundError(StorageError):
    """Raised when the backend holds no block for an address."""

    kind = ErrorKind.STORAGE_NOT_FOUND


class StorageUnavailableError(StorageError):
    """Raised when the backend could not be reached or failed mid-call."""

    kind = ErrorKind.STORAGE_UNAVAILABLE


class StorageCorruptedError(StorageError):
    """Raised when a block's bytes don't hash to the requested address."""

    kind = ErrorKind.STORAGE_CORRUPTED


def _kind_value(kind: Optional[ErrorKind]) -> Optional[str]:
    return kind.value if kind is not None else None
