"""Value kinds stored in a container and their block representation.

Inside a block, text is a JSON string, bytes are ``{"/": {"bytes": b64}}``
and links are ``{"/": "<hex digest>"}``. Null, booleans, integers and
floats decode to their native kinds but are never written by a container.
"""

import base64
import binascii
from enum import Enum
from typing import Any, Dict, Union

from hamtcontainer.errors import (
    InvalidLinkError,
    MalformedNodeError,
    UnsupportedValueKindError,
)
from hamtcontainer.link import Link

#: Everything the decoder may return.
DecodedValue = Union[None, bool, int, float, str, bytes, Link]


class ValueKind(str, Enum):
    """Kinds of decoded values."""

    NULL = "null"
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    TEXT = "text"
    BYTES = "bytes"
    LINK = "link"


#: Kinds a container accepts for staging.
STORABLE_KINDS = frozenset({ValueKind.TEXT, ValueKind.BYTES, ValueKind.LINK})


def kind_of(value: Any) -> ValueKind:
    """Classify a native Python value.

    Raises:
        UnsupportedValueKindError: If the value is not one of the basic kinds
    """
    if value is None:
        return ValueKind.NULL
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return ValueKind.BOOL
    if isinstance(value, int):
        return ValueKind.INT
    if isinstance(value, float):
        return ValueKind.FLOAT
    if isinstance(value, str):
        return ValueKind.TEXT
    if isinstance(value, (bytes, bytearray, memoryview)):
        return ValueKind.BYTES
    if isinstance(value, Link):
        return ValueKind.LINK
    raise UnsupportedValueKindError(
        f"Unsupported value type: {type(value).__name__}", value_type=type(value).__name__
    )


def encode_text(value: str) -> str:
    return value


def encode_bytes(value: bytes) -> Dict[str, Any]:
    return {"/": {"bytes": base64.b64encode(bytes(value)).decode("ascii")}}


def encode_link(value: Link) -> Dict[str, str]:
    return {"/": value.digest}


def decode_value(raw: Any) -> DecodedValue:
    """Decode a block value into exactly one basic kind.

    Pure classification: no storage access, no mutation.

    Args:
        raw: Value as it appears in a decoded block

    Returns:
        None, bool, int, float, str, bytes or Link

    Raises:
        UnsupportedValueKindError: If the value is a list or a plain map
        MalformedNodeError: If a tagged bytes/link value is malformed
    """
    if raw is None or isinstance(raw, (bool, int, float, str)):
        return raw

    if isinstance(raw, dict) and set(raw) == {"/"}:
        inner = raw["/"]
        if isinstance(inner, str):
            try:
                return Link(inner)
            except InvalidLinkError as e:
                raise MalformedNodeError(f"Invalid link value: {e.message}") from e
        if isinstance(inner, dict) and set(inner) == {"bytes"}:
            try:
                return base64.b64decode(inner["bytes"], validate=True)
            except (binascii.Error, TypeError, ValueError) as e:
                raise MalformedNodeError(f"Invalid bytes value: {e}") from e
        raise MalformedNodeError(f"Invalid tagged value: {raw!r}")

    raise UnsupportedValueKindError(
        f"Node does not have a basic kind: {type(raw).__name__}",
        value_type=type(raw).__name__,
    )
