"""Core engine layer for hamtcontainer.

This module provides the container, its builder, the hashed trie the
container commits into, and the value decoder.
"""

from hamtcontainer.core.builder import BuilderConfig, HamtBuilder, parse_configuration
from hamtcontainer.core.container import HamtContainer, Setter, resolve_nested
from hamtcontainer.core.values import ValueKind, decode_value

__all__ = [
    "BuilderConfig",
    "HamtBuilder",
    "HamtContainer",
    "Setter",
    "ValueKind",
    "decode_value",
    "parse_configuration",
    "resolve_nested",
]
