"""hamtcontainer - persistent, content-addressed key/value containers.

A container accumulates key/value pairs, commits them into an immutable
hashed trie persisted through a pluggable storage backend, and can be
loaded again later from the link (content address) of that commit.
"""

__version__ = "0.1.0"
__author__ = "hamtcontainer Contributors"

from hamtcontainer.core import HamtBuilder, HamtContainer, resolve_nested
from hamtcontainer.link import Link
from hamtcontainer.storage import MemoryStorage, Storage

__all__ = [
    "__version__",
    "__author__",
    "HamtBuilder",
    "HamtContainer",
    "Link",
    "MemoryStorage",
    "Storage",
    "resolve_nested",
]
