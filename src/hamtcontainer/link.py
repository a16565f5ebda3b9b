"""Content addresses.

A Link names a block by the SHA-256 digest of its bytes. The digest is
computed by the trie layer; storage backends treat links as opaque keys.
"""

import hashlib
from dataclasses import dataclass

from hamtcontainer.constants import HASH_ALGORITHM, HASH_LENGTH
from hamtcontainer.errors import InvalidLinkError

_HEX_DIGITS = frozenset("0123456789abcdef")


@dataclass(frozen=True)
class Link:
    """Content address of a persisted block.

    Attributes:
        digest: Lowercase hex SHA-256 of the block (64 characters)

    Example:
        >>> link = Link.from_bytes(b"block")
        >>> Link.parse(str(link)) == link
        True
    """

    digest: str

    def __post_init__(self) -> None:
        _validate_digest(self.digest)

    def __str__(self) -> str:
        return self.digest

    @classmethod
    def parse(cls, text: str) -> "Link":
        """Parse a link from its string form.

        Raises:
            InvalidLinkError: If text is not 64 lowercase hex characters
        """
        if not isinstance(text, str):
            raise InvalidLinkError(f"Link must be string, got {type(text).__name__}")
        return cls(text.strip().lower())

    @classmethod
    def from_bytes(cls, data: bytes) -> "Link":
        """Compute the link of a block's bytes."""
        hasher = hashlib.new(HASH_ALGORITHM)
        hasher.update(data)
        return cls(hasher.hexdigest())

    def short(self) -> str:
        """Abbreviated form for display."""
        return self.digest[:12]


def _validate_digest(digest: str) -> None:
    if not isinstance(digest, str):
        raise InvalidLinkError(f"Link digest must be string, got {type(digest).__name__}")

    if len(digest) != HASH_LENGTH:
        raise InvalidLinkError(
            f"Link must be {HASH_LENGTH} characters, got {len(digest)}",
            digest=digest,
        )

    if not set(digest) <= _HEX_DIGITS:
        raise InvalidLinkError(f"Link must be lowercase hexadecimal: {digest!r}", digest=digest)
