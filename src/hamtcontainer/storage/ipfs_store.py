"""IPFS block storage.

Talks to an IPFS node over its HTTP RPC API (``/api/v0/block/get`` and
``/api/v0/block/put``). The node assigns its own CID to put blocks; it is
only used to fetch the block back, the container's Link stays the
SHA-256 of the bytes.
"""

import base64
import io
import threading
from typing import Any, BinaryIO, Dict, Optional, Tuple

import httpx

from hamtcontainer.constants import DEFAULT_IPFS_URL, DEFAULT_TIMEOUT_SECONDS
from hamtcontainer.errors import StorageNotFoundError, StorageUnavailableError
from hamtcontainer.link import Link
from hamtcontainer.logging_config import get_logger
from hamtcontainer.storage.base import BufferedWrite, CommitCallback, Storage

_LOGGER = get_logger(__name__)

# Blocks are put with the same digest the Link carries.
_MHTYPE = "sha2-256"


class IPFSStorage(Storage):
    """Block store on an IPFS node.

    Blocks are put as raw blocks hashed with sha2-256, so the node's CID
    and the Link agree on the digest. The mapping Link -> CID is read
    back from the node's response and cached for lookups.

    Attributes:
        base_url: Root URL of the node's RPC API
        timeout: Per-request timeout in seconds
    """

    name = "ipfs"

    def __init__(
        self,
        base_url: str = DEFAULT_IPFS_URL,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._cids: Dict[Link, str] = {}
        self._lock = threading.Lock()

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(base_url=self.base_url, timeout=self.timeout)
        return self._client

    def open_read(self, link: Link) -> BinaryIO:
        cid = self._cid_for(link)
        # Offline lookups report blocks the node does not hold as not found.
        response = self._request(
            "/api/v0/block/get", link, params={"arg": cid, "offline": "true"}
        )

        if response.status_code == 404 or _is_not_found(response):
            raise StorageNotFoundError(
                f"Block not found: {link}", backend=self.name, link=str(link), cid=cid
            )
        if response.status_code != 200:
            raise StorageUnavailableError(
                f"IPFS block/get failed for {link}: HTTP {response.status_code}",
                backend=self.name,
                link=str(link),
                status=response.status_code,
            )

        return io.BytesIO(response.content)

    def open_write(self) -> Tuple[BinaryIO, CommitCallback]:
        return BufferedWrite(self._put).as_tuple()

    def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def __repr__(self) -> str:
        return f"IPFSStorage(base_url={self.base_url!r})"

    def _put(self, link: Link, data: bytes) -> None:
        response = self._request(
            "/api/v0/block/put",
            link,
            params={"cid-codec": "raw", "mhtype": _MHTYPE, "mhlen": "32"},
            files={"data": ("block", data, "application/octet-stream")},
        )
        if response.status_code != 200:
            raise StorageUnavailableError(
                f"IPFS block/put failed for {link}: HTTP {response.status_code}",
                backend=self.name,
                link=str(link),
                status=response.status_code,
            )

        try:
            cid = response.json()["Key"]
        except (ValueError, KeyError) as e:
            raise StorageUnavailableError(
                f"IPFS block/put returned an unexpected body for {link}",
                backend=self.name,
                link=str(link),
            ) from e

        with self._lock:
            self._cids[link] = cid

    def _cid_for(self, link: Link) -> str:
        with self._lock:
            cid = self._cids.get(link)
        if cid is not None:
            return cid
        return _raw_cid_from_digest(link.digest)

    def _request(self, path: str, link: Link, **kwargs: Any) -> httpx.Response:
        try:
            return self.client.post(path, **kwargs)
        except httpx.HTTPError as e:
            _LOGGER.warning(
                "storage_request_failed",
                backend=self.name,
                path=path,
                link=str(link),
                error=str(e),
            )
            raise StorageUnavailableError(
                f"IPFS request {path} failed for {link}: {e}",
                backend=self.name,
                link=str(link),
            ) from e


def _is_not_found(response: httpx.Response) -> bool:
    if response.status_code != 500:
        return False
    try:
        message = str(response.json().get("Message", ""))
    except ValueError:
        message = response.text
    return "not found" in message.lower()


def _raw_cid_from_digest(digest: str) -> str:
    """Build the CIDv1 (raw codec, sha2-256) string for a hex digest.

    Layout: multibase "b" + base32(0x01 version, 0x55 raw, 0x12 sha2-256,
    0x20 length, digest).
    """
    payload = bytes([0x01, 0x55, 0x12, 0x20]) + bytes.fromhex(digest)
    return "b" + base64.b32encode(payload).decode("ascii").lower().rstrip("=")
