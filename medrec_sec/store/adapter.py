"""
Content-addressed store adapters
Immutable blobs keyed by content hash: in-memory and IPFS HTTP API backends
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Set
import httpx
import structlog

from ..config import CustodyConfig, StoreBackend, get_custody_config
from ..crypto.hash import content_hash, verify_data_integrity
from ..exceptions import BlobNotFoundError, StoreUnavailableError, StoreWriteFailedError

logger = structlog.get_logger(__name__)


class ContentStore(ABC):
    """Blob store where the retrieval key is a hash of the contents"""

    @abstractmethod
    async def put(self, data: bytes) -> str:
        """Store bytes; returns the content hash. Raises StoreWriteFailedError."""

    @abstractmethod
    async def get(self, content_hash: str) -> bytes:
        """Fetch bytes. Raises BlobNotFoundError or StoreUnavailableError."""

    @abstractmethod
    async def unpin(self, content_hash: str) -> None:
        """Release a blob. Raises StoreUnavailableError."""

    async def list_pinned(self) -> Set[str]:
        """Hashes currently held; used by the orphan sweep"""
        return set()

    async def is_pinned(self, content_hash: str) -> bool:
        return content_hash in await self.list_pinned()

    async def close(self) -> None:
        return None


class InMemoryContentStore(ContentStore):
    """In-memory content store for testing and single-node use"""

    def __init__(self):
        self.blobs: Dict[str, bytes] = {}
        self.pinned: Set[str] = set()

    async def put(self, data: bytes) -> str:
        digest = content_hash(data)
        self.blobs[digest] = bytes(data)
        self.pinned.add(digest)
        return digest

    async def get(self, content_hash: str) -> bytes:
        data = self.blobs.get(content_hash)
        if data is None:
            raise BlobNotFoundError(content_hash)
        if not verify_data_integrity(data, content_hash):
            logger.error("Stored blob does not match its hash", content_hash=content_hash)
            raise BlobNotFoundError(content_hash)
        return data

    async def unpin(self, content_hash: str) -> None:
        self.pinned.discard(content_hash)
        self.blobs.pop(content_hash, None)

    async def list_pinned(self) -> Set[str]:
        return set(self.pinned)

    async def is_pinned(self, content_hash: str) -> bool:
        return content_hash in self.pinned


class IpfsHttpStore(ContentStore):
    """Content store backed by an IPFS daemon's HTTP API (/api/v0)"""

    def __init__(self, api_url: str = "http://localhost:5001",
                 timeout_seconds: float = 30.0,
                 client: Optional[httpx.AsyncClient] = None):
        self.api_url = api_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.api_url,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def put(self, data: bytes) -> str:
        try:
            response = await self._client.post(
                "/api/v0/add",
                params={"pin": "true", "cid-version": "0"},
                files={"file": ("blob", data)},
            )
        except httpx.HTTPError as e:
            logger.error("IPFS add failed", error=str(e))
            raise StoreWriteFailedError(reason=str(e)) from e

        if response.status_code != 200:
            logger.error("IPFS add rejected", status=response.status_code)
            raise StoreWriteFailedError(reason=f"status_{response.status_code}")

        try:
            digest = response.json()["Hash"]
        except (ValueError, KeyError) as e:
            raise StoreWriteFailedError(reason="malformed_add_response") from e

        logger.debug("IPFS blob added", content_hash=digest, size=len(data))
        return digest

    async def get(self, content_hash: str) -> bytes:
        try:
            response = await self._client.post("/api/v0/cat", params={"arg": content_hash})
        except httpx.HTTPError as e:
            logger.error("IPFS cat failed", content_hash=content_hash, error=str(e))
            raise StoreUnavailableError("get", reason=str(e)) from e

        if response.status_code == 200:
            return response.content
        if response.status_code == 500 and "not found" in response.text.lower():
            raise BlobNotFoundError(content_hash)
        raise StoreUnavailableError("get", reason=f"status_{response.status_code}")

    async def unpin(self, content_hash: str) -> None:
        try:
            response = await self._client.post("/api/v0/pin/rm", params={"arg": content_hash})
        except httpx.HTTPError as e:
            raise StoreUnavailableError("unpin", reason=str(e)) from e

        if response.status_code != 200:
            raise StoreUnavailableError("unpin", reason=f"status_{response.status_code}")

    async def list_pinned(self) -> Set[str]:
        try:
            response = await self._client.post("/api/v0/pin/ls", params={"type": "recursive"})
        except httpx.HTTPError as e:
            raise StoreUnavailableError("list_pinned", reason=str(e)) from e

        if response.status_code != 200:
            raise StoreUnavailableError("list_pinned", reason=f"status_{response.status_code}")
        return set(response.json().get("Keys", {}).keys())

    async def is_pinned(self, content_hash: str) -> bool:
        try:
            response = await self._client.post("/api/v0/pin/ls",
                                               params={"arg": content_hash, "type": "recursive"})
        except httpx.HTTPError as e:
            raise StoreUnavailableError("is_pinned", reason=str(e)) from e

        if response.status_code == 200:
            return content_hash in response.json().get("Keys", {})
        if response.status_code == 500 and "not pinned" in response.text.lower():
            return False
        raise StoreUnavailableError("is_pinned", reason=f"status_{response.status_code}")

    async def close(self) -> None:
        await self._client.aclose()


def create_content_store(config: Optional[CustodyConfig] = None) -> ContentStore:
    """Build the store configured by store_backend"""
    config = config or get_custody_config()
    if config.store_backend == StoreBackend.IPFS:
        return IpfsHttpStore(config.ipfs_api_url, config.store_timeout_seconds)
    return InMemoryContentStore()
