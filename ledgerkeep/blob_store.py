"""
Content-addressed blob storage.

WalrusBlobStore talks to a Walrus publisher (writes) and aggregator (reads).
Blobs are immutable: the same bytes always map to the same blob ID, and
extending storage means writing the bytes again with a longer period.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30.0
DEFAULT_EPOCHS = 5

_SHA256_HEX = re.compile(r"[0-9a-f]{64}")


class BlobStoreError(Exception):
    """Error communicating with the blob store."""


class BlobNotFoundError(BlobStoreError):
    """The requested blob does not exist (or has expired)."""


@dataclass(frozen=True)
class BlobInfo:
    """Result of a successful write."""
    blob_id: str
    size: int
    epochs: int
    end_epoch: Optional[int] = None


class WalrusBlobStore:
    """HTTP client for the Walrus publisher/aggregator API."""

    def __init__(
        self,
        publisher_url: str,
        aggregator_url: str,
        *,
        epochs: int = DEFAULT_EPOCHS,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self._publisher_url = publisher_url.rstrip("/")
        self._aggregator_url = aggregator_url.rstrip("/")
        self._epochs = epochs
        self._client = httpx.Client(timeout=timeout)

    def put(self, data: bytes, *, epochs: Optional[int] = None) -> BlobInfo:
        """PUT /v1/blobs?epochs=N -> BlobInfo.

        The publisher answers with either ``newlyCreated`` (fresh blob) or
        ``alreadyCertified`` (identical bytes already stored).
        """
        storage_epochs = epochs or self._epochs
        try:
            resp = self._client.put(
                f"{self._publisher_url}/v1/blobs",
                params={"epochs": storage_epochs},
                content=data,
                headers={"Content-Type": "application/octet-stream"},
            )
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPError as e:
            raise BlobStoreError(f"Walrus upload failed: {e}") from e
        except ValueError as e:
            raise BlobStoreError("Walrus upload returned invalid JSON") from e

        if "newlyCreated" in body:
            blob = (body["newlyCreated"] or {}).get("blobObject") or {}
            blob_id = blob.get("blobId")
            if not blob_id:
                raise BlobStoreError("Invalid response from Walrus publisher: missing blobObject")
            size = int(blob.get("size") or len(data))
            end_epoch = (blob.get("storage") or {}).get("endEpoch")
        elif "alreadyCertified" in body:
            existing = body["alreadyCertified"] or {}
            blob_id = existing.get("blobId") or existing.get("blob_id")
            if not blob_id:
                raise BlobStoreError("Invalid response from Walrus publisher: missing blobId")
            # Size isn't reported for already-certified blobs
            size = len(data)
            end_epoch = existing.get("endEpoch") or existing.get("end_epoch")
        else:
            raise BlobStoreError("Invalid response from Walrus publisher: unknown response type")

        logger.debug("Uploaded %d bytes as %s (%d epochs)", size, blob_id, storage_epochs)
        return BlobInfo(blob_id=blob_id, size=size, epochs=storage_epochs, end_epoch=end_epoch)

    def get(self, blob_id: str) -> bytes:
        """GET /v1/blobs/{blob_id} -> bytes."""
        try:
            resp = self._client.get(f"{self._aggregator_url}/v1/blobs/{blob_id}")
            if resp.status_code == 404:
                raise BlobNotFoundError(f"Blob {blob_id} not found on Walrus")
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise BlobStoreError(f"Walrus retrieval failed: {e}") from e
        return resp.content

    def get_text(self, blob_id: str) -> str:
        return self.get(blob_id).decode("utf-8")

    def head(self, blob_id: str) -> bool:
        """HEAD /v1/blobs/{blob_id}. 404 (unknown) and 400 (malformed ID) mean absent."""
        try:
            resp = self._client.head(f"{self._aggregator_url}/v1/blobs/{blob_id}")
        except httpx.HTTPError as e:
            raise BlobStoreError(f"Walrus probe failed: {e}") from e
        if resp.status_code in (400, 404):
            return False
        if resp.status_code >= 400:
            raise BlobStoreError(f"Walrus probe failed: {resp.status_code}")
        return True

    def close(self) -> None:
        self._client.close()


class InMemoryBlobStore:
    """Dict-backed store addressed by sha256 of the content."""

    def __init__(self, *, epochs: int = DEFAULT_EPOCHS):
        self._epochs = epochs
        self._blobs: dict[str, bytes] = {}
        self._lock = threading.Lock()

    def put(self, data: bytes, *, epochs: Optional[int] = None) -> BlobInfo:
        blob_id = hashlib.sha256(data).hexdigest()
        with self._lock:
            self._blobs[blob_id] = bytes(data)
        return BlobInfo(blob_id=blob_id, size=len(data), epochs=epochs or self._epochs)

    def get(self, blob_id: str) -> bytes:
        with self._lock:
            data = self._blobs.get(blob_id)
        if data is None:
            raise BlobNotFoundError(f"Blob {blob_id} not found")
        return data

    def get_text(self, blob_id: str) -> str:
        return self.get(blob_id).decode("utf-8")

    def head(self, blob_id: str) -> bool:
        with self._lock:
            return blob_id in self._blobs

    def close(self) -> None:
        pass


class FileBlobStore:
    """
    Directory-backed store addressed by sha256 of the content.

    Lets a single host run without Walrus. Blobs live at
    ``{root}/{id[:2]}/{id}`` and are written through a temp file so a
    reader never sees a partial blob.
    """

    def __init__(self, root: Path, *, epochs: int = DEFAULT_EPOCHS):
        self._root = Path(root)
        self._epochs = epochs
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, blob_id: str) -> Optional[Path]:
        if not _SHA256_HEX.fullmatch(blob_id or ""):
            return None
        return self._root / blob_id[:2] / blob_id

    def put(self, data: bytes, *, epochs: Optional[int] = None) -> BlobInfo:
        blob_id = hashlib.sha256(data).hexdigest()
        path = self._path(blob_id)
        if not path.exists():
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                tmp = path.with_name(f"{blob_id}.{os.getpid()}.{threading.get_ident()}.tmp")
                tmp.write_bytes(data)
                tmp.replace(path)
            except OSError as e:
                raise BlobStoreError(f"Blob write failed: {e}") from e
        return BlobInfo(blob_id=blob_id, size=len(data), epochs=epochs or self._epochs)

    def get(self, blob_id: str) -> bytes:
        path = self._path(blob_id)
        if path is None or not path.exists():
            raise BlobNotFoundError(f"Blob {blob_id} not found")
        try:
            return path.read_bytes()
        except OSError as e:
            raise BlobStoreError(f"Blob read failed for {blob_id}: {e}") from e

    def get_text(self, blob_id: str) -> str:
        return self.get(blob_id).decode("utf-8")

    def head(self, blob_id: str) -> bool:
        path = self._path(blob_id)
        return path is not None and path.exists()

    def close(self) -> None:
        pass
