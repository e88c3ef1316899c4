"""
Similarity search over ingested documents.

A flat list of (chunk, embedding, metadata) scanned linearly with cosine
similarity. Chunk metadata carries the document's blob ID, filename, owner
and resource ID so search hits can be authorized and fetched.
"""

import hashlib
import json
import logging
import math
import threading
from pathlib import Path
from typing import Any, Iterable, Optional

from .access import InMemoryPolicyStore
from .items import ItemManager
from .providers.base import EmbeddingProvider
from .types import ItemMetadata, validate_principal

logger = logging.getLogger(__name__)

INDEX_FORMAT_VERSION = 1
DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200


def chunk_text(
    content: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """Split into overlapping character windows, dropping blank ones."""
    if chunk_overlap >= chunk_size:
        raise ValueError("chunk_overlap must be smaller than chunk_size")
    step = chunk_size - chunk_overlap
    chunks = []
    for start in range(0, len(content), step):
        chunk = content[start:start + chunk_size].strip()
        if chunk:
            chunks.append(chunk)
    return chunks or [content]


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class VectorIndex:
    """In-memory linear-scan index implementing SimilarityEngine."""

    def __init__(self, embedding: EmbeddingProvider):
        self._embedding = embedding
        self._entries: list[tuple[str, list[float], dict[str, Any]]] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def add_texts(self, texts: list[str], metadatas: list[dict[str, Any]]) -> int:
        if len(texts) != len(metadatas):
            raise ValueError("texts and metadatas must have the same length")
        if not texts:
            return 0
        vectors = self._embedding.embed_batch(texts)
        with self._lock:
            for text, vector, meta in zip(texts, vectors, metadatas):
                self._entries.append((text, vector, dict(meta)))
        return len(texts)

    def similarity_search(self, query: str, k: int) -> list[tuple[str, float, dict[str, Any]]]:
        """Top ``k`` chunks by cosine similarity, best first."""
        query_vector = self._embedding.embed(query)
        with self._lock:
            entries = list(self._entries)
        scored = [
            (text, _cosine(query_vector, vector), meta)
            for text, vector, meta in entries
        ]
        scored.sort(key=lambda t: t[1], reverse=True)
        return scored[:k]

    def remove_where(self, key: str, value: Any) -> int:
        """Drop every chunk whose metadata has ``key == value``."""
        with self._lock:
            before = len(self._entries)
            self._entries = [e for e in self._entries if e[2].get(key) != value]
            return before - len(self._entries)

    def save(self, path: Path) -> None:
        with self._lock:
            entries = list(self._entries)
        data = {
            "version": INDEX_FORMAT_VERSION,
            "model": getattr(self._embedding, "model_name", None),
            "entries": [
                {"content": text, "embedding": vector, "metadata": meta}
                for text, vector, meta in entries
            ],
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps(data), encoding="utf-8")
        tmp.replace(path)

    @classmethod
    def load(cls, path: Path, embedding: EmbeddingProvider) -> "VectorIndex":
        """Load a saved index, or return an empty one if the file is missing."""
        index = cls(embedding)
        if not path.exists():
            return index
        data = json.loads(path.read_text(encoding="utf-8"))
        version = data.get("version", 1)
        if version > INDEX_FORMAT_VERSION:
            raise ValueError(f"Index version {version} is newer than supported ({INDEX_FORMAT_VERSION})")
        index._entries = [
            (e["content"], e["embedding"], e.get("metadata", {}))
            for e in data.get("entries", [])
        ]
        return index


def document_id_for(owner: str, filename: str, content: str) -> str:
    """Stable document ID from owner, filename and content."""
    h = hashlib.sha256(f"{owner}\0{filename}\0{content}".encode("utf-8")).hexdigest()
    return f"doc-{h[:16]}"


class DocumentIngestor:
    """
    Uploads a document, records it in the owner's document index, and
    indexes its chunks for search.
    """

    def __init__(
        self,
        documents: ItemManager,
        vectors: VectorIndex,
        *,
        policies: Optional[InMemoryPolicyStore] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ):
        self._documents = documents
        self._vectors = vectors
        self._policies = policies
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap

    def ingest(
        self,
        owner: str,
        filename: str,
        content: str,
        *,
        document_id: Optional[str] = None,
        private: bool = False,
        allowed: Iterable[str] = (),
        file_type: str = "text/plain",
    ) -> ItemMetadata:
        """
        Ingest one document.

        A private document gets an access policy (owner plus ``allowed``).
        A non-private one gets none and is readable by everyone.
        """
        validate_principal(owner)
        if not filename:
            raise ValueError("filename is required")
        if private and self._policies is None:
            raise ValueError("Private documents need a policy store")

        document_id = document_id or document_id_for(owner, filename, content)
        chunks = chunk_text(content, self._chunk_size, self._chunk_overlap)
        item = self._documents.create_item(
            owner, document_id, filename, content,
            extra={
                "filename": filename,
                "file_type": file_type,
                "size": len(content.encode("utf-8")),
                "chunk_count": len(chunks),
            },
        )

        if private:
            self._policies.create_policy(document_id, owner, is_public=False, allowed=allowed)

        metadatas = [
            {
                "blob_id": item.content_blob_id,
                "filename": filename,
                "owner": owner,
                "resource_id": document_id,
                "chunk_index": i,
                "total_chunks": len(chunks),
            }
            for i in range(len(chunks))
        ]
        replaced = self._vectors.remove_where("resource_id", document_id)
        if replaced:
            logger.debug("Replacing %d chunks of %s", replaced, document_id)
        self._vectors.add_texts(chunks, metadatas)
        logger.info("Ingested %s as %s (%d chunks)", filename, document_id, len(chunks))
        return item

    def remove(self, owner: str, document_id: str) -> bool:
        """Drop a document from the owner's index and its chunks from search."""
        removed = self._documents.delete_item(owner, document_id)
        if not removed:
            return False
        purged = self._vectors.remove_where("resource_id", document_id)
        logger.info("Removed %s (%d chunks)", document_id, purged)
        return True
