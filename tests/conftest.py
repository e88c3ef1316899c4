"""
Shared pytest fixtures for ledgerkeep tests.

Provides deterministic providers and in-memory collaborators so no test
touches a network, a model or the sui CLI.
"""

import hashlib
from pathlib import Path
from typing import Optional

import pytest

from ledgerkeep.blob_store import BlobInfo, BlobStoreError, InMemoryBlobStore
from ledgerkeep.ledger import InMemoryLedger, LedgerError
from ledgerkeep.local_cache import LocalMetadataCache
from ledgerkeep.registry import MetadataRegistry


class MockEmbeddingProvider:
    """
    Deterministic mock embedding provider for testing.

    Generates consistent embeddings based on text hash - no model or API.
    """

    dimension = 64
    model_name = "mock-model"

    def __init__(self):
        self.embed_calls = 0
        self.batch_calls = 0

    def embed(self, text: str) -> list[float]:
        """Generate deterministic embedding from text hash."""
        self.embed_calls += 1
        h = hashlib.md5(text.encode()).hexdigest()
        embedding = [int(h[i:i+2], 16) / 255.0 for i in range(0, 32, 2)]
        return (embedding * 4)[:self.dimension]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls += 1
        return [self.embed(t) for t in texts]


class MockGenerationProvider:
    """Records every prompt it is given and returns a fixed answer."""

    def __init__(self, answer: str = "Mock answer [Document 1]"):
        self.answer = answer
        self.calls: list[tuple[str, str]] = []

    def generate(self, system: str, user: str, *, max_tokens: int = 1024) -> Optional[str]:
        self.calls.append((system, user))
        return self.answer


class FlakyLedger(InMemoryLedger):
    """In-memory ledger whose reads and writes can be switched off."""

    def __init__(self):
        super().__init__()
        self.fail_reads = False
        self.fail_writes = False
        self.query_calls = 0
        self.append_calls = 0

    def query_events(self, limit: int):
        self.query_calls += 1
        if self.fail_reads:
            raise LedgerError("ledger unavailable")
        return super().query_events(limit)

    def append(self, principal: str, value: str) -> None:
        self.append_calls += 1
        if self.fail_writes:
            raise LedgerError("ledger unavailable")
        super().append(principal, value)


class FlakyBlobStore(InMemoryBlobStore):
    """In-memory blob store with per-blob and global failure switches."""

    def __init__(self):
        super().__init__()
        self.fail_reads = False
        self.fail_writes = False
        self.unreadable: set[str] = set()
        self.get_calls: list[str] = []
        self.put_calls = 0

    def put(self, data: bytes, *, epochs: Optional[int] = None) -> BlobInfo:
        self.put_calls += 1
        if self.fail_writes:
            raise BlobStoreError("blob store unreachable")
        return super().put(data, epochs=epochs)

    def get(self, blob_id: str) -> bytes:
        self.get_calls.append(blob_id)
        if self.fail_reads or blob_id in self.unreadable:
            raise BlobStoreError("blob store unreachable")
        return super().get(blob_id)


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def mock_embedding_provider():
    """Create a fresh MockEmbeddingProvider instance."""
    return MockEmbeddingProvider()


@pytest.fixture
def mock_generator():
    return MockGenerationProvider()


@pytest.fixture
def ledger():
    return FlakyLedger()


@pytest.fixture
def blobs():
    return FlakyBlobStore()


@pytest.fixture
def local_cache(tmp_path):
    cache = LocalMetadataCache(tmp_path / "metadata.db")
    yield cache
    cache.close()


@pytest.fixture
def registry(local_cache, ledger):
    return MetadataRegistry(local_cache, ledger)


@pytest.fixture
def db_path(tmp_path) -> Path:
    return tmp_path / "metadata.db"
