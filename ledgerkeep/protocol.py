"""
Protocol definitions for the external collaborators.

Defines interface contracts for the pieces this library talks to but does
not own:
- LedgerProtocol: append-only event log (Sui in production, in-memory in tests)
- BlobStoreProtocol: content-addressed object storage (Walrus)
- PolicyStoreProtocol: read access to per-resource access policies
- SimilarityEngine: ranked text search over ingested content
"""

from typing import Any, Optional, Protocol, runtime_checkable

from .blob_store import BlobInfo
from .ledger import LedgerEvent
from .types import AccessPolicy


@runtime_checkable
class LedgerProtocol(Protocol):
    """
    Append-only event log carrying "metadata updated" events.

    Implemented by:
    - SuiLedger (JSON-RPC query, sui CLI for writes)
    - InMemoryLedger (tests, single-process development)
    """

    def query_events(self, limit: int) -> list[LedgerEvent]:
        """Return up to ``limit`` events, newest first."""
        ...

    def append(self, principal: str, value: str) -> None:
        """Submit one event. Raises LedgerError on failure."""
        ...


@runtime_checkable
class BlobStoreProtocol(Protocol):
    """
    Immutable content-addressed storage.

    Implemented by:
    - WalrusBlobStore (publisher/aggregator HTTP API)
    - InMemoryBlobStore (sha256 addressed dict)
    """

    def put(self, data: bytes, *, epochs: Optional[int] = None) -> BlobInfo: ...

    def get(self, blob_id: str) -> bytes: ...

    def head(self, blob_id: str) -> bool: ...


@runtime_checkable
class PolicyStoreProtocol(Protocol):
    """Read-only policy lookup. None means the resource has no policy."""

    def get_policy(self, resource_id: str) -> Optional[AccessPolicy]: ...


@runtime_checkable
class SimilarityEngine(Protocol):
    """Ranked search returning (content, score, metadata) tuples."""

    def similarity_search(
        self,
        query: str,
        k: int,
    ) -> list[tuple[str, float, dict[str, Any]]]: ...
