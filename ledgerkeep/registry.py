"""
Metadata registry: tiered key → blob ID resolution.

Resolution checks three tiers in order:

1. In-process memory map (no I/O)
2. Durable local cache (SQLite on this host)
3. The ledger event stream, scanned newest-first

A ledger hit is back-filled into tiers 1 and 2 before returning. A miss
everywhere means "no data for this principal yet" and is not an error.

Writes go to tiers 1 and 2 synchronously, then to the ledger as a
best-effort second phase. A failed ledger write is logged and remembered
for ``replicate_pending()``; it never fails the store. Until replication
succeeds, a host without this local cache cannot see the new value, so two
hosts without a shared local tier can diverge in that window.
"""

import logging
import threading
from typing import Callable, Optional

from .local_cache import LocalMetadataCache
from .protocol import LedgerProtocol
from .types import (
    MetadataEntry,
    NamespacedKey,
    Purpose,
    Tier,
    decode_value,
    encode_value,
    now_ms,
    validate_blob_id,
)

logger = logging.getLogger(__name__)

# How many ledger events a resolve will scan before giving up
DEFAULT_QUERY_LIMIT = 1000


class MetadataRegistry:
    """
    Resolves namespaced keys to blob IDs.

    Construct one per process and share it between request handlers; the
    memory tier is only useful if it outlives a single request.

    Args:
        local: Durable local tier
        ledger: Event log used as the recovery source, or None for
            local-only operation
        query_limit: Maximum number of ledger events scanned per resolve
    """

    def __init__(
        self,
        local: LocalMetadataCache,
        ledger: Optional[LedgerProtocol] = None,
        *,
        query_limit: int = DEFAULT_QUERY_LIMIT,
    ):
        self._local = local
        self._ledger = ledger
        self._query_limit = query_limit
        self._memory: dict[NamespacedKey, tuple[str, int]] = {}
        self._memory_lock = threading.Lock()
        self._pending: set[NamespacedKey] = set()
        self._pending_lock = threading.Lock()
        self._create_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Resolution
    # -------------------------------------------------------------------------

    def resolve(self, key: NamespacedKey) -> Optional[str]:
        """Return the blob ID for ``key``, or None if nothing is recorded."""
        entry = self.lookup(key)
        return entry.blob_id if entry else None

    def lookup(self, key: NamespacedKey) -> Optional[MetadataEntry]:
        """Like resolve(), but reports which tier answered."""
        with self._memory_lock:
            hit = self._memory.get(key)
        if hit is not None:
            logger.debug("[memory] %s", key)
            return MetadataEntry(key, hit[0], Tier.MEMORY, hit[1])

        cached = self._local.get(key)
        if cached is not None:
            logger.debug("[local] %s", key)
            observed = now_ms()
            self._remember(key, cached.blob_id, observed)
            return MetadataEntry(key, cached.blob_id, Tier.LOCAL, observed)

        blob_id = self._query_ledger(key)
        if blob_id is not None:
            logger.debug("[ledger] %s", key)
            observed = now_ms()
            self._remember(key, blob_id, observed)
            self._local.put(key, blob_id)
            return MetadataEntry(key, blob_id, Tier.LEDGER, observed)

        logger.debug("[miss] no metadata for %s", key)
        return None

    def _query_ledger(self, key: NamespacedKey) -> Optional[str]:
        """Newest event for the principal carrying this purpose's tag."""
        if self._ledger is None:
            return None
        try:
            events = self._ledger.query_events(self._query_limit)
        except Exception as e:
            # Any ledger failure is a miss at this tier
            logger.warning("Ledger query failed for %s: %s", key, e)
            return None

        for event in events:
            if event.principal != key.principal:
                continue
            blob_id = decode_value(key.purpose, event.value)
            if blob_id is not None:
                return blob_id
        return None

    def _remember(self, key: NamespacedKey, blob_id: str, observed: int) -> None:
        with self._memory_lock:
            self._memory[key] = (blob_id, observed)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def store(self, key: NamespacedKey, blob_id: str) -> None:
        """
        Record ``blob_id`` for ``key``.

        The local tier write is synchronous and its errors propagate. The
        ledger write is attempted afterwards and only logged on failure.
        Storing the value a key already holds does not emit another ledger
        event.
        """
        validate_blob_id(blob_id)
        changed = self._local.put(key, blob_id)
        self._remember(key, blob_id, now_ms())

        with self._pending_lock:
            pending = key in self._pending
        if not changed and not pending:
            logger.debug("%s unchanged, skipping ledger write", key)
            return

        self._replicate(key, blob_id)

    def _replicate(self, key: NamespacedKey, blob_id: str) -> bool:
        if self._ledger is None:
            return False
        try:
            self._ledger.append(key.principal, encode_value(key.purpose, blob_id))
        except Exception as e:
            logger.warning(
                "Ledger write failed for %s, local tier remains authoritative: %s",
                key, e,
            )
            with self._pending_lock:
                self._pending.add(key)
            return False

        with self._pending_lock:
            self._pending.discard(key)
        logger.info("Stored %s -> %s...", key, blob_id[:20])
        return True

    def replicate_pending(self) -> int:
        """Retry ledger writes that failed earlier. Returns how many succeeded."""
        with self._pending_lock:
            keys = list(self._pending)

        succeeded = 0
        for key in keys:
            cached = self._local.get(key)
            if cached is None:
                with self._pending_lock:
                    self._pending.discard(key)
                continue
            if self._replicate(key, cached.blob_id):
                succeeded += 1
        return succeeded

    @property
    def pending_replication(self) -> list[NamespacedKey]:
        with self._pending_lock:
            return sorted(self._pending, key=str)

    def resolve_or_create(
        self,
        key: NamespacedKey,
        factory: Callable[[], str],
    ) -> str:
        """
        Resolve ``key``, or create a value with ``factory`` and store it.

        Used for registry pointers: the first request for a principal
        creates its on-chain registry object, later ones reuse it.
        """
        existing = self.resolve(key)
        if existing is not None:
            return existing
        with self._create_lock:
            existing = self.resolve(key)
            if existing is not None:
                return existing
            created = factory()
            self.store(key, created)
            logger.info("Created %s for %s...", key.purpose.value, key.principal[:10])
            return created

    def get_or_create_pointer(self, principal: str, factory: Callable[[], str]) -> str:
        """The principal's registry object ID, created on first use."""
        return self.resolve_or_create(NamespacedKey(principal, Purpose.REGISTRY), factory)

    # -------------------------------------------------------------------------
    # Cache management
    # -------------------------------------------------------------------------

    def warm(self, purpose: Optional[Purpose] = None) -> int:
        """Load the whole local tier (or one purpose of it) into memory."""
        loaded = self._local.load_all(purpose)
        observed = now_ms()
        with self._memory_lock:
            for key, blob_id in loaded.items():
                self._memory[key] = (blob_id, observed)
        return len(loaded)

    def invalidate(self, key: NamespacedKey) -> None:
        """Drop one key from the memory tier."""
        with self._memory_lock:
            self._memory.pop(key, None)

    def clear_cache(self) -> None:
        """Drop the memory tier. The durable tiers are untouched."""
        with self._memory_lock:
            self._memory.clear()
        logger.debug("Memory tier cleared")

    def cache_stats(self) -> dict:
        with self._memory_lock:
            keys = [str(k) for k in self._memory]
        return {
            "size": len(keys),
            "entries": [k[:20] + "..." if len(k) > 20 else k for k in keys],
            "pending_replication": len(self.pending_replication),
        }
