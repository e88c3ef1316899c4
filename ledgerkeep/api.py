"""
Core API for the ledger-backed keeper.

LedgerKeeper wires every component together from a store's configuration:

- resolve()/store(): namespaced key → blob ID through the tiered registry
- chats / documents: item managers with lazy lease renewal
- ingest(): upload, index and (optionally) protect a document
- ask(): access-gated question answering
- grant()/revoke(): owner-only policy changes
"""

import logging
import threading
from pathlib import Path
from typing import Iterable, Optional

from .access import InMemoryPolicyStore, SuiPolicyStore
from .blob_store import FileBlobStore, InMemoryBlobStore, WalrusBlobStore
from .config import StoreConfig, default_store_path, load_or_create_config
from .index_store import IndexStore
from .items import ItemManager
from .lease import LeasePolicy, LeaseRenewer, needs_renewal
from .ledger import InMemoryLedger, SuiLedger, SuiRpcClient
from .local_cache import LocalMetadataCache
from .protocol import BlobStoreProtocol, LedgerProtocol, PolicyStoreProtocol
from .providers.base import EmbeddingProvider, GenerationProvider, get_registry
from .query import AccessGatedQueryPipeline, QueryResult
from .registry import MetadataRegistry
from .search import DocumentIngestor, VectorIndex
from .types import (
    DAY_MS,
    AccessPolicy,
    ItemMetadata,
    MetadataEntry,
    NamespacedKey,
    Purpose,
    now_ms,
)

logger = logging.getLogger(__name__)

METADATA_DB = "metadata.db"
BLOB_DIR = "blobs"
POLICY_FILE = "policies.json"
VECTOR_FILE = "vectors.json"


class LedgerKeeper:
    """
    Metadata registry, item storage and gated retrieval for one store.

    Example:
        kp = LedgerKeeper()
        kp.ingest("0xalice", "notes.md", text, private=True, allowed=["0xbob"])
        result = kp.ask("0xbob", "What is in the notes?")
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        ledger: Optional[LedgerProtocol] = None,
        blobs: Optional[BlobStoreProtocol] = None,
        policies: Optional[PolicyStoreProtocol] = None,
        embedding: Optional[EmbeddingProvider] = None,
        generator: Optional[GenerationProvider] = None,
    ) -> None:
        """
        Open (or create) a store.

        Args:
            store_path: Store directory. Defaults to LEDGERKEEP_STORE_PATH
                or ~/.ledgerkeep.
            config: Pre-loaded StoreConfig (skips filesystem config discovery).
            ledger: Injected ledger (skips creation from config).
            blobs: Injected blob store (skips creation from config).
            policies: Injected policy store (skips creation from config).
            embedding: Injected embedding provider.
            generator: Injected generation provider.
        """
        # --- Config resolution ---
        if config is not None:
            self._config = config
            self._store_path = config.path
        else:
            self._store_path = Path(store_path).expanduser().resolve() if store_path else default_store_path()
            self._config = load_or_create_config(self._store_path)
        self._store_path.mkdir(parents=True, exist_ok=True)

        from .logging_config import configure_ops_log
        self._ops_log_handler = configure_ops_log(self._store_path)

        # --- Collaborators (injected or created from config) ---
        self._rpc: Optional[SuiRpcClient] = None
        self._ledger = ledger if ledger is not None else self._create_ledger()
        self._blobs = blobs if blobs is not None else self._create_blobs()
        self._policies = policies if policies is not None else self._create_policies()

        # --- Registry and items ---
        self._local = LocalMetadataCache(self._store_path / METADATA_DB)
        self._registry = MetadataRegistry(
            self._local, self._ledger, query_limit=self._config.ledger.query_limit,
        )
        lease = self._config.lease
        self._lease_policy = LeasePolicy(
            renewal_window_ms=lease.renewal_window_days * DAY_MS,
            recency_window_ms=lease.recency_window_days * DAY_MS,
            max_period=lease.max_period,
            standard_period=lease.standard_period,
            initial_period=lease.initial_period,
        )
        self._items: dict[Purpose, ItemManager] = {}
        for purpose in (Purpose.CHAT, Purpose.DOCS):
            index = IndexStore(self._registry, self._blobs, purpose)
            renewer = LeaseRenewer(index, self._blobs, self._lease_policy)
            self._items[purpose] = ItemManager(index, self._blobs, renewer)

        # Lazy-loaded (created on first use to avoid network access for metadata-only ops)
        self._embedding_provider = embedding
        self._generation_provider = generator
        self._vectors: Optional[VectorIndex] = None
        self._pipeline: Optional[AccessGatedQueryPipeline] = None
        self._provider_init_lock = threading.Lock()
        self._persist_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Construction from config
    # -------------------------------------------------------------------------

    def _sui_rpc(self) -> SuiRpcClient:
        if self._rpc is None:
            self._rpc = SuiRpcClient(self._config.ledger.rpc_url, timeout=self._config.ledger.timeout)
        return self._rpc

    def _create_ledger(self) -> LedgerProtocol:
        cfg = self._config.ledger
        if cfg.name == "sui":
            return SuiLedger(
                cfg.rpc_url,
                cfg.package_id,
                module=cfg.module,
                event=cfg.event,
                function=cfg.function,
                timeout=cfg.timeout,
                gas_budget=cfg.gas_budget,
                rpc=self._sui_rpc(),
            )
        return InMemoryLedger()

    def _create_blobs(self) -> BlobStoreProtocol:
        cfg = self._config.blobs
        if cfg.name == "walrus":
            return WalrusBlobStore(
                cfg.publisher_url, cfg.aggregator_url, epochs=cfg.epochs, timeout=cfg.timeout,
            )
        if cfg.name == "memory":
            return InMemoryBlobStore(epochs=cfg.epochs)
        return FileBlobStore(self._store_path / BLOB_DIR, epochs=cfg.epochs)

    def _create_policies(self) -> PolicyStoreProtocol:
        if self._config.access.name == "sui":
            return SuiPolicyStore(self._sui_rpc())
        return InMemoryPolicyStore.load(self._store_path / POLICY_FILE)

    def _get_embedding_provider(self) -> EmbeddingProvider:
        if self._embedding_provider is not None:
            return self._embedding_provider
        with self._provider_init_lock:
            if self._embedding_provider is None:
                self._embedding_provider = get_registry().create_embedding(
                    self._config.embedding.name, self._config.embedding.params,
                )
        return self._embedding_provider

    def _get_generation_provider(self) -> GenerationProvider:
        if self._generation_provider is not None:
            return self._generation_provider
        with self._provider_init_lock:
            if self._generation_provider is None:
                self._generation_provider = get_registry().create_generation(
                    self._config.generation.name, self._config.generation.params,
                )
        return self._generation_provider

    def _get_vectors(self) -> VectorIndex:
        if self._vectors is None:
            embedding = self._get_embedding_provider()
            with self._persist_lock:
                if self._vectors is None:
                    self._vectors = VectorIndex.load(self._store_path / VECTOR_FILE, embedding)
        return self._vectors

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def registry(self) -> MetadataRegistry:
        return self._registry

    @property
    def blobs(self) -> BlobStoreProtocol:
        return self._blobs

    @property
    def policies(self) -> PolicyStoreProtocol:
        return self._policies

    @property
    def lease_policy(self) -> LeasePolicy:
        return self._lease_policy

    @property
    def chats(self) -> ItemManager:
        return self._items[Purpose.CHAT]

    @property
    def documents(self) -> ItemManager:
        return self._items[Purpose.DOCS]

    def items_for(self, purpose: Purpose | str) -> ItemManager:
        purpose = Purpose(purpose)
        if purpose not in self._items:
            raise ValueError(f"No items for purpose '{purpose.value}'")
        return self._items[purpose]

    @property
    def pipeline(self) -> AccessGatedQueryPipeline:
        """The query pipeline, created with providers on first use."""
        if self._pipeline is None:
            q = self._config.query
            self._pipeline = AccessGatedQueryPipeline(
                self._get_vectors(),
                self._policies,
                self._blobs,
                self._get_generation_provider(),
                top_k=q.top_k,
                max_workers=q.max_workers,
                max_tokens=q.max_tokens,
            )
        return self._pipeline

    # -------------------------------------------------------------------------
    # Metadata registry
    # -------------------------------------------------------------------------

    def resolve(self, principal: str, purpose: Purpose | str) -> Optional[str]:
        return self._registry.resolve(NamespacedKey(principal, Purpose(purpose)))

    def lookup(self, principal: str, purpose: Purpose | str) -> Optional[MetadataEntry]:
        return self._registry.lookup(NamespacedKey(principal, Purpose(purpose)))

    def store(self, principal: str, purpose: Purpose | str, blob_id: str) -> None:
        self._registry.store(NamespacedKey(principal, Purpose(purpose)), blob_id)

    def replicate_pending(self) -> int:
        return self._registry.replicate_pending()

    def cache_stats(self) -> dict:
        return self._registry.cache_stats()

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def list_items(self, principal: str, purpose: Purpose | str = Purpose.CHAT) -> list[ItemMetadata]:
        return self.items_for(purpose).index.list_items(principal)

    def renew_due(
        self,
        principal: str,
        purpose: Purpose | str = Purpose.CHAT,
        now: Optional[int] = None,
    ) -> list[str]:
        """
        Run the renewal check over every item the principal has.

        Returns:
            IDs of items whose lease was renewed
        """
        now = now_ms() if now is None else now
        manager = self.items_for(purpose)
        renewed = []
        for item in manager.index.list_items(principal):
            if not needs_renewal(item, now, self._lease_policy):
                continue
            if manager.renewer.check_and_renew(principal, item.item_id, now):
                renewed.append(item.item_id)
        return renewed

    # -------------------------------------------------------------------------
    # Documents and queries
    # -------------------------------------------------------------------------

    def _local_policies(self) -> InMemoryPolicyStore:
        if not isinstance(self._policies, InMemoryPolicyStore):
            raise RuntimeError(
                "Policies are managed on-chain for this store; "
                "change them with an owner-signed transaction"
            )
        return self._policies

    def _save_policies(self) -> None:
        if isinstance(self._policies, InMemoryPolicyStore):
            self._policies.save(self._store_path / POLICY_FILE)

    def _ingestor(self) -> DocumentIngestor:
        policies = self._policies if isinstance(self._policies, InMemoryPolicyStore) else None
        q = self._config.query
        return DocumentIngestor(
            self.documents,
            self._get_vectors(),
            policies=policies,
            chunk_size=q.chunk_size,
            chunk_overlap=q.chunk_overlap,
        )

    def ingest(
        self,
        owner: str,
        filename: str,
        content: str,
        *,
        private: bool = False,
        allowed: Iterable[str] = (),
        file_type: str = "text/plain",
    ) -> ItemMetadata:
        """Upload and index a document. Private documents get a policy."""
        item = self._ingestor().ingest(
            owner, filename, content, private=private, allowed=allowed, file_type=file_type,
        )
        with self._persist_lock:
            self._vectors.save(self._store_path / VECTOR_FILE)
            if private:
                self._save_policies()
        return item

    def delete_document(self, owner: str, document_id: str) -> bool:
        """Remove a document from the owner's index and from search."""
        if not self._ingestor().remove(owner, document_id):
            return False
        with self._persist_lock:
            self._vectors.save(self._store_path / VECTOR_FILE)
        return True

    def ask(self, principal: str, question: str, top_k: Optional[int] = None) -> QueryResult:
        return self.pipeline.query(principal, question, top_k)

    def grant(self, resource_id: str, principal: str, granted_by: str) -> AccessPolicy:
        policy = self._local_policies().grant_access(resource_id, principal, granted_by)
        with self._persist_lock:
            self._save_policies()
        return policy

    def revoke(self, resource_id: str, principal: str, revoked_by: str) -> AccessPolicy:
        policy = self._local_policies().revoke_access(resource_id, principal, revoked_by)
        with self._persist_lock:
            self._save_policies()
        return policy

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the local tier and network clients."""
        if getattr(self, "_local", None) is not None:
            self._local.close()
        for resource in (getattr(self, "_ledger", None), getattr(self, "_blobs", None)):
            close = getattr(resource, "close", None)
            if close is not None:
                close()
        if getattr(self, "_rpc", None) is not None:
            self._rpc.close()
            self._rpc = None

        # Remove ops log handler to avoid handler accumulation
        if getattr(self, "_ops_log_handler", None):
            logging.getLogger("ledgerkeep").removeHandler(self._ops_log_handler)
            self._ops_log_handler.close()
            self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
