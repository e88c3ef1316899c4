"""
ledgerkeep

Durable per-user metadata on a ledger, content in a blob store, and
question answering that only ever sees content the asker may read.

Quick Start:
    from ledgerkeep import LedgerKeeper

    kp = LedgerKeeper()  # uses ~/.ledgerkeep/
    kp.store("0xabc...", "chat", blob_id)
    kp.resolve("0xabc...", "chat")

CLI Usage:
    ledgerkeep resolve 0xabc... --purpose chat
    ledgerkeep ingest notes.md --owner 0xabc... --private --allow 0xdef...
    ledgerkeep ask "what is in the notes?" --as 0xdef...

Environment Variables:
    LEDGERKEEP_STORE_PATH             - Override default store location
    LEDGERKEEP_OPENAI_API_KEY         - API key for OpenAI providers
    LEDGERKEEP_SUI_RPC_URL            - Sui full node endpoint
    LEDGERKEEP_WALRUS_PUBLISHER_URL   - Walrus publisher endpoint
    LEDGERKEEP_WALRUS_AGGREGATOR_URL  - Walrus aggregator endpoint

Configuration is persisted in ledgerkeep.toml within the store directory.
"""

from .api import LedgerKeeper
from .query import AccessGatedQueryPipeline, QueryOutcome, QueryResult
from .registry import MetadataRegistry
from .types import (
    AccessPolicy,
    IndexDocument,
    ItemMetadata,
    MetadataEntry,
    NamespacedKey,
    Purpose,
    Tier,
)

__version__ = "0.1.0"
__all__ = [
    "LedgerKeeper",
    "MetadataRegistry",
    "AccessGatedQueryPipeline",
    "QueryOutcome",
    "QueryResult",
    "AccessPolicy",
    "IndexDocument",
    "ItemMetadata",
    "MetadataEntry",
    "NamespacedKey",
    "Purpose",
    "Tier",
]
