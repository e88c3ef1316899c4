"""
Per-principal index documents stored as blobs.

Each principal has one index per purpose (chats, documents). The index is
a JSON blob; its blob ID is resolved through the metadata registry. Every
mutation is load → modify → save of the whole document, and each save
supersedes the previous blob.

Mutations for the same principal are serialized with a per-principal lock
so two requests in this process cannot lose each other's changes. Writers
in other processes are still last-write-wins at the document level.
"""

import json
import logging
import threading
from dataclasses import fields
from typing import Any, Optional

from .blob_store import BlobStoreError
from .protocol import BlobStoreProtocol
from .registry import MetadataRegistry
from .types import (
    IndexDocument,
    ItemMetadata,
    NamespacedKey,
    Purpose,
    now_ms,
    validate_item_id,
    validate_principal,
)

logger = logging.getLogger(__name__)

_ITEM_FIELDS = frozenset(f.name for f in fields(ItemMetadata)) - {"extra"}


class IndexStore:
    """Load, save and edit index documents for one purpose."""

    def __init__(
        self,
        registry: MetadataRegistry,
        blobs: BlobStoreProtocol,
        purpose: Purpose = Purpose.CHAT,
    ):
        if purpose is Purpose.REGISTRY:
            raise ValueError("Registry pointers are not index documents")
        self._registry = registry
        self._blobs = blobs
        self._purpose = purpose
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @property
    def purpose(self) -> Purpose:
        return self._purpose

    def _key(self, principal: str) -> NamespacedKey:
        return NamespacedKey(principal, self._purpose)

    def lock_for(self, principal: str) -> threading.RLock:
        """The lock serializing index mutations for ``principal``."""
        with self._locks_guard:
            lock = self._locks.get(principal)
            if lock is None:
                lock = threading.RLock()
                self._locks[principal] = lock
            return lock

    # -------------------------------------------------------------------------
    # Whole-document operations
    # -------------------------------------------------------------------------

    def load_index(self, principal: str) -> IndexDocument:
        """
        Load the principal's index.

        Returns an empty index for a first-time principal, and also when the
        stored blob cannot be fetched or parsed. Storage trouble here is
        logged rather than surfaced.
        """
        validate_principal(principal)
        blob_id = self._registry.resolve(self._key(principal))
        if blob_id is None:
            logger.debug("No %s index for %s..., starting empty", self._purpose.value, principal[:10])
            return IndexDocument.empty(principal)

        try:
            raw = self._blobs.get(blob_id)
        except BlobStoreError as e:
            logger.warning("Failed to load %s index %s: %s", self._purpose.value, blob_id, e)
            return IndexDocument.empty(principal)

        try:
            index = IndexDocument.from_dict(json.loads(raw.decode("utf-8")))
        except (UnicodeDecodeError, ValueError, KeyError, TypeError) as e:
            logger.warning("Unreadable %s index %s: %s", self._purpose.value, blob_id, e)
            return IndexDocument.empty(principal)

        if index.principal != principal:
            logger.warning(
                "%s index %s belongs to %s..., not %s...",
                self._purpose.value, blob_id, index.principal[:10], principal[:10],
            )
            return IndexDocument.empty(principal)

        logger.debug(
            "Loaded %s index for %s... (%d items)",
            self._purpose.value, principal[:10], len(index.items),
        )
        return index

    def save_index(self, doc: IndexDocument) -> str:
        """Upload the whole document as a new blob and point the registry at it."""
        validate_principal(doc.principal)
        doc.last_updated = now_ms()
        data = json.dumps(doc.to_dict(), ensure_ascii=False).encode("utf-8")
        info = self._blobs.put(data)
        self._registry.store(self._key(doc.principal), info.blob_id)
        logger.debug(
            "Saved %s index for %s... -> %s (%d items)",
            self._purpose.value, doc.principal[:10], info.blob_id[:20], len(doc.items),
        )
        return info.blob_id

    # -------------------------------------------------------------------------
    # Item operations
    # -------------------------------------------------------------------------

    def upsert_item(self, principal: str, item: ItemMetadata) -> ItemMetadata:
        """Insert ``item`` at the front, replacing any entry with the same ID."""
        validate_item_id(item.item_id)
        with self.lock_for(principal):
            index = self.load_index(principal)
            index.upsert(item)
            self.save_index(index)
        return item

    def update_item(
        self,
        principal: str,
        item_id: str,
        updates: dict[str, Any],
        *,
        touch: bool = True,
    ) -> Optional[ItemMetadata]:
        """
        Apply a partial update to one item, keeping its position.

        Unknown keys land in ``extra``. ``item_id`` cannot be changed. With
        ``touch`` the item's ``last_activity`` is set to now.

        Returns:
            The updated item, or None if the index has no such item
        """
        if "item_id" in updates:
            raise ValueError("item_id cannot be updated")
        with self.lock_for(principal):
            index = self.load_index(principal)
            item = index.get(item_id)
            if item is None:
                return None
            for name, value in updates.items():
                if name in _ITEM_FIELDS:
                    setattr(item, name, value)
                else:
                    item.extra[name] = value
            if touch:
                item.last_activity = now_ms()
            self.save_index(index)
        return item

    def remove_item(self, principal: str, item_id: str) -> bool:
        """Drop an item from the index. Its content blob is left alone."""
        with self.lock_for(principal):
            index = self.load_index(principal)
            if not index.remove(item_id):
                return False
            self.save_index(index)
        return True

    def get_item(self, principal: str, item_id: str) -> Optional[ItemMetadata]:
        return self.load_index(principal).get(item_id)

    def list_items(self, principal: str) -> list[ItemMetadata]:
        """All items, most recently active first."""
        items = self.load_index(principal).items
        return sorted(items, key=lambda i: i.last_activity, reverse=True)

    def set_importance(self, principal: str, item_id: str, important: bool) -> Optional[ItemMetadata]:
        return self.update_item(principal, item_id, {"is_important": important})
