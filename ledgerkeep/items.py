"""
Item content lifecycle: create, write, read with lazy renewal.
"""

import logging
from typing import Any, Optional, Union

from .blob_store import BlobStoreError
from .index_store import IndexStore
from .lease import ExpiryInfo, LeaseRenewer, expiry_info
from .protocol import BlobStoreProtocol
from .types import ItemMetadata, now_ms, validate_item_id, validate_principal

logger = logging.getLogger(__name__)


def _as_bytes(content: Union[str, bytes]) -> bytes:
    return content.encode("utf-8") if isinstance(content, str) else content


class ItemManager:
    """Chats or documents for one purpose, content and index together."""

    def __init__(
        self,
        index: IndexStore,
        blobs: BlobStoreProtocol,
        renewer: LeaseRenewer,
    ):
        self._index = index
        self._blobs = blobs
        self._renewer = renewer

    @property
    def index(self) -> IndexStore:
        return self._index

    @property
    def renewer(self) -> LeaseRenewer:
        return self._renewer

    def create_item(
        self,
        principal: str,
        item_id: str,
        title: str,
        content: Union[str, bytes],
        *,
        important: bool = False,
        extra: Optional[dict[str, Any]] = None,
        now: Optional[int] = None,
    ) -> ItemMetadata:
        """Upload initial content, then record the item at the front of the index."""
        validate_principal(principal)
        validate_item_id(item_id)
        now = now_ms() if now is None else now
        policy = self._renewer.policy

        info = self._blobs.put(_as_bytes(content), epochs=policy.initial_period)
        item = ItemMetadata(
            item_id=item_id,
            title=title,
            owner=principal,
            content_blob_id=info.blob_id,
            created_at=now,
            last_activity=now,
            blob_expires_at=policy.expiry_for(policy.initial_period, now),
            current_lease_period=policy.initial_period,
            is_important=important,
            last_renewal=now,
            extra=dict(extra or {}),
        )
        return self._index.upsert_item(principal, item)

    def write_content(
        self,
        principal: str,
        item_id: str,
        content: Union[str, bytes],
        *,
        message_count: Optional[int] = None,
        now: Optional[int] = None,
    ) -> Optional[ItemMetadata]:
        """
        Replace an item's content with a freshly uploaded blob.

        Returns:
            The updated item, or None if the item does not exist
        """
        now = now_ms() if now is None else now
        policy = self._renewer.policy
        with self._index.lock_for(principal):
            item = self._index.get_item(principal, item_id)
            if item is None:
                return None
            period = item.current_lease_period or policy.initial_period
            info = self._blobs.put(_as_bytes(content), epochs=period)
            updates: dict[str, Any] = {
                "content_blob_id": info.blob_id,
                "blob_expires_at": policy.expiry_for(period, now),
                "last_renewal": now,
            }
            if message_count is not None:
                updates["message_count"] = message_count
            return self._index.update_item(principal, item_id, updates)

    def read_content(self, principal: str, item_id: str) -> Optional[bytes]:
        """
        Fetch an item's content, renewing its lease first if due.

        Returns None when the item is unknown or its blob cannot be fetched.
        """
        self._renewer.check_and_renew(principal, item_id)
        item = self._index.get_item(principal, item_id)
        if item is None:
            return None
        try:
            return self._blobs.get(item.content_blob_id)
        except BlobStoreError as e:
            logger.warning("Content for %s unavailable: %s", item_id, e)
            return None

    def is_accessible(self, principal: str, item_id: str, now: Optional[int] = None) -> bool:
        """Not expired and the blob still answers a probe."""
        now = now_ms() if now is None else now
        item = self._index.get_item(principal, item_id)
        if item is None or now >= item.blob_expires_at:
            return False
        try:
            return self._blobs.head(item.content_blob_id)
        except BlobStoreError as e:
            logger.warning("Probe for %s failed: %s", item_id, e)
            return False

    def expiry(self, principal: str, item_id: str, now: Optional[int] = None) -> Optional[ExpiryInfo]:
        item = self._index.get_item(principal, item_id)
        if item is None:
            return None
        return expiry_info(item, now_ms() if now is None else now, self._renewer.policy)

    def delete_item(self, principal: str, item_id: str) -> bool:
        return self._index.remove_item(principal, item_id)
