"""
Lease renewal policy for item content blobs.

Blob storage is leased for a number of periods (one period = one day).
Renewal happens lazily when an item is accessed, never from a sweep:

- Only items expiring within the renewal window are candidates.
- An item whose lease already ran out stays expired.
- Important items renew for the maximum period, recently active ones for
  the standard period, and idle ones are left to lapse.

Renewing re-uploads the content, since a stored blob cannot be extended in
place; the item then points at the fresh blob.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .blob_store import BlobStoreError
from .index_store import IndexStore
from .protocol import BlobStoreProtocol
from .types import DAY_MS, ItemMetadata, now_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LeasePolicy:
    """Thresholds for the renewal decision."""
    renewal_window_ms: int = 7 * DAY_MS
    recency_window_ms: int = 30 * DAY_MS
    max_period: int = 365
    standard_period: int = 30
    initial_period: int = 30
    period_ms: int = DAY_MS

    def expiry_for(self, period: int, now: int) -> int:
        return now + period * self.period_ms


DEFAULT_POLICY = LeasePolicy()


def needs_renewal(item: ItemMetadata, now: int, policy: LeasePolicy = DEFAULT_POLICY) -> bool:
    """True iff the lease is still live but ends inside the renewal window."""
    remaining = item.blob_expires_at - now
    return 0 < remaining < policy.renewal_window_ms


def recommended_lease_period(
    item: ItemMetadata,
    now: int,
    policy: LeasePolicy = DEFAULT_POLICY,
) -> int:
    """Periods to renew for; 0 means do not renew."""
    if item.is_important:
        return policy.max_period
    if now - item.last_activity < policy.recency_window_ms:
        return policy.standard_period
    return 0


@dataclass(frozen=True)
class ExpiryInfo:
    expires_at: int
    days_remaining: int
    needs_renewal: bool


def expiry_info(item: ItemMetadata, now: int, policy: LeasePolicy = DEFAULT_POLICY) -> ExpiryInfo:
    remaining = item.blob_expires_at - now
    return ExpiryInfo(
        expires_at=item.blob_expires_at,
        days_remaining=max(0, remaining // DAY_MS),
        needs_renewal=needs_renewal(item, now, policy),
    )


class LeaseRenewer:
    """Applies the policy to stored items."""

    def __init__(
        self,
        index: IndexStore,
        blobs: BlobStoreProtocol,
        policy: LeasePolicy = DEFAULT_POLICY,
    ):
        self._index = index
        self._blobs = blobs
        self._policy = policy

    @property
    def policy(self) -> LeasePolicy:
        return self._policy

    def check_and_renew(self, principal: str, item_id: str, now: Optional[int] = None) -> bool:
        """
        Renew one item's content lease if the policy calls for it.

        Returns:
            True if the content was re-uploaded and the index updated
        """
        now = now_ms() if now is None else now
        with self._index.lock_for(principal):
            item = self._index.get_item(principal, item_id)
            if item is None:
                return False
            if not needs_renewal(item, now, self._policy):
                return False

            period = recommended_lease_period(item, now, self._policy)
            if period == 0:
                logger.info("Item %s is inactive, letting its lease lapse", item_id)
                return False

            try:
                content = self._blobs.get(item.content_blob_id)
                info = self._blobs.put(content, epochs=period)
                self._index.update_item(principal, item_id, {
                    "content_blob_id": info.blob_id,
                    "last_renewal": now,
                    "blob_expires_at": self._policy.expiry_for(period, now),
                    "current_lease_period": period,
                }, touch=False)
            except BlobStoreError as e:
                logger.warning("Failed to renew item %s: %s", item_id, e)
                return False

        logger.info("Renewed item %s for %d periods", item_id, period)
        return True
