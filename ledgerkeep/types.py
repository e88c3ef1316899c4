"""
Data types for ledger-backed metadata.
"""

import re
import time
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Optional


# All item timestamps are epoch milliseconds, matching the stored index format
DAY_MS = 24 * 60 * 60 * 1000


def now_ms() -> int:
    """Current UTC time in epoch milliseconds."""
    return int(time.time() * 1000)


MAX_PRINCIPAL_LENGTH = 256
MAX_ID_LENGTH = 1024

# Principals are wallet addresses or similar opaque identities: no whitespace,
# no control chars, no path separators
_PRINCIPAL_BLOCKED_RE = re.compile(r'[\s\x00-\x1f\x7f/\\]')

# Item IDs: printable characters minus control chars and a small blocklist
_ID_BLOCKED_RE = re.compile(r'[\x00-\x1f\x7f\\`<>|;"\']')


def validate_principal(principal: str) -> None:
    """Validate a principal identity string."""
    if not isinstance(principal, str) or not principal or len(principal) > MAX_PRINCIPAL_LENGTH:
        raise ValueError(f"Principal must be 1-{MAX_PRINCIPAL_LENGTH} characters")
    if _PRINCIPAL_BLOCKED_RE.search(principal):
        raise ValueError(f"Principal contains invalid characters: {principal!r}")


def validate_item_id(item_id: str) -> None:
    """Validate an item ID: length and no dangerous characters."""
    if not isinstance(item_id, str) or not item_id or len(item_id) > MAX_ID_LENGTH:
        raise ValueError(f"Item ID must be 1-{MAX_ID_LENGTH} characters")
    if _ID_BLOCKED_RE.search(item_id):
        raise ValueError(f"Item ID contains invalid characters: {item_id!r}")


def validate_blob_id(blob_id: str) -> None:
    """Validate a content identifier returned by the blob store."""
    if not isinstance(blob_id, str) or not blob_id.strip():
        raise ValueError("Blob ID is required")
    if any(c.isspace() for c in blob_id):
        raise ValueError(f"Blob ID contains whitespace: {blob_id!r}")


class Purpose(str, Enum):
    """What a principal-keyed metadata value points at."""
    CHAT = "chat"
    DOCS = "docs"
    REGISTRY = "registry"

    @property
    def tag(self) -> str:
        """Literal prefix carried on stored values, e.g. ``"chat:"``."""
        return f"{self.value}:"


class Tier(str, Enum):
    """Where a resolved value was found. Diagnostic only."""
    MEMORY = "memory"
    LOCAL = "durable-local"
    LEDGER = "ledger"


def encode_value(purpose: Purpose, blob_id: str) -> str:
    """Prefix a blob ID with its purpose tag for a shared key/value stream."""
    return purpose.tag + blob_id


def decode_value(purpose: Purpose, raw: Optional[str]) -> Optional[str]:
    """Strip the purpose tag from a stored value.

    Returns None when the value carries a different tag (or none at all),
    so a value written for one purpose never satisfies a lookup for another.
    """
    if not raw or not raw.startswith(purpose.tag):
        return None
    value = raw[len(purpose.tag):]
    return value or None


@dataclass(frozen=True)
class NamespacedKey:
    """A principal plus the purpose its value serves."""
    principal: str
    purpose: Purpose

    def __post_init__(self):
        validate_principal(self.principal)
        if not isinstance(self.purpose, Purpose):
            object.__setattr__(self, "purpose", Purpose(self.purpose))

    def __str__(self) -> str:
        return f"{self.purpose.value}/{self.principal}"


@dataclass(frozen=True)
class MetadataEntry:
    """A resolved key→blob mapping and the tier it came from."""
    key: NamespacedKey
    blob_id: str
    tier: Tier
    observed_at: int


@dataclass
class ItemMetadata:
    """
    Index entry for one chat or document.

    ``content_blob_id`` points at the item body in the blob store. The lease
    fields track when that blob's storage runs out and for how many periods
    it was last written. Anything outside the known fields (filename, file
    type, page count, ...) travels in ``extra``.
    """
    item_id: str
    title: str
    owner: str
    content_blob_id: str
    created_at: int
    last_activity: int
    blob_expires_at: int
    current_lease_period: int
    is_important: bool = False
    last_renewal: int = 0
    message_count: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        d = {f.name: getattr(self, f.name) for f in fields(self) if f.name != "extra"}
        d.update(self.extra)
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ItemMetadata":
        known = {f.name for f in fields(cls)} - {"extra"}
        kwargs = {k: v for k, v in data.items() if k in known}
        extra = {k: v for k, v in data.items() if k not in known}
        return cls(**kwargs, extra=extra)


@dataclass
class IndexDocument:
    """
    Per-principal list of items, stored whole as one blob.

    Item IDs are unique; upserting an existing ID replaces the old entry and
    moves it to the front.
    """
    principal: str
    items: list[ItemMetadata] = field(default_factory=list)
    last_updated: int = 0

    @classmethod
    def empty(cls, principal: str) -> "IndexDocument":
        return cls(principal=principal, items=[], last_updated=now_ms())

    def get(self, item_id: str) -> Optional[ItemMetadata]:
        for item in self.items:
            if item.item_id == item_id:
                return item
        return None

    def upsert(self, item: ItemMetadata) -> None:
        self.items = [i for i in self.items if i.item_id != item.item_id]
        self.items.insert(0, item)

    def remove(self, item_id: str) -> bool:
        before = len(self.items)
        self.items = [i for i in self.items if i.item_id != item_id]
        return len(self.items) != before

    def to_dict(self) -> dict[str, Any]:
        return {
            "principal": self.principal,
            "items": [i.to_dict() for i in self.items],
            "last_updated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexDocument":
        """Parse a stored index. Raises ValueError/KeyError/TypeError on bad shape."""
        if not isinstance(data, dict):
            raise ValueError("Index document must be a JSON object")
        items: list[ItemMetadata] = []
        seen: set[str] = set()
        for raw in data["items"]:
            item = ItemMetadata.from_dict(raw)
            # First occurrence wins: front of the list is the most recent write
            if item.item_id in seen:
                continue
            seen.add(item.item_id)
            items.append(item)
        return cls(
            principal=data["principal"],
            items=items,
            last_updated=int(data.get("last_updated", 0)),
        )


@dataclass(frozen=True)
class AccessPolicy:
    """Owner / public / allow-list record gating reads of one resource."""
    resource_id: str
    owner: str
    is_public: bool = False
    allowed_principals: frozenset[str] = frozenset()

    def allows(self, principal: str) -> bool:
        if principal == self.owner:
            return True
        if self.is_public:
            return True
        return principal in self.allowed_principals


@dataclass
class SourceCandidate:
    """A search hit awaiting authorization. Never persisted."""
    content_ref: str
    resource_id: str
    relevance_score: float
    preview_text: str
    owner_hint: Optional[str] = None
    filename: str = "unknown"
    metadata: dict[str, Any] = field(default_factory=dict)
