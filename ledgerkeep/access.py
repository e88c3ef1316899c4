"""
Access policies for stored resources.

A resource with no policy at all is readable by everyone. Content created
before policies existed has none, and it must stay readable.
"""

import json
import logging
import re
import threading
from pathlib import Path
from typing import Iterable, Optional

from .ledger import LedgerError, SuiRpcClient
from .types import AccessPolicy, validate_principal

logger = logging.getLogger(__name__)

# Access granted to a resource that has no policy record
ACCESS_WITHOUT_POLICY = True

# Sui object IDs: 0x followed by up to 32 bytes of hex
_OBJECT_ID_RE = re.compile(r"^0x[0-9a-fA-F]{1,64}$")


def check_access(policy: Optional[AccessPolicy], principal: str) -> bool:
    """Owner, then public flag, then allow-list; no policy means public."""
    if policy is None:
        return ACCESS_WITHOUT_POLICY
    return policy.allows(principal)


class InMemoryPolicyStore:
    """
    Process-local policy records with owner-only mutation.

    Raises:
        KeyError: mutating a resource that has no policy
        PermissionError: mutation requested by someone other than the owner
    """

    def __init__(self):
        self._policies: dict[str, AccessPolicy] = {}
        self._lock = threading.Lock()

    def create_policy(
        self,
        resource_id: str,
        owner: str,
        *,
        is_public: bool = False,
        allowed: Iterable[str] = (),
    ) -> AccessPolicy:
        validate_principal(owner)
        policy = AccessPolicy(
            resource_id=resource_id,
            owner=owner,
            is_public=is_public,
            allowed_principals=frozenset(allowed),
        )
        with self._lock:
            existing = self._policies.get(resource_id)
            if existing is not None and existing.owner != owner:
                raise PermissionError(f"{resource_id} is owned by another principal")
            self._policies[resource_id] = policy
        logger.info(
            "Created access policy for %s (public=%s, allowed=%d)",
            resource_id, is_public, len(policy.allowed_principals),
        )
        return policy

    def get_policy(self, resource_id: str) -> Optional[AccessPolicy]:
        with self._lock:
            return self._policies.get(resource_id)

    def _replace(self, resource_id: str, requested_by: str, **changes) -> AccessPolicy:
        with self._lock:
            policy = self._policies.get(resource_id)
            if policy is None:
                raise KeyError(f"No access policy for {resource_id}")
            if policy.owner != requested_by:
                raise PermissionError("Only the owner can change access")
            updated = AccessPolicy(
                resource_id=policy.resource_id,
                owner=policy.owner,
                is_public=changes.get("is_public", policy.is_public),
                allowed_principals=changes.get("allowed_principals", policy.allowed_principals),
            )
            self._policies[resource_id] = updated
        return updated

    def grant_access(self, resource_id: str, principal: str, granted_by: str) -> AccessPolicy:
        validate_principal(principal)
        policy = self.get_policy(resource_id)
        allowed = (policy.allowed_principals if policy else frozenset()) | {principal}
        updated = self._replace(resource_id, granted_by, allowed_principals=allowed)
        logger.info("Granted %s... access to %s", principal[:10], resource_id)
        return updated

    def revoke_access(self, resource_id: str, principal: str, revoked_by: str) -> AccessPolicy:
        policy = self.get_policy(resource_id)
        allowed = (policy.allowed_principals if policy else frozenset()) - {principal}
        updated = self._replace(resource_id, revoked_by, allowed_principals=allowed)
        logger.info("Revoked %s... access to %s", principal[:10], resource_id)
        return updated

    def set_public(self, resource_id: str, is_public: bool, requested_by: str) -> AccessPolicy:
        return self._replace(resource_id, requested_by, is_public=is_public)

    def owned_resources(self, owner: str) -> list[str]:
        with self._lock:
            return sorted(r for r, p in self._policies.items() if p.owner == owner)

    def accessible_resources(self, principal: str) -> list[str]:
        """Resources with a policy that admits ``principal``."""
        with self._lock:
            return sorted(r for r, p in self._policies.items() if p.allows(principal))

    def save(self, path: Path) -> None:
        with self._lock:
            records = [
                {
                    "resource_id": p.resource_id,
                    "owner": p.owner,
                    "is_public": p.is_public,
                    "allowed": sorted(p.allowed_principals),
                }
                for p in self._policies.values()
            ]
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(path.suffix + ".tmp")
        tmp.write_text(json.dumps({"policies": records}, indent=2), encoding="utf-8")
        tmp.replace(path)

    @classmethod
    def load(cls, path: Path) -> "InMemoryPolicyStore":
        """Load saved policies, or return an empty store if the file is missing."""
        store = cls()
        if not path.exists():
            return store
        data = json.loads(path.read_text(encoding="utf-8"))
        for record in data.get("policies", []):
            store._policies[record["resource_id"]] = AccessPolicy(
                resource_id=record["resource_id"],
                owner=record["owner"],
                is_public=bool(record.get("is_public", False)),
                allowed_principals=frozenset(record.get("allowed", ())),
            )
        return store


class SuiPolicyStore:
    """
    Reads ``AccessPolicy`` objects from Sui by object ID.

    Mutation happens through owner-signed transactions elsewhere.
    """

    def __init__(self, rpc: SuiRpcClient):
        self._rpc = rpc

    def get_policy(self, resource_id: str) -> Optional[AccessPolicy]:
        """
        Fetch and decode one policy object. Raises LedgerError if unreadable.

        A resource ID that is not an object ID cannot name an on-chain
        policy, so it has none.
        """
        if not _OBJECT_ID_RE.match(resource_id):
            return None
        result = self._rpc.call(
            "sui_getObject",
            [resource_id, {"showContent": True, "showType": True}],
        ) or {}

        error = result.get("error")
        if error:
            if isinstance(error, dict) and error.get("code") in ("notExists", "deleted"):
                return None
            raise LedgerError(f"Policy {resource_id} unreadable: {error}")

        content = (result.get("data") or {}).get("content") or {}
        fields = content.get("fields")
        if not fields or "owner" not in fields:
            raise LedgerError(f"Object {resource_id} is not an access policy")

        return AccessPolicy(
            resource_id=resource_id,
            owner=fields["owner"],
            is_public=bool(fields.get("is_public", False)),
            allowed_principals=frozenset(fields.get("allowed_users") or ()),
        )
