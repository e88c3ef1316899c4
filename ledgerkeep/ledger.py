"""
Ledger clients for the metadata event stream.

The ledger is a single flat stream of ``MetadataUpdated`` events, each
carrying a principal address and a purpose-prefixed blob ID. Reads scan the
stream newest-first through the Sui JSON-RPC API. Writes call the
``update_metadata`` Move function through the ``sui`` CLI, which owns the
signing key.
"""

from __future__ import annotations

import logging
import subprocess
import threading
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .types import now_ms

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0

# suix_queryEvents caps page size at 50
MAX_PAGE_SIZE = 50


class LedgerError(Exception):
    """Error reading from or writing to the ledger."""


@dataclass(frozen=True)
class LedgerEvent:
    """One "metadata updated" event as observed on the ledger."""
    principal: str
    value: str
    timestamp_ms: int = 0
    tx_digest: Optional[str] = None


class SuiRpcClient:
    """Minimal JSON-RPC client for a Sui full node."""

    def __init__(self, rpc_url: str, *, timeout: float = DEFAULT_TIMEOUT):
        self._rpc_url = rpc_url
        self._client = httpx.Client(
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )
        self._next_id = 0
        self._id_lock = threading.Lock()

    def call(self, method: str, params: list) -> Any:
        """POST a JSON-RPC request and return its ``result``.

        Raises LedgerError on transport failure, HTTP error status, or a
        JSON-RPC error object.
        """
        with self._id_lock:
            self._next_id += 1
            request_id = self._next_id
        payload = {"jsonrpc": "2.0", "id": request_id, "method": method, "params": params}
        try:
            resp = self._client.post(self._rpc_url, json=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            raise LedgerError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise LedgerError(f"{method} returned invalid JSON") from e

        if "error" in data:
            err = data["error"]
            message = err.get("message", err) if isinstance(err, dict) else err
            raise LedgerError(f"{method} error: {message}")
        return data.get("result")

    def close(self) -> None:
        self._client.close()


class SuiLedger:
    """
    Metadata event log on Sui.

    Args:
        rpc_url: Full node JSON-RPC endpoint
        package_id: Package that publishes the ``metadata_registry`` module
        module: Move module name
        event: Event struct name emitted by ``function``
        function: Entry function taking (address, string)
        sui_binary: Path to the ``sui`` CLI used for signed writes
        gas_budget: Gas budget passed to ``sui client call``
    """

    def __init__(
        self,
        rpc_url: str,
        package_id: str,
        *,
        module: str = "metadata_registry",
        event: str = "MetadataUpdated",
        function: str = "update_metadata",
        timeout: float = DEFAULT_TIMEOUT,
        sui_binary: str = "sui",
        gas_budget: int = 10_000_000,
        rpc: Optional[SuiRpcClient] = None,
    ):
        self._package_id = package_id
        self._module = module
        self._event = event
        self._function = function
        self._timeout = timeout
        self._sui_binary = sui_binary
        self._gas_budget = gas_budget
        self._rpc = rpc or SuiRpcClient(rpc_url, timeout=timeout)

    @property
    def event_type(self) -> str:
        return f"{self._package_id}::{self._module}::{self._event}"

    def query_events(self, limit: int) -> list[LedgerEvent]:
        """Scan MetadataUpdated events newest-first, up to ``limit``."""
        if not self._package_id:
            raise LedgerError("Ledger package_id is not configured")

        events: list[LedgerEvent] = []
        cursor = None
        while len(events) < limit:
            page_size = min(MAX_PAGE_SIZE, limit - len(events))
            result = self._rpc.call(
                "suix_queryEvents",
                [{"MoveEventType": self.event_type}, cursor, page_size, True],
            ) or {}
            for raw in result.get("data", []):
                parsed = raw.get("parsedJson") or {}
                principal = parsed.get("user_address")
                value = parsed.get("metadata_blob_id")
                if not principal or not isinstance(value, str):
                    continue
                events.append(LedgerEvent(
                    principal=principal,
                    value=value,
                    timestamp_ms=int(raw.get("timestampMs") or 0),
                    tx_digest=(raw.get("id") or {}).get("txDigest"),
                ))
            if not result.get("hasNextPage"):
                break
            cursor = result.get("nextCursor")
            if cursor is None:
                break
        return events[:limit]

    def append(self, principal: str, value: str) -> None:
        """Emit a MetadataUpdated event by calling the Move entry function."""
        if not self._package_id:
            raise LedgerError("Ledger package_id is not configured")

        cmd = [
            self._sui_binary, "client", "call",
            "--package", self._package_id,
            "--module", self._module,
            "--function", self._function,
            "--args", principal, value,
            "--gas-budget", str(self._gas_budget),
            "--json",
        ]
        try:
            proc = subprocess.run(
                cmd, capture_output=True, text=True, timeout=self._timeout * 3,
            )
        except FileNotFoundError as e:
            raise LedgerError(f"sui CLI not found: {self._sui_binary}") from e
        except subprocess.TimeoutExpired as e:
            raise LedgerError("sui client call timed out") from e

        if proc.returncode != 0:
            raise LedgerError(
                f"sui client call failed ({proc.returncode}): {proc.stderr.strip()[:500]}"
            )
        logger.debug("Ledger event submitted for %s", principal[:10])

    def close(self) -> None:
        self._rpc.close()


class InMemoryLedger:
    """Process-local event log with the same newest-first read contract."""

    def __init__(self):
        self._events: list[LedgerEvent] = []
        self._lock = threading.Lock()

    def query_events(self, limit: int) -> list[LedgerEvent]:
        with self._lock:
            return list(reversed(self._events))[:limit]

    def append(self, principal: str, value: str) -> None:
        with self._lock:
            self._events.append(LedgerEvent(principal, value, now_ms()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def close(self) -> None:
        pass
