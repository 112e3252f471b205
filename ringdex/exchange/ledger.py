"""
RingDEX Order Ledger  (persistent state)

Three append-only maps survive across calls:

  filled[order_hash]    cumulative filled amount (primary side)
  cancelled[order_hash] cumulative cancelled amount (primary side)
  cutoffs[owner]        timestamp at or before which the owner's orders are void

Values only ever grow and entries are never deleted.  A ring's fill updates
are validated first and then applied together, so readers never observe half
a ring.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Dict, Mapping

from eth_utils import to_checksum_address

logger = logging.getLogger(__name__)


class OrderLedger:
    """In-memory monotonic key-value store for order history."""

    def __init__(self) -> None:
        self._filled: Dict[bytes, int] = {}
        self._cancelled: Dict[bytes, int] = {}
        self._cutoffs: Dict[str, int] = {}

    # =====================================================================
    #  Point lookups
    # =====================================================================

    def get_filled(self, order_hash: bytes) -> int:
        return self._filled.get(order_hash, 0)

    def get_cancelled(self, order_hash: bytes) -> int:
        return self._cancelled.get(order_hash, 0)

    def get_cutoff(self, owner: str) -> int:
        return self._cutoffs.get(to_checksum_address(owner), 0)

    # =====================================================================
    #  Monotonic updates
    # =====================================================================

    def add_cancelled(self, order_hash: bytes, amount: int) -> int:
        if amount < 0:
            raise ValueError("Cancelled amount cannot decrease")
        total = self.get_cancelled(order_hash) + amount
        self._cancelled[order_hash] = total
        return total

    def set_cutoff(self, owner: str, cutoff: int) -> None:
        owner = to_checksum_address(owner)
        if cutoff <= self._cutoffs.get(owner, 0):
            raise ValueError("Cutoff can only move forward")
        self._cutoffs[owner] = cutoff

    def commit_fills(self, updates: Mapping[bytes, int]) -> None:
        """
        Add a ring's fill increments in one step.

        Every increment is checked before any is applied.
        """
        for order_hash, amount in updates.items():
            if amount < 0:
                raise ValueError(f"Negative fill increment for 0x{order_hash.hex()}")
        for order_hash, amount in updates.items():
            self._filled[order_hash] = self.get_filled(order_hash) + amount

    # =====================================================================
    #  State root / serialization
    # =====================================================================

    def compute_state_root(self) -> str:
        """
        Deterministic digest of the whole ledger.

        Returns:
            64-char hex string (blake2b-256)
        """
        hasher = hashlib.blake2b(digest_size=32)
        for order_hash in sorted(self._filled):
            hasher.update(b"F" + order_hash + self._filled[order_hash].to_bytes(32, "big"))
        for order_hash in sorted(self._cancelled):
            hasher.update(b"C" + order_hash + self._cancelled[order_hash].to_bytes(32, "big"))
        for owner in sorted(self._cutoffs):
            hasher.update(f"T{owner}:{self._cutoffs[owner]}".encode())
        return hasher.hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filled": {"0x" + h.hex(): v for h, v in self._filled.items()},
            "cancelled": {"0x" + h.hex(): v for h, v in self._cancelled.items()},
            "cutoffs": dict(self._cutoffs),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OrderLedger":
        ledger = cls()
        for key, value in data.get("filled", {}).items():
            ledger._filled[bytes.fromhex(key[2:])] = int(value)
        for key, value in data.get("cancelled", {}).items():
            ledger._cancelled[bytes.fromhex(key[2:])] = int(value)
        for owner, value in data.get("cutoffs", {}).items():
            ledger._cutoffs[to_checksum_address(owner)] = int(value)
        return ledger
