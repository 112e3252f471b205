"""
RingDEX Emitted Records

Records produced by successful operations, in emission order.  They are the
engine's only output besides ledger updates and token transfers.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional


def _hex(value: bytes) -> str:
    return "0x" + value.hex()


@dataclass(frozen=True)
class OrderFilled:
    """One order's part in a mined ring."""
    ring_index: int
    ring_hash: bytes
    prev_order_hash: bytes
    order_hash: bytes
    next_order_hash: bytes
    amount_sell: int
    amount_buy: int
    fee_rebate: int
    fee: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "OrderFilled",
            "ring_index": self.ring_index,
            "ring_hash": _hex(self.ring_hash),
            "prev_order_hash": _hex(self.prev_order_hash),
            "order_hash": _hex(self.order_hash),
            "next_order_hash": _hex(self.next_order_hash),
            "amount_sell": self.amount_sell,
            "amount_buy": self.amount_buy,
            "fee_rebate": self.fee_rebate,
            "fee": self.fee,
        }


@dataclass(frozen=True)
class RingMined:
    """Emitted once per ring after every order settled."""
    ring_index: int
    ring_hash: bytes
    miner: str
    fee_recipient: str
    preregistered: bool

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event"] = "RingMined"
        data["ring_hash"] = _hex(self.ring_hash)
        return data


@dataclass(frozen=True)
class OrderCancelled:
    order_hash: bytes
    amount_cancelled: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event": "OrderCancelled",
            "order_hash": _hex(self.order_hash),
            "amount_cancelled": self.amount_cancelled,
        }


@dataclass(frozen=True)
class CutoffTimestampChanged:
    owner: str
    cutoff: int

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["event"] = "CutoffTimestampChanged"
        return data


class RingResult:
    """Result of a successful ring submission."""

    __slots__ = ("ring_index", "ring_hash", "records")

    def __init__(
        self,
        ring_index: int,
        ring_hash: bytes,
        records: Optional[List[Any]] = None,
    ):
        self.ring_index = ring_index
        self.ring_hash = ring_hash
        self.records = records or []

    @property
    def fills(self) -> List[OrderFilled]:
        return [r for r in self.records if isinstance(r, OrderFilled)]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ring_index": self.ring_index,
            "ring_hash": _hex(self.ring_hash),
            "records": [r.to_dict() for r in self.records],
        }
