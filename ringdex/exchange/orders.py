"""
RingDEX Orders  (data model + order validation)

An Order is signed off-engine by its owner and never mutated here. During a
ring submission each order is wrapped in an OrderState, which carries a
scaled copy of the order plus everything the pipeline computes for it:

  - miner-supplied execution rate
  - spendable sell balance snapshot
  - fill amount, fee due, fee rebate
  - sell/buy side margin splits

Order identity is keccak256 over the packed order fields salted with the
engine address, so a signature for one engine cannot be replayed on another.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, List, Optional, Union

from eth_utils import is_address, to_checksum_address

from ..constants import MARGIN_SPLIT_PERCENTAGE_BASE, ZERO_ADDRESS
from ..crypto.hashing import keccak256, pack_address, pack_bool, pack_uint
from ..crypto.signing import RingSignature, addresses_equal
from ..exceptions import InvalidOrderError, InvalidSignatureError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class FeeSelection(IntEnum):
    """How an order pays for being matched.  Values are signed over."""
    FEE_ASSET = 0      # pay fee_amount in the fee token
    MARGIN_SPLIT = 1   # share execution surplus, earn a fee-token rebate


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Rate:
    """An exchange rate expressed as a pair of integer amounts."""
    sell_amount: int
    buy_amount: int


@dataclass(frozen=True)
class Order:
    """A signed order.  Fields are hash-critical."""
    owner: str
    sell_token: str
    buy_token: str
    sell_amount: int
    buy_amount: int
    created_at: int                 # unix seconds
    ttl: int                        # seconds
    salt: int                       # anti-replay nonce
    fee_amount: int = 0             # in the fee token
    buy_no_more_than_buy_amount: bool = False
    margin_split_percentage: int = 0
    signature: Optional[RingSignature] = None

    @property
    def primary_amount(self) -> int:
        """The side the owner capped: buy amount if buy-capped, else sell amount."""
        if self.buy_no_more_than_buy_amount:
            return self.buy_amount
        return self.sell_amount

    @property
    def expires_at(self) -> int:
        return self.created_at + self.ttl

    def packed_fields(self, engine_address: str) -> bytes:
        """Tightly packed hash preimage."""
        return b"".join([
            pack_address(engine_address),
            pack_address(self.owner),
            pack_address(self.sell_token),
            pack_address(self.buy_token),
            pack_uint(self.sell_amount),
            pack_uint(self.buy_amount),
            pack_uint(self.created_at),
            pack_uint(self.ttl),
            pack_uint(self.salt),
            pack_uint(self.fee_amount),
            pack_bool(self.buy_no_more_than_buy_amount),
            pack_uint(self.margin_split_percentage, 1),
        ])

    def order_hash(self, engine_address: str) -> bytes:
        """Deterministic order hash (32 bytes)."""
        return keccak256(self.packed_fields(engine_address))


@dataclass
class OrderState:
    """Per-ring working state of one order.  Mutated stage by stage."""
    order: Order
    order_hash: bytes
    fee_selection: Union[FeeSelection, int]
    rate: Rate
    available_sell_amount: int = 0
    fill_sell_amount: int = 0
    fee_due: int = 0
    fee_rebate: int = 0
    sell_side_split: int = 0
    buy_side_split: int = 0

    @property
    def owner(self) -> str:
        return self.order.owner

    @property
    def hash_hex(self) -> str:
        return "0x" + self.order_hash.hex()


@dataclass
class Ring:
    """A cyclic sequence of orders submitted for simultaneous settlement."""
    ring_hash: bytes
    orders: List[OrderState]
    miner: str
    fee_recipient: str
    abort_on_insufficient_fee: bool = False
    preregistered: bool = False

    def __len__(self) -> int:
        return len(self.orders)

    def prev(self, i: int) -> OrderState:
        return self.orders[(i + len(self.orders) - 1) % len(self.orders)]

    def next(self, i: int) -> OrderState:
        return self.orders[(i + 1) % len(self.orders)]

    @property
    def hash_hex(self) -> str:
        return "0x" + self.ring_hash.hex()


def fee_selection_from_int(value: int) -> Union[FeeSelection, int]:
    """Map a raw selector to FeeSelection; unknown values pass through unchanged."""
    try:
        return FeeSelection(value)
    except ValueError:
        return value


def is_null_address(address: str) -> bool:
    return not address or addresses_equal(address, ZERO_ADDRESS)


# ---------------------------------------------------------------------------
# Order Validator
# ---------------------------------------------------------------------------

class OrderValidator:
    """
    Validates raw orders, computes their hashes and checks signatures.

    Check order matters only for error message determinism:
      1. non-null owner / sell token / buy token
      2. positive amounts, ttl, salt
      3. created_at <= now < created_at + ttl
      4. created_at > owner's cutoff
      5. margin split percentage within base
    """

    def __init__(
        self,
        engine_address: str,
        signature_verifier,
        cutoff_lookup: Callable[[str], int],
        clock: Callable[[], float] = time.time,
    ):
        self.engine_address = to_checksum_address(engine_address)
        self.signature_verifier = signature_verifier
        self.cutoff_lookup = cutoff_lookup
        self.clock = clock

    def check_addresses(self, order: Order) -> None:
        for label, address in (
            ("owner", order.owner),
            ("sell token", order.sell_token),
            ("buy token", order.buy_token),
        ):
            if is_null_address(address):
                raise InvalidOrderError(f"Order {label} is null")
            if not is_address(address):
                raise InvalidOrderError(f"Order {label} is not an address: {address!r}")

    def check_fields(self, order: Order, now: Optional[int] = None) -> None:
        """
        Field validation (no signature).

        Raises:
            InvalidOrderError: with the first violated condition
        """
        if now is None:
            now = int(self.clock())

        self.check_addresses(order)
        if order.sell_amount <= 0:
            raise InvalidOrderError("Order sell amount must be positive")
        if order.buy_amount <= 0:
            raise InvalidOrderError("Order buy amount must be positive")
        if order.ttl <= 0:
            raise InvalidOrderError("Order ttl must be positive")
        if order.salt <= 0:
            raise InvalidOrderError("Order salt must be positive")
        if order.created_at > now:
            raise InvalidOrderError("Order created in the future")
        if now >= order.expires_at:
            raise InvalidOrderError("Order expired")
        cutoff = self.cutoff_lookup(order.owner)
        if order.created_at <= cutoff:
            raise InvalidOrderError(f"Order created at or before owner cutoff {cutoff}")
        if not 0 <= order.margin_split_percentage <= MARGIN_SPLIT_PERCENTAGE_BASE:
            raise InvalidOrderError(
                f"Margin split percentage exceeds {MARGIN_SPLIT_PERCENTAGE_BASE}"
            )

    def verify_signature(self, signer: str, msg_hash: bytes, signature: Optional[RingSignature]) -> None:
        """Raise InvalidSignatureError unless *signature* over *msg_hash* recovers to *signer*."""
        if signature is None:
            raise InvalidSignatureError("Missing signature")
        recovered = self.signature_verifier.recover_signer(msg_hash, signature)
        if not addresses_equal(recovered, signer):
            raise InvalidSignatureError(
                f"Signature recovered {recovered}, expected {signer}"
            )

    def validate(self, order: Order, now: Optional[int] = None) -> bytes:
        """
        Fully validate *order* and return its hash.

        Raises:
            InvalidOrderError: on a field violation
            InvalidSignatureError: if the owner did not sign the order
        """
        self.check_fields(order, now)
        order_hash = order.order_hash(self.engine_address)
        self.verify_signature(order.owner, order_hash, order.signature)
        return order_hash
