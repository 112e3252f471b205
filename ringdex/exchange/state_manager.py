"""
RingDEX Exchange State Manager

Entry points of the engine:

  - submit_ring   validate, match and settle one ring, all-or-nothing
  - cancel_order  cancel part or all of an order on behalf of its owner
  - set_cutoff    void every order an owner created at or before a timestamp

A ring submission runs the pipeline stage by stage on a fresh set of order
states:

    integrity → order validation → rate verification → historical scaling
      → fill propagation → fees and splits → settlement

Only a fully settled ring touches persistent state: the order ledger's fill
updates are committed after every transfer succeeded, and the ring index
advances.

Security:
  - One submission at a time per engine; a nested submission (for example
    from a transfer callback) raises ReentrancyError
  - Order hashes include the engine address (no cross-engine replay)
  - Ring hashes can be claimed exclusively by a fee recipient
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence

from eth_utils import is_address, to_checksum_address

from ..config import EngineConfig
from ..crypto.signing import RingSignature, addresses_equal
from ..exceptions import (
    InvalidOrderError,
    InvalidSignatureError,
    NonIncreasingCutoffError,
    ReentrancyError,
    RingAlreadyClaimedError,
    RingDexException,
)
from .fees import FeeAndSplitCalculator
from .fills import FillAmountPropagator
from .integrity import IntegrityChecker
from .ledger import OrderLedger
from .orders import Order, OrderState, OrderValidator, Rate, Ring, fee_selection_from_int
from .rates import RateVerifier
from .records import CutoffTimestampChanged, OrderCancelled, RingMined, RingResult
from .registries import (
    EthSignatureVerifier,
    InMemoryAssetRegistry,
    InMemoryLedger,
    InMemoryRingClaimRegistry,
)
from .scaling import HistoricalScaler
from .settlement import SettlementEngine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Submission guard
# ---------------------------------------------------------------------------

class SubmissionGuard:
    """
    Execution-context token for ring submissions.

    Held for the whole of one submission and released on every exit path.
    Acquisition never blocks: a second submission, nested or concurrent,
    fails immediately.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._token: Optional[object] = None

    @property
    def active(self) -> bool:
        return self._token is not None

    def __enter__(self) -> object:
        if not self._lock.acquire(blocking=False):
            raise ReentrancyError("Ring submission already in progress")
        self._token = object()
        return self._token

    def __exit__(self, exc_type, exc, tb) -> bool:
        self._token = None
        self._lock.release()
        return False


# ---------------------------------------------------------------------------
# Ring exchange
# ---------------------------------------------------------------------------

class RingExchange:
    """
    Ring matching and settlement engine.

    Usage:

        exchange = RingExchange(config, asset_registry, claim_registry, ledger)
        result = exchange.submit_ring(ring_size, address_list, uint_args_list,
                                      uint8_args_list, buy_no_more_than_list,
                                      v_list, r_list, s_list, miner)
        for record in result.records:
            ...
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        asset_registry=None,
        claim_registry=None,
        ledger_transfer=None,
        signature_verifier=None,
        order_ledger: Optional[OrderLedger] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or EngineConfig()
        self.config.validate()
        engine_cfg = self.config.engine

        self.engine_address = to_checksum_address(engine_cfg.engine_address)
        self.fee_token = to_checksum_address(engine_cfg.fee_token)
        self.clock = clock

        # --- Collaborators ---
        self.asset_registry = asset_registry or InMemoryAssetRegistry()
        self.claim_registry = claim_registry or InMemoryRingClaimRegistry()
        self.ledger_transfer = ledger_transfer or InMemoryLedger()
        self.signature_verifier = signature_verifier or EthSignatureVerifier()
        self.order_ledger = order_ledger or OrderLedger()

        # --- Pipeline stages ---
        self.validator = OrderValidator(
            self.engine_address, self.signature_verifier,
            self.order_ledger.get_cutoff, clock=clock,
        )
        self.integrity = IntegrityChecker(engine_cfg.max_ring_size)
        self.rate_verifier = RateVerifier(engine_cfg.rate_ratio_cvs_threshold)
        self.scaler = HistoricalScaler(self.order_ledger)
        self.propagator = FillAmountPropagator()
        self.fee_calculator = FeeAndSplitCalculator(self.ledger_transfer, self.fee_token)
        self.settlement = SettlementEngine(self.ledger_transfer, self.fee_token)

        self._guard = SubmissionGuard()
        self._ring_index: int = 0

        # --- Counters ---
        self._total_rings_rejected: int = 0
        self._total_cancels: int = 0

    # =====================================================================
    #  Ring submission
    # =====================================================================

    def submit_ring(
        self,
        ring_size: int,
        address_list: Sequence[Sequence[str]],
        uint_args_list: Sequence[Sequence[int]],
        uint8_args_list: Sequence[Sequence[int]],
        buy_no_more_than_list: Sequence[bool],
        v_list: Sequence[int],
        r_list: Sequence[int],
        s_list: Sequence[int],
        miner: str,
        fee_recipient: str = "",
        abort_on_insufficient_fee: bool = True,
    ) -> RingResult:
        """
        Validate, match and settle one ring.

        Args:
            ring_size: Number of orders
            address_list: Per order ``(owner, sell_token)``; each order buys
                what the next order sells
            uint_args_list: Per order ``(sell_amount, buy_amount, created_at,
                ttl, salt, fee_amount, rate_sell_amount, rate_buy_amount)``
            uint8_args_list: Per order ``(margin_split_percentage, fee_selection)``
            buy_no_more_than_list: Per order buy-cap flag
            v_list, r_list, s_list: Order signatures followed by the miner's
                signature over the ring hash
            miner: Address that assembled the ring
            fee_recipient: Receives fees and margin; defaults to the miner
            abort_on_insufficient_fee: Abort (True) or cut the fee (False)
                when an owner cannot pay its fee

        Returns:
            RingResult with the ring index and emitted records

        Raises:
            RingDexException: any validation, matching or settlement failure
        """
        with self._guard:
            try:
                return self._submit_ring(
                    ring_size, address_list, uint_args_list, uint8_args_list,
                    buy_no_more_than_list, v_list, r_list, s_list,
                    miner, fee_recipient, abort_on_insufficient_fee,
                )
            except RingDexException as e:
                self._total_rings_rejected += 1
                logger.warning("Ring rejected (%s): %s", type(e).__name__, e.reason)
                raise

    def _submit_ring(
        self,
        ring_size,
        address_list,
        uint_args_list,
        uint8_args_list,
        buy_no_more_than_list,
        v_list,
        r_list,
        s_list,
        miner,
        fee_recipient,
        abort_on_insufficient_fee,
    ) -> RingResult:
        # 1. Shape, sub-rings, registered tokens
        self.integrity.check_ring_size(ring_size)
        self.integrity.check_input_shape(
            ring_size, address_list, uint_args_list, uint8_args_list,
            buy_no_more_than_list, v_list, r_list, s_list,
        )
        sell_tokens = [row[1] for row in address_list]
        self.integrity.check_no_subring(sell_tokens)
        self.integrity.check_tokens_registered(sell_tokens, self.asset_registry)

        # 2. Ring hash, claim and miner signature
        if not miner or not is_address(miner):
            raise InvalidSignatureError(f"Invalid miner address: {miner!r}")
        miner = to_checksum_address(miner)
        fee_recipient = to_checksum_address(fee_recipient) if fee_recipient else miner

        ring_hash = self.claim_registry.compute_ring_hash(ring_size, v_list, r_list, s_list)
        if not self.claim_registry.can_claim(ring_hash, fee_recipient):
            raise RingAlreadyClaimedError(f"Ring 0x{ring_hash.hex()} claimed by another recipient")
        self.validator.verify_signature(
            miner, ring_hash,
            RingSignature(v_list[ring_size], r_list[ring_size], s_list[ring_size]),
        )

        # 3. Orders
        now = int(self.clock())
        states = self._assemble_orders(
            ring_size, address_list, uint_args_list, uint8_args_list,
            buy_no_more_than_list, v_list, r_list, s_list, now,
        )
        ring = Ring(
            ring_hash=ring_hash,
            orders=states,
            miner=miner,
            fee_recipient=fee_recipient,
            abort_on_insufficient_fee=abort_on_insufficient_fee,
            preregistered=self.claim_registry.was_preregistered(ring_hash),
        )

        # 4. Matching
        self.rate_verifier.verify(ring.orders)
        self.scaler.scale(ring.orders)
        self.propagator.propagate(ring.orders)
        self.fee_calculator.calculate(ring)

        # 5. Settlement
        plan = self.settlement.build_plan(ring, self._ring_index)
        self.settlement.execute(plan)
        self.order_ledger.commit_fills(plan.fill_updates)

        mined = RingMined(
            ring_index=self._ring_index,
            ring_hash=ring_hash,
            miner=miner,
            fee_recipient=fee_recipient,
            preregistered=ring.preregistered,
        )
        result = RingResult(self._ring_index, ring_hash, [*plan.records, mined])
        logger.info(
            "ring #%d mined: %s, %d orders, %d transfers, miner %s",
            self._ring_index, ring.hash_hex, ring_size, len(plan.transfers), miner,
        )
        self._ring_index += 1
        return result

    def _assemble_orders(
        self,
        ring_size,
        address_list,
        uint_args_list,
        uint8_args_list,
        buy_no_more_than_list,
        v_list,
        r_list,
        s_list,
        now: int,
    ) -> List[OrderState]:
        """Build validated order states; each order buys the next order's sell token."""
        states: List[OrderState] = []
        for i in range(ring_size):
            owner, sell_token = address_list[i]
            buy_token = address_list[(i + 1) % ring_size][1]
            (sell_amount, buy_amount, created_at, ttl, salt,
             fee_amount, rate_sell, rate_buy) = uint_args_list[i]
            margin_split_percentage, fee_selection = uint8_args_list[i]

            order = Order(
                owner=owner,
                sell_token=sell_token,
                buy_token=buy_token,
                sell_amount=int(sell_amount),
                buy_amount=int(buy_amount),
                created_at=int(created_at),
                ttl=int(ttl),
                salt=int(salt),
                fee_amount=int(fee_amount),
                buy_no_more_than_buy_amount=bool(buy_no_more_than_list[i]),
                margin_split_percentage=int(margin_split_percentage),
                signature=RingSignature(v_list[i], r_list[i], s_list[i]),
            )
            order_hash = self.validator.validate(order, now)

            states.append(OrderState(
                order=order,
                order_hash=order_hash,
                fee_selection=fee_selection_from_int(int(fee_selection)),
                rate=Rate(int(rate_sell), int(rate_buy)),
                available_sell_amount=self.ledger_transfer.spendable_balance(sell_token, owner),
            ))
        return states

    # =====================================================================
    #  Cancellation and cutoffs
    # =====================================================================

    def cancel_order(self, caller: str, order: Order, cancel_amount: int) -> OrderCancelled:
        """
        Cancel *cancel_amount* of the order's primary side.

        Raises:
            InvalidOrderError: non-positive amount, malformed order, or caller
                is not the owner
            InvalidSignatureError: the owner did not sign the order
        """
        if cancel_amount <= 0:
            raise InvalidOrderError("Cancel amount must be positive")
        self.validator.check_addresses(order)
        if not addresses_equal(caller, order.owner):
            raise InvalidOrderError("Only the order owner may cancel it")

        order_hash = order.order_hash(self.engine_address)
        self.validator.verify_signature(order.owner, order_hash, order.signature)

        total = self.order_ledger.add_cancelled(order_hash, cancel_amount)
        self._total_cancels += 1
        logger.info("Order 0x%s cancelled %d (total %d)", order_hash.hex(), cancel_amount, total)
        return OrderCancelled(order_hash=order_hash, amount_cancelled=cancel_amount)

    def set_cutoff(self, caller: str, cutoff: int = 0) -> CutoffTimestampChanged:
        """
        Void every order *caller* created at or before *cutoff*.

        A zero cutoff means "now"; any other value is stored as given, so a
        future cutoff also voids orders created later up to that time.

        Raises:
            InvalidOrderError: caller is not an address
            NonIncreasingCutoffError: the cutoff does not move forward
        """
        if not caller or not is_address(caller):
            raise InvalidOrderError(f"Invalid owner address: {caller!r}")
        caller = to_checksum_address(caller)

        now = int(self.clock())
        effective = now if cutoff <= 0 else cutoff
        current = self.order_ledger.get_cutoff(caller)
        if effective <= current:
            raise NonIncreasingCutoffError(
                f"Cutoff {effective} is not after current cutoff {current}"
            )

        self.order_ledger.set_cutoff(caller, effective)
        logger.info("Cutoff for %s moved to %d", caller, effective)
        return CutoffTimestampChanged(owner=caller, cutoff=effective)

    # =====================================================================
    #  Query interface (read-only)
    # =====================================================================

    @property
    def ring_index(self) -> int:
        """Index the next mined ring will get."""
        return self._ring_index

    @property
    def submission_active(self) -> bool:
        return self._guard.active

    def order_hash(self, order: Order) -> bytes:
        return order.order_hash(self.engine_address)

    def get_filled(self, order_hash: bytes) -> int:
        return self.order_ledger.get_filled(order_hash)

    def get_cancelled(self, order_hash: bytes) -> int:
        return self.order_ledger.get_cancelled(order_hash)

    def get_cutoff(self, owner: str) -> int:
        return self.order_ledger.get_cutoff(owner)

    def compute_state_root(self) -> str:
        return self.order_ledger.compute_state_root()

    def get_stats(self) -> Dict[str, Any]:
        """Engine-wide statistics."""
        return {
            "rings_mined": self._ring_index,
            "rings_rejected": self._total_rings_rejected,
            "cancels": self._total_cancels,
            "max_ring_size": self.integrity.max_ring_size,
            "rate_ratio_cvs_threshold": self.rate_verifier.cvs_threshold,
        }
