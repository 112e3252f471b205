"""
RingDEX Settlement

Turns a ring's final order states into a settlement plan (token transfers,
fill increments and OrderFilled records), then executes the transfers
all-or-nothing.

For position i with predecessor prev and successor next:

  1. sell token   owner(i) → owner(prev)     fill_sell(i) - buy_split(prev)
  2. sell token   owner(i) → fee recipient   buy_split(prev) + sell_split(i)
  3. fee token    fee recipient → owner(i)   fee_rebate(i)
  4. fee token    owner(i) → fee recipient   fee_due(i)
  5. filled[i]   += fill_sell(next) if buy-capped else fill_sell(i)

If any transfer fails, the transfers already made are reversed in reverse
order and TransferFailedError is raised.  Nothing is committed to the order
ledger in that case.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from ..exceptions import SettlementInvariantError, TransferFailedError
from .orders import Ring
from .records import OrderFilled

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transfer:
    token: str
    sender: str
    recipient: str
    amount: int

    def reversed(self) -> "Transfer":
        return Transfer(self.token, self.recipient, self.sender, self.amount)


@dataclass
class SettlementPlan:
    """Everything a ring settlement will do, computed before anything is done."""
    transfers: List[Transfer] = field(default_factory=list)
    fill_updates: Dict[bytes, int] = field(default_factory=dict)
    records: List[OrderFilled] = field(default_factory=list)


def _require_non_negative(amount: int, what: str) -> int:
    if amount < 0:
        raise SettlementInvariantError(f"Negative {what}: {amount}")
    return amount


class SettlementEngine:
    """Builds and executes ring settlement plans."""

    def __init__(self, ledger_transfer, fee_token: str):
        self.ledger_transfer = ledger_transfer
        self.fee_token = fee_token

    def build_plan(self, ring: Ring, ring_index: int) -> SettlementPlan:
        plan = SettlementPlan()

        for i, state in enumerate(ring.orders):
            prev = ring.prev(i)
            nxt = ring.next(i)
            order = state.order

            to_prev = _require_non_negative(
                state.fill_sell_amount - prev.buy_side_split, "sell transfer"
            )
            if to_prev > 0:
                plan.transfers.append(Transfer(order.sell_token, order.owner, prev.owner, to_prev))

            margin = _require_non_negative(
                prev.buy_side_split + state.sell_side_split, "margin"
            )
            if margin > 0:
                plan.transfers.append(
                    Transfer(order.sell_token, order.owner, ring.fee_recipient, margin)
                )

            if _require_non_negative(state.fee_rebate, "fee rebate") > 0:
                plan.transfers.append(
                    Transfer(self.fee_token, ring.fee_recipient, order.owner, state.fee_rebate)
                )
            if _require_non_negative(state.fee_due, "fee") > 0:
                plan.transfers.append(
                    Transfer(self.fee_token, order.owner, ring.fee_recipient, state.fee_due)
                )

            if order.buy_no_more_than_buy_amount:
                filled = nxt.fill_sell_amount
            else:
                filled = state.fill_sell_amount
            plan.fill_updates[state.order_hash] = (
                plan.fill_updates.get(state.order_hash, 0) + filled
            )

            plan.records.append(OrderFilled(
                ring_index=ring_index,
                ring_hash=ring.ring_hash,
                prev_order_hash=prev.order_hash,
                order_hash=state.order_hash,
                next_order_hash=nxt.order_hash,
                amount_sell=state.fill_sell_amount + state.sell_side_split,
                amount_buy=_require_non_negative(
                    nxt.fill_sell_amount - state.buy_side_split, "buy amount"
                ),
                fee_rebate=state.fee_rebate,
                fee=state.fee_due,
            ))

        return plan

    def execute(self, plan: SettlementPlan) -> None:
        """
        Perform every transfer of *plan* or none of them.

        Raises:
            TransferFailedError: after rolling back the transfers already made
        """
        done: List[Transfer] = []
        for transfer in plan.transfers:
            try:
                ok = self.ledger_transfer.transfer(
                    transfer.token, transfer.sender, transfer.recipient, transfer.amount
                )
            except Exception as e:
                logger.error("Transfer raised %s: %s, rolling back", type(e).__name__, e)
                self.rollback(done)
                raise TransferFailedError(f"Transfer raised: {e}") from e
            if not ok:
                logger.error(
                    "Transfer of %d %s from %s to %s failed, rolling back %d transfers",
                    transfer.amount, transfer.token, transfer.sender,
                    transfer.recipient, len(done),
                )
                self.rollback(done)
                raise TransferFailedError(
                    f"Transfer of {transfer.amount} {transfer.token} "
                    f"from {transfer.sender} to {transfer.recipient} failed"
                )
            done.append(transfer)

    def rollback(self, done: List[Transfer]) -> None:
        for transfer in reversed(done):
            undo = transfer.reversed()
            try:
                ok = self.ledger_transfer.transfer(undo.token, undo.sender, undo.recipient, undo.amount)
            except Exception as e:
                logger.critical("Rollback transfer raised %s: %s", type(e).__name__, e)
                raise TransferFailedError(f"Rollback transfer raised: {e}") from e
            if not ok:
                logger.critical(
                    "Rollback transfer of %d %s from %s to %s failed",
                    undo.amount, undo.token, undo.sender, undo.recipient,
                )
                raise TransferFailedError("Rollback of a failed ring settlement did not complete")
