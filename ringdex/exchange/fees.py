"""
RingDEX Fees and Margin Splits

Orders are processed in ring order against a single fee-token budget, the
miner pool, which starts at the fee recipient's spendable fee-token balance.
Earlier orders have priority on the pool.

  FEE_ASSET     The order pays its scaled fee in the fee token.  If the owner
                cannot cover it, the ring either aborts or the fee is cut to
                the owner's balance and that reduced amount is credited to
                the pool.
  MARGIN_SPLIT  If the pool can cover the order's fee, part of the order's
                execution surplus goes to the fee recipient and the order is
                rebated its fee from the pool; the order then pays no fee.
                Otherwise the order is charged as FEE_ASSET.
"""

from __future__ import annotations

import logging

from ..constants import MARGIN_SPLIT_PERCENTAGE_BASE
from ..exceptions import (
    InsufficientFeeBalanceError,
    SettlementInvariantError,
    UnsupportedFeeSelectionError,
)
from .orders import FeeSelection, OrderState, Ring

logger = logging.getLogger(__name__)


class FeeAndSplitCalculator:
    """Assigns fee due, fee rebate and margin splits for a ring."""

    def __init__(self, ledger_transfer, fee_token: str):
        self.ledger_transfer = ledger_transfer
        self.fee_token = fee_token

    def calculate(self, ring: Ring) -> int:
        """
        Threads the miner pool through the ring in order.

        Returns:
            The miner pool left after every order was processed
        """
        miner_pool = self.ledger_transfer.spendable_balance(self.fee_token, ring.fee_recipient)
        logger.debug("Ring %s miner pool starts at %d", ring.hash_hex, miner_pool)

        for i, state in enumerate(ring.orders):
            if state.fee_selection == FeeSelection.FEE_ASSET:
                miner_pool = self.apply_fee_asset(state, miner_pool, ring.abort_on_insufficient_fee)
            elif state.fee_selection == FeeSelection.MARGIN_SPLIT:
                miner_pool = self.apply_margin_split(
                    state, ring.next(i), miner_pool, ring.abort_on_insufficient_fee,
                )
            else:
                raise UnsupportedFeeSelectionError(
                    f"Order {state.hash_hex} has unsupported fee selection {state.fee_selection}"
                )

        return miner_pool

    def apply_fee_asset(self, state: OrderState, miner_pool: int, abort: bool) -> int:
        balance = self.ledger_transfer.spendable_balance(self.fee_token, state.owner)
        if balance >= state.fee_due:
            return miner_pool

        if abort:
            raise InsufficientFeeBalanceError(
                f"Order {state.hash_hex} owner holds {balance}, fee is {state.fee_due}"
            )
        logger.warning(
            "Order %s fee cut from %d to owner balance %d",
            state.hash_hex, state.fee_due, balance,
        )
        # The pool grows by the reduced fee, not by the shortfall.
        state.fee_due = balance
        return miner_pool + balance

    def apply_margin_split(
        self,
        state: OrderState,
        next_state: OrderState,
        miner_pool: int,
        abort: bool,
    ) -> int:
        """
        Split the order's surplus with the fee recipient and rebate its fee.

        When the pool cannot cover the rebate the order falls back to
        apply_fee_asset, owner balance check and abort/cut policy included.
        This fallback extends the plain protocol, which keeps the fee
        without checking the owner's fee-token balance.
        """
        if miner_pool < state.fee_due:
            # Pool cannot rebate this order: it pays its fee like FEE_ASSET.
            return self.apply_fee_asset(state, miner_pool, abort)

        split = self.margin(state, next_state)
        if state.order.buy_no_more_than_buy_amount:
            state.sell_side_split = split
        else:
            state.buy_side_split = split

        if split > 0:
            miner_pool -= state.fee_due
            state.fee_rebate = state.fee_due
        state.fee_due = 0
        return miner_pool

    @staticmethod
    def margin(state: OrderState, next_state: OrderState) -> int:
        """
        The fee recipient's share of the order's execution surplus.

        Buy-capped orders measure the surplus on the sell side (what the
        order would have paid at its limit rate minus what it pays), other
        orders on the buy side (what it receives minus what its limit rate
        asks for).
        """
        order = state.order
        if order.buy_no_more_than_buy_amount:
            split = next_state.fill_sell_amount * order.sell_amount // order.buy_amount - state.fill_sell_amount
        else:
            split = next_state.fill_sell_amount - state.fill_sell_amount * order.buy_amount // order.sell_amount

        if split < 0:
            raise SettlementInvariantError(
                f"Order {state.hash_hex} has negative margin {split}"
            )
        if order.margin_split_percentage != MARGIN_SPLIT_PERCENTAGE_BASE:
            split = split * order.margin_split_percentage // MARGIN_SPLIT_PERCENTAGE_BASE
        return split
