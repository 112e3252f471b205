"""
RingDEX Historical Scaling

Shrinks every order in a ring by what has already been filled or cancelled,
keeping the order's rate, and derives the tentative fill bounded by the
owner's spendable balance.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Sequence

from ..exceptions import OrderFullyConsumedError
from .orders import OrderState

logger = logging.getLogger(__name__)


class HistoricalScaler:
    """Applies filled/cancelled history from an OrderLedger to order states."""

    def __init__(self, order_ledger):
        self.order_ledger = order_ledger

    def remaining_amount(self, state: OrderState) -> int:
        """Primary-side amount still open: never negative."""
        primary = state.order.primary_amount
        remaining = max(primary - self.order_ledger.get_filled(state.order_hash), 0)
        return max(remaining - self.order_ledger.get_cancelled(state.order_hash), 0)

    def scale_state(self, state: OrderState) -> None:
        order = state.order
        remaining = self.remaining_amount(state)

        if order.buy_no_more_than_buy_amount:
            scaled = dataclasses.replace(
                order,
                sell_amount=remaining * order.sell_amount // order.buy_amount,
                buy_amount=remaining,
                fee_amount=remaining * order.fee_amount // order.buy_amount,
            )
        else:
            scaled = dataclasses.replace(
                order,
                sell_amount=remaining,
                buy_amount=remaining * order.buy_amount // order.sell_amount,
                fee_amount=remaining * order.fee_amount // order.sell_amount,
            )

        if scaled.sell_amount == 0 or scaled.buy_amount == 0:
            raise OrderFullyConsumedError(f"Order {state.hash_hex} is fully consumed")

        state.order = scaled
        state.fee_due = scaled.fee_amount
        state.fill_sell_amount = min(scaled.sell_amount, state.available_sell_amount)

    def scale(self, states: Sequence[OrderState]) -> None:
        for state in states:
            self.scale_state(state)
            logger.debug(
                "Order %s scaled to sell=%d buy=%d, tentative fill %d",
                state.hash_hex, state.order.sell_amount, state.order.buy_amount,
                state.fill_sell_amount,
            )
