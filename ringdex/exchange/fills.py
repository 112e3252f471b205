"""
RingDEX Fill Amount Propagation

Each order's fill is capped by what its successor can sell, and the
successor's by its own successor, all the way around the ring.  The cyclic
dependency is resolved in exactly two linear passes:

  1. Forward pass over every position.  Position i converts its sell fill
     into a buy fill at its execution rate (clamping buy-capped orders to
     their buy amount) and caps the successor's sell fill with it.  The last
     position whose own constraint won is the bottleneck.
  2. Re-run positions [0, bottleneck).  Those were computed from tentative
     values before the bottleneck's constraint was known; everything from
     the bottleneck onwards is already consistent.

Example: A sells 100 X for 100 Y, B sells 40 Y for 40 X.  B is the
bottleneck and both orders fill 40, whichever order comes first.

A ring in which any order ends up filling nothing is rejected.
"""

from __future__ import annotations

import logging
from typing import Sequence

from ..exceptions import OrderFullyConsumedError
from .orders import OrderState

logger = logging.getLogger(__name__)


def fill_buy_amount(state: OrderState) -> int:
    """Buy-side amount the order receives for its current sell fill."""
    return state.fill_sell_amount * state.rate.buy_amount // state.rate.sell_amount


class FillAmountPropagator:
    """Two-pass bottleneck resolution for a ring's fill amounts."""

    def fill_position(
        self,
        state: OrderState,
        next_state: OrderState,
        i: int,
        j: int,
        bottleneck: int,
    ) -> int:
        """
        Propagate position *i* into its successor *j*.

        Returns:
            The bottleneck index after this step
        """
        fill_buy = fill_buy_amount(state)

        if state.order.buy_no_more_than_buy_amount and fill_buy > state.order.buy_amount:
            fill_buy = state.order.buy_amount
            state.fill_sell_amount = fill_buy * state.rate.sell_amount // state.rate.buy_amount
            bottleneck = i

        if fill_buy <= next_state.fill_sell_amount:
            next_state.fill_sell_amount = fill_buy
        else:
            bottleneck = j

        return bottleneck

    def propagate(self, states: Sequence[OrderState]) -> int:
        """
        Make all fill amounts in the ring consistent.

        Returns:
            Index of the bottleneck order
        """
        n = len(states)
        bottleneck = 0
        for i in range(n):
            j = (i + 1) % n
            bottleneck = self.fill_position(states[i], states[j], i, j, bottleneck)

        for i in range(bottleneck):
            self.fill_position(states[i], states[(i + 1) % n], 0, 0, 0)

        for state in states:
            if state.fill_sell_amount == 0:
                raise OrderFullyConsumedError(f"Order {state.hash_hex} has nothing to fill in this ring")
            state.fee_due = self.fee_for_fill(state)

        logger.debug(
            "Ring fills %s, bottleneck at %d",
            [s.fill_sell_amount for s in states], bottleneck,
        )
        return bottleneck

    @staticmethod
    def fee_for_fill(state: OrderState) -> int:
        """Scaled fee, proportional to the primary side actually filled."""
        order = state.order
        if order.buy_no_more_than_buy_amount:
            return order.fee_amount * fill_buy_amount(state) // order.buy_amount
        return order.fee_amount * state.fill_sell_amount // order.sell_amount
