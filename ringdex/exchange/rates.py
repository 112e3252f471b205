"""
RingDEX Execution Rate Verification

The miner proposes an execution rate for every order.  Each rate must be at
least as good for the order as the order's own limit rate, and the discount
must be spread evenly across the ring: the coefficient of variation of the
per-order rate ratios is bounded so a miner cannot squeeze one order while
barely touching another.  Chained once around the ring, the rates must
not create value out of nothing.

All arithmetic is integer with floor division.
"""

from __future__ import annotations

import logging
from typing import List, Sequence

from ..constants import RATE_RATIO_SCALE
from ..exceptions import RateDiscountInvalidError, RateDiscountUnfairError
from .orders import OrderState

logger = logging.getLogger(__name__)


def cv_square(values: Sequence[int], scale: int) -> int:
    """
    Population coefficient of variation squared, scaled by ``scale**2``.

        cvs = scale^2 * variance(values) / mean(values)^2

    Returns 0 when the mean is 0.
    """
    n = len(values)
    if n == 0:
        raise ValueError("cv_square of an empty sequence")
    if scale <= 0:
        raise ValueError("scale must be positive")

    avg = sum(values) // n
    if avg == 0:
        return 0

    squares = sum((v - avg) ** 2 for v in values)
    return ((squares * scale // avg) * scale // avg) // n


class RateVerifier:
    """Legality and fairness checks on miner-supplied execution rates."""

    def __init__(self, cvs_threshold: int, scale: int = RATE_RATIO_SCALE):
        self.cvs_threshold = cvs_threshold
        self.scale = scale

    def rate_ratio(self, state: OrderState) -> int:
        """
        Scaled ratio of the execution rate to the limit rate.

        Raises:
            RateDiscountInvalidError: if the execution rate is worse than the limit
        """
        order = state.order
        rate = state.rate
        if rate.sell_amount <= 0 or rate.buy_amount <= 0:
            raise RateDiscountInvalidError(
                f"Order {state.hash_hex} has a non-positive execution rate"
            )
        s1b0 = rate.sell_amount * order.buy_amount
        s0b1 = order.sell_amount * rate.buy_amount
        if s1b0 > s0b1:
            raise RateDiscountInvalidError(
                f"Order {state.hash_hex} execution rate is worse than its limit rate"
            )
        return self.scale * s1b0 // s0b1

    @staticmethod
    def check_ring_closure(states: Sequence[OrderState]) -> None:
        """
        The ring must not pay out more than it takes in.

        Chaining the execution rates once around the ring has to give back
        at most the amount started with (prod buy <= prod sell).  Otherwise
        the propagated fills cannot meet every rate and the order closing
        the ring settles below its limit.

        Raises:
            RateDiscountInvalidError: if the rates do not close
        """
        buy_product = 1
        sell_product = 1
        for state in states:
            buy_product *= state.rate.buy_amount
            sell_product *= state.rate.sell_amount
        if buy_product > sell_product:
            raise RateDiscountInvalidError(
                "Execution rates around the ring pay out more than they take in"
            )

    def verify(self, states: Sequence[OrderState]) -> int:
        """
        Check every rate, the ring closure and the ring-wide fairness bound.

        Returns:
            The ring's CV^2 value
        """
        ratios: List[int] = [self.rate_ratio(state) for state in states]
        self.check_ring_closure(states)
        cvs = cv_square(ratios, self.scale)
        logger.debug("Rate ratios %s, cvs=%d (threshold %d)", ratios, cvs, self.cvs_threshold)
        if cvs > self.cvs_threshold:
            raise RateDiscountUnfairError(
                f"Rate ratio CV^2 {cvs} exceeds threshold {self.cvs_threshold}"
            )
        return cvs
