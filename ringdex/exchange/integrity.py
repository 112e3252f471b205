"""
RingDEX Ring Integrity Checks

Structural checks on a ring submission that need no order state:

  - ring size within [MIN_RING_SIZE, max_ring_size]
  - every parallel per-order array has exactly ring_size rows
  - signature arrays carry one extra trailing element (the miner's ring
    signature)
  - no sub-rings: no two orders sell the same token
  - every sell token is registered
"""

from __future__ import annotations

import logging
from typing import Sequence

from ..constants import (
    ADDRESS_ARGS_WIDTH,
    MIN_RING_SIZE,
    UINT8_ARGS_WIDTH,
    UINT_ARGS_WIDTH,
)
from ..crypto.signing import addresses_equal
from ..exceptions import (
    RingSizeOutOfBoundsError,
    ShapeMismatchError,
    SubringDetectedError,
    TokenNotRegisteredError,
)

logger = logging.getLogger(__name__)


class IntegrityChecker:
    """Input-shape, ring-size and sub-ring validation."""

    def __init__(self, max_ring_size: int):
        self.max_ring_size = max_ring_size

    def check_ring_size(self, ring_size: int) -> None:
        if not MIN_RING_SIZE <= ring_size <= self.max_ring_size:
            raise RingSizeOutOfBoundsError(
                f"Ring size {ring_size} outside [{MIN_RING_SIZE}, {self.max_ring_size}]"
            )

    def check_input_shape(
        self,
        ring_size: int,
        address_list: Sequence[Sequence[str]],
        uint_args_list: Sequence[Sequence[int]],
        uint8_args_list: Sequence[Sequence[int]],
        buy_no_more_than_list: Sequence[bool],
        v_list: Sequence[int],
        r_list: Sequence[int],
        s_list: Sequence[int],
    ) -> None:
        """
        Raises:
            ShapeMismatchError: naming the first array with a wrong length
        """
        per_order = (
            ("address_list", address_list, ADDRESS_ARGS_WIDTH),
            ("uint_args_list", uint_args_list, UINT_ARGS_WIDTH),
            ("uint8_args_list", uint8_args_list, UINT8_ARGS_WIDTH),
            ("buy_no_more_than_list", buy_no_more_than_list, None),
        )
        for name, rows, width in per_order:
            if len(rows) != ring_size:
                raise ShapeMismatchError(
                    f"{name} has {len(rows)} entries, expected {ring_size}"
                )
            if width is None:
                continue
            for i, row in enumerate(rows):
                if len(row) != width:
                    raise ShapeMismatchError(
                        f"{name}[{i}] has {len(row)} fields, expected {width}"
                    )

        for name, sigs in (("v_list", v_list), ("r_list", r_list), ("s_list", s_list)):
            if len(sigs) != ring_size + 1:
                raise ShapeMismatchError(
                    f"{name} has {len(sigs)} entries, expected {ring_size + 1}"
                )

    def check_no_subring(self, sell_tokens: Sequence[str]) -> None:
        """Pairwise scan; any shared sell token means the ring contains a sub-ring."""
        n = len(sell_tokens)
        for i in range(n - 1):
            for j in range(i + 1, n):
                if addresses_equal(sell_tokens[i], sell_tokens[j]):
                    raise SubringDetectedError(
                        f"Orders {i} and {j} both sell {sell_tokens[i]}"
                    )

    def check_tokens_registered(self, sell_tokens: Sequence[str], asset_registry) -> None:
        for i, token in enumerate(sell_tokens):
            if not asset_registry.is_registered(token):
                raise TokenNotRegisteredError(f"Order {i} sells unregistered token {token}")
