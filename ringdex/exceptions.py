"""
RingDEX Exceptions

Every error is fatal to the operation that raised it: a ring submission,
cancellation or cutoff update either completes in full or leaves no trace.
"""

from typing import Optional


class RingDexException(Exception):
    """Base exception for RingDEX."""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or self.__doc__.strip().rstrip(".")
        super().__init__(self.reason)


# ---------------------------------------------------------------------------
# Input shape
# ---------------------------------------------------------------------------

class ShapeMismatchError(RingDexException):
    """Ring input arrays have inconsistent lengths."""


class RingSizeOutOfBoundsError(RingDexException):
    """Ring size is outside the configured bounds."""


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class InvalidOrderError(RingDexException):
    """Order failed field validation."""


class InvalidSignatureError(RingDexException):
    """Signature does not recover to the expected signer."""


class SubringDetectedError(RingDexException):
    """Two orders in the ring sell the same token."""


class TokenNotRegisteredError(RingDexException):
    """Token is not registered with the exchange."""


class RingAlreadyClaimedError(RingDexException):
    """Ring hash has been claimed by another fee recipient."""


class OrderFullyConsumedError(RingDexException):
    """Order has no remaining amount after filled and cancelled amounts."""


class NonIncreasingCutoffError(RingDexException):
    """New cutoff is not later than the current one."""


# ---------------------------------------------------------------------------
# Rates and fees
# ---------------------------------------------------------------------------

class RateDiscountInvalidError(RingDexException):
    """Miner supplied rate is worse than the order's limit rate."""


class RateDiscountUnfairError(RingDexException):
    """Miner supplied rates are not uniform enough across the ring."""


class InsufficientFeeBalanceError(RingDexException):
    """Order owner cannot cover the fee."""


class UnsupportedFeeSelectionError(RingDexException):
    """Unknown fee selection mode."""


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------

class SettlementInvariantError(RingDexException):
    """Settlement produced a negative amount."""


class TransferFailedError(RingDexException):
    """A token transfer failed; the ring was rolled back."""


class ReentrancyError(RingDexException):
    """Ring submission re-entered while another submission is in progress."""


class ConfigurationError(RingDexException):
    """Configuration error."""
