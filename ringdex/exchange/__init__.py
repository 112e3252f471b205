"""
RingDEX Exchange Engine

Ring-matching settlement for signed token orders.

Components:
  - Orders and Order Validation (hashing, signatures, expiry, cutoffs)
  - Ring Integrity Checks (shape, size, sub-rings, registered tokens)
  - Rate Verification (legality, CV^2 fairness bound)
  - Historical Scaling (filled / cancelled history)
  - Fill Propagation (two-pass bottleneck resolution)
  - Fees and Margin Splits (miner pool, fee rebates)
  - Settlement (all-or-nothing transfers, OrderFilled records)
  - Order Ledger (filled, cancelled, cutoffs)
"""

from .orders import (
    FeeSelection,
    Rate,
    Order,
    OrderState,
    Ring,
    OrderValidator,
    fee_selection_from_int,
)
from .integrity import IntegrityChecker
from .rates import (
    RateVerifier,
    cv_square,
)
from .scaling import HistoricalScaler
from .fills import (
    FillAmountPropagator,
    fill_buy_amount,
)
from .fees import FeeAndSplitCalculator
from .records import (
    OrderFilled,
    RingMined,
    OrderCancelled,
    CutoffTimestampChanged,
    RingResult,
)
from .ledger import OrderLedger
from .settlement import (
    Transfer,
    SettlementPlan,
    SettlementEngine,
)
from .registries import (
    AssetRegistry,
    RingClaimRegistry,
    LedgerTransfer,
    SignatureVerifier,
    InMemoryAssetRegistry,
    InMemoryRingClaimRegistry,
    InMemoryLedger,
    EthSignatureVerifier,
    calculate_ring_hash,
)
from .state_manager import (
    SubmissionGuard,
    RingExchange,
)

__all__ = [
    # Orders
    "FeeSelection", "Rate", "Order", "OrderState", "Ring", "OrderValidator",
    "fee_selection_from_int",
    # Pipeline
    "IntegrityChecker", "RateVerifier", "cv_square", "HistoricalScaler",
    "FillAmountPropagator", "fill_buy_amount", "FeeAndSplitCalculator",
    # Records
    "OrderFilled", "RingMined", "OrderCancelled", "CutoffTimestampChanged",
    "RingResult",
    # Ledger / Settlement
    "OrderLedger", "Transfer", "SettlementPlan", "SettlementEngine",
    # Collaborators
    "AssetRegistry", "RingClaimRegistry", "LedgerTransfer", "SignatureVerifier",
    "InMemoryAssetRegistry", "InMemoryRingClaimRegistry", "InMemoryLedger",
    "EthSignatureVerifier", "calculate_ring_hash",
    # Engine
    "SubmissionGuard", "RingExchange",
]
