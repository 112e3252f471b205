"""
Test suite for the RingDEX matching pipeline, stage by stage

Covers:
  - Order hashing and OrderValidator
  - IntegrityChecker (ring size, input shape, sub-rings, registered tokens)
  - RateVerifier (legality, CV^2 fairness)
  - HistoricalScaler (filled / cancelled history, exhaustion)
  - FillAmountPropagator (two-pass bottleneck resolution)
  - FeeAndSplitCalculator (fee asset, margin split, shortfall waiver)
  - SettlementEngine (transfer plan, all-or-nothing execution)
  - OrderLedger (monotonic maps, state root)
"""

from dataclasses import replace

import pytest
from eth_utils import to_checksum_address

from ringdex.constants import ZERO_ADDRESS
from ringdex.crypto.signing import sign_hash
from ringdex.exceptions import (
    InsufficientFeeBalanceError,
    InvalidOrderError,
    InvalidSignatureError,
    OrderFullyConsumedError,
    RateDiscountInvalidError,
    RateDiscountUnfairError,
    RingSizeOutOfBoundsError,
    SettlementInvariantError,
    ShapeMismatchError,
    SubringDetectedError,
    TokenNotRegisteredError,
    TransferFailedError,
    UnsupportedFeeSelectionError,
)
from ringdex.exchange.fees import FeeAndSplitCalculator
from ringdex.exchange.fills import FillAmountPropagator, fill_buy_amount
from ringdex.exchange.integrity import IntegrityChecker
from ringdex.exchange.ledger import OrderLedger
from ringdex.exchange.orders import FeeSelection, Order, OrderValidator, Ring
from ringdex.exchange.rates import RateVerifier, cv_square
from ringdex.exchange.registries import (
    EthSignatureVerifier,
    InMemoryAssetRegistry,
    InMemoryLedger,
)
from ringdex.exchange.scaling import HistoricalScaler
from ringdex.exchange.settlement import SettlementEngine, Transfer

from ring_helpers import (
    ALICE,
    ALICE_KEY,
    BOB,
    BOB_KEY,
    ENGINE,
    FEE_TOKEN,
    MINER,
    NOW,
    TOKEN_X,
    TOKEN_Y,
    TOKEN_Z,
    OrderSpec,
    make_order,
    make_state,
)

RING_HASH = b"\x42" * 32


def _validator(cutoff: int = 0) -> OrderValidator:
    return OrderValidator(
        ENGINE, EthSignatureVerifier(), cutoff_lookup=lambda owner: cutoff, clock=lambda: NOW,
    )


def _signed(**overrides) -> Order:
    spec = OrderSpec(ALICE_KEY, TOKEN_X, 100, 100)
    for name, value in overrides.items():
        setattr(spec, name, value)
    return make_order(spec, TOKEN_Y)


def _margin_pair(pct: int = 50, fee: int = 10):
    """A sells 100 X for 50 Y, B sells 100 Y for 50 X, both executed 1:1."""
    a = make_state(100, 50, (100, 100), fee_amount=fee, owner=ALICE,
                   sell_token=TOKEN_X, buy_token=TOKEN_Y,
                   fee_selection=FeeSelection.MARGIN_SPLIT, margin_split_percentage=pct)
    b = make_state(100, 50, (100, 100), fee_amount=fee, owner=BOB,
                   sell_token=TOKEN_Y, buy_token=TOKEN_X,
                   fee_selection=FeeSelection.MARGIN_SPLIT, margin_split_percentage=pct)
    a.fee_due = fee
    b.fee_due = fee
    return a, b


def _ring(states, abort: bool = True) -> Ring:
    return Ring(ring_hash=RING_HASH, orders=list(states), miner=MINER,
                fee_recipient=MINER, abort_on_insufficient_fee=abort)


# ============================================================================
#  ORDERS
# ============================================================================

class TestOrderHash:
    """Order identity."""

    def test_hash_is_deterministic(self):
        assert _signed().order_hash(ENGINE) == _signed().order_hash(ENGINE)
        assert len(_signed().order_hash(ENGINE)) == 32

    def test_hash_binds_engine_address(self):
        other_engine = "0x" + "ab" * 20
        assert _signed().order_hash(ENGINE) != _signed().order_hash(other_engine)

    def test_hash_covers_every_field(self):
        base = _signed().order_hash(ENGINE)
        assert _signed(salt=2).order_hash(ENGINE) != base
        assert _signed(fee_amount=1).order_hash(ENGINE) != base
        assert _signed(buy_no_more_than_buy_amount=True).order_hash(ENGINE) != base
        assert _signed(margin_split_percentage=10).order_hash(ENGINE) != base

    def test_hash_ignores_address_casing(self):
        order = _signed()
        lowered = replace(order, owner=order.owner.lower())
        assert lowered.order_hash(ENGINE) == order.order_hash(ENGINE)

    def test_primary_amount(self):
        assert _signed(sell_amount=100, buy_amount=30).primary_amount == 100
        assert _signed(sell_amount=100, buy_amount=30,
                       buy_no_more_than_buy_amount=True).primary_amount == 30


class TestOrderValidator:
    """Field checks and signature verification."""

    def test_valid_order_returns_hash(self):
        order = _signed()
        assert _validator().validate(order) == order.order_hash(ENGINE)

    def test_null_owner(self):
        order = replace(_signed(), owner=ZERO_ADDRESS)
        with pytest.raises(InvalidOrderError, match="owner is null"):
            _validator().validate(order)

    def test_malformed_token(self):
        order = replace(_signed(), buy_token="0x1234")
        with pytest.raises(InvalidOrderError, match="buy token is not an address"):
            _validator().validate(order)

    def test_zero_sell_amount(self):
        with pytest.raises(InvalidOrderError, match="sell amount"):
            _validator().validate(_signed(sell_amount=0))

    def test_zero_buy_amount(self):
        with pytest.raises(InvalidOrderError, match="buy amount"):
            _validator().validate(_signed(buy_amount=0))

    def test_zero_ttl(self):
        with pytest.raises(InvalidOrderError, match="ttl"):
            _validator().validate(_signed(ttl=0))

    def test_zero_salt(self):
        with pytest.raises(InvalidOrderError, match="salt"):
            _validator().validate(_signed(salt=0))

    def test_created_in_future(self):
        with pytest.raises(InvalidOrderError, match="future"):
            _validator().validate(_signed(created_at=NOW + 1))

    def test_expired_at_exact_boundary(self):
        with pytest.raises(InvalidOrderError, match="expired"):
            _validator().validate(_signed(created_at=NOW - 3600, ttl=3600))

    def test_created_at_cutoff_is_void(self):
        with pytest.raises(InvalidOrderError, match="cutoff"):
            _validator(cutoff=NOW - 10).validate(_signed(created_at=NOW - 10))

    def test_created_after_cutoff_is_valid(self):
        _validator(cutoff=NOW - 11).validate(_signed(created_at=NOW - 10))

    def test_margin_split_above_base(self):
        with pytest.raises(InvalidOrderError, match="Margin split"):
            _validator().validate(_signed(margin_split_percentage=101))

    def test_signature_by_other_key(self):
        order = _signed()
        forged = replace(order, signature=sign_hash(BOB_KEY, order.order_hash(ENGINE)))
        with pytest.raises(InvalidSignatureError, match="expected"):
            _validator().validate(forged)

    def test_missing_signature(self):
        order = replace(_signed(), signature=None)
        with pytest.raises(InvalidSignatureError, match="Missing"):
            _validator().validate(order)


# ============================================================================
#  INTEGRITY
# ============================================================================

class TestIntegrityChecker:
    """Ring size, input shape, sub-rings and registration."""

    def _shape(self, n=2, **overrides):
        args = {
            "ring_size": n,
            "address_list": [(ALICE, TOKEN_X)] * n,
            "uint_args_list": [(1,) * 8] * n,
            "uint8_args_list": [(0, 0)] * n,
            "buy_no_more_than_list": [False] * n,
            "v_list": [27] * (n + 1),
            "r_list": [1] * (n + 1),
            "s_list": [1] * (n + 1),
        }
        args.update(overrides)
        return args

    def test_ring_size_bounds(self):
        checker = IntegrityChecker(max_ring_size=4)
        checker.check_ring_size(2)
        checker.check_ring_size(4)
        with pytest.raises(RingSizeOutOfBoundsError):
            checker.check_ring_size(1)
        with pytest.raises(RingSizeOutOfBoundsError):
            checker.check_ring_size(5)

    def test_well_formed_input(self):
        IntegrityChecker(4).check_input_shape(**self._shape())

    def test_short_address_list(self):
        with pytest.raises(ShapeMismatchError, match="address_list"):
            IntegrityChecker(4).check_input_shape(**self._shape(address_list=[(ALICE, TOKEN_X)]))

    def test_narrow_uint_row(self):
        with pytest.raises(ShapeMismatchError, match=r"uint_args_list\[1\]"):
            IntegrityChecker(4).check_input_shape(
                **self._shape(uint_args_list=[(1,) * 8, (1,) * 7])
            )

    def test_missing_ring_signature(self):
        with pytest.raises(ShapeMismatchError, match="s_list"):
            IntegrityChecker(4).check_input_shape(**self._shape(s_list=[1, 1]))

    def test_subring_detected(self):
        with pytest.raises(SubringDetectedError, match="Orders 0 and 2"):
            IntegrityChecker(4).check_no_subring([TOKEN_X, TOKEN_Y, TOKEN_X])

    def test_subring_ignores_checksum_casing(self):
        with pytest.raises(SubringDetectedError):
            IntegrityChecker(4).check_no_subring([TOKEN_X, to_checksum_address(TOKEN_X)])

    def test_distinct_tokens_pass(self):
        IntegrityChecker(4).check_no_subring([TOKEN_X, TOKEN_Y, TOKEN_Z])

    def test_unregistered_token(self):
        registry = InMemoryAssetRegistry([TOKEN_X])
        with pytest.raises(TokenNotRegisteredError, match="Order 1"):
            IntegrityChecker(4).check_tokens_registered([TOKEN_X, TOKEN_Y], registry)


# ============================================================================
#  RATES
# ============================================================================

class TestRateVerifier:
    """Execution-rate legality and fairness."""

    def test_cv_square_of_equal_values(self):
        assert cv_square([10000, 10000, 10000], 10000) == 0

    def test_cv_square_close_ratios(self):
        assert cv_square([9900, 10000], 10000) == 2525

    def test_cv_square_far_ratios(self):
        assert cv_square([9000, 10000], 10000) == 277007

    def test_cv_square_empty(self):
        with pytest.raises(ValueError):
            cv_square([], 10000)

    def test_rate_ratio(self):
        verifier = RateVerifier(62500)
        assert verifier.rate_ratio(make_state(100, 100, (100, 100))) == 10000
        assert verifier.rate_ratio(make_state(100, 100, (99, 100))) == 9900

    def test_fair_ring_passes(self):
        states = [make_state(100, 99, (100, 100)), make_state(100, 100, (100, 100))]
        assert RateVerifier(62500).verify(states) == 2525

    def test_unfair_ring_rejected(self):
        states = [make_state(100, 90, (100, 100)), make_state(100, 100, (100, 100))]
        with pytest.raises(RateDiscountUnfairError, match="277007"):
            RateVerifier(62500).verify(states)

    def test_rate_worse_than_limit(self):
        with pytest.raises(RateDiscountInvalidError, match="worse"):
            RateVerifier(62500).verify([make_state(100, 100, (101, 100)),
                                        make_state(100, 100, (100, 100))])

    def test_rates_that_do_not_close_rejected(self):
        # Both orders are promised twice their limit: 200 * 200 > 100 * 100.
        states = [make_state(100, 100, (100, 200)),
                  make_state(100, 100, (100, 200), owner=BOB, sell_token=TOKEN_Y,
                             buy_token=TOKEN_X)]
        with pytest.raises(RateDiscountInvalidError, match="pay out more"):
            RateVerifier(62500).verify(states)

    def test_closing_ring_passes(self):
        states = [make_state(200, 50, (200, 100)),
                  make_state(1000, 1000, (100, 200), owner=BOB, sell_token=TOKEN_Y,
                             buy_token=TOKEN_X)]
        RateVerifier.check_ring_closure(states)

    def test_non_positive_rate(self):
        with pytest.raises(RateDiscountInvalidError, match="non-positive"):
            RateVerifier(62500).rate_ratio(make_state(100, 100, (0, 100)))


# ============================================================================
#  HISTORICAL SCALING
# ============================================================================

class TestHistoricalScaler:
    """Filled / cancelled history and tentative fills."""

    def test_untouched_order(self):
        state = make_state(100, 50, (100, 50), fee_amount=10, available=80)
        HistoricalScaler(OrderLedger()).scale([state])
        assert state.order.sell_amount == 100
        assert state.fill_sell_amount == 80
        assert state.fee_due == 10

    def test_scaled_by_filled_and_cancelled(self):
        ledger = OrderLedger()
        state = make_state(100, 50, (100, 50), fee_amount=10, available=80)
        ledger.commit_fills({state.order_hash: 40})
        ledger.add_cancelled(state.order_hash, 20)
        HistoricalScaler(ledger).scale([state])
        assert state.order.sell_amount == 40
        assert state.order.buy_amount == 20
        assert state.order.fee_amount == 4
        assert state.fill_sell_amount == 40

    def test_buy_capped_scales_on_buy_side(self):
        ledger = OrderLedger()
        state = make_state(100, 50, (100, 50), buy_capped=True, fee_amount=10)
        ledger.commit_fills({state.order_hash: 20})
        HistoricalScaler(ledger).scale([state])
        assert state.order.buy_amount == 30
        assert state.order.sell_amount == 60
        assert state.order.fee_amount == 6

    def test_original_hash_kept(self):
        ledger = OrderLedger()
        state = make_state(100, 100, (100, 100))
        original = state.order_hash
        ledger.commit_fills({original: 50})
        HistoricalScaler(ledger).scale([state])
        assert state.order_hash == original

    def test_fully_consumed(self):
        ledger = OrderLedger()
        state = make_state(100, 100, (100, 100))
        ledger.commit_fills({state.order_hash: 100})
        with pytest.raises(OrderFullyConsumedError):
            HistoricalScaler(ledger).scale([state])

    def test_over_cancelled_floors_at_zero(self):
        ledger = OrderLedger()
        state = make_state(100, 100, (100, 100))
        ledger.commit_fills({state.order_hash: 70})
        ledger.add_cancelled(state.order_hash, 70)
        scaler = HistoricalScaler(ledger)
        assert scaler.remaining_amount(state) == 0
        with pytest.raises(OrderFullyConsumedError):
            scaler.scale([state])

    def test_rounding_to_zero_other_side(self):
        ledger = OrderLedger()
        state = make_state(100, 1, (100, 1))
        ledger.commit_fills({state.order_hash: 99})
        with pytest.raises(OrderFullyConsumedError):
            HistoricalScaler(ledger).scale([state])


# ============================================================================
#  FILL PROPAGATION
# ============================================================================

class TestFillAmountPropagator:
    """Two-pass bottleneck resolution."""

    def _pair(self):
        a = make_state(100, 100, (100, 100), owner=ALICE, sell_token=TOKEN_X, buy_token=TOKEN_Y)
        b = make_state(40, 40, (40, 40), owner=BOB, sell_token=TOKEN_Y, buy_token=TOKEN_X)
        return a, b

    def test_fill_buy_amount(self):
        assert fill_buy_amount(make_state(100, 50, (100, 50))) == 50
        assert fill_buy_amount(make_state(100, 50, (3, 1), fill=10)) == 3

    def test_bottleneck_second(self):
        a, b = self._pair()
        bottleneck = FillAmountPropagator().propagate([a, b])
        assert bottleneck == 1
        assert (a.fill_sell_amount, b.fill_sell_amount) == (40, 40)

    def test_bottleneck_first(self):
        a, b = self._pair()
        bottleneck = FillAmountPropagator().propagate([b, a])
        assert bottleneck == 0
        assert (a.fill_sell_amount, b.fill_sell_amount) == (40, 40)

    def test_three_ring_middle_bottleneck(self):
        a = make_state(100, 100, (100, 100), sell_token=TOKEN_X, buy_token=TOKEN_Y)
        b = make_state(50, 50, (50, 50), owner=BOB, sell_token=TOKEN_Y, buy_token=TOKEN_Z)
        c = make_state(100, 100, (100, 100), sell_token=TOKEN_Z, buy_token=TOKEN_X)
        bottleneck = FillAmountPropagator().propagate([a, b, c])
        assert bottleneck == 1
        assert [s.fill_sell_amount for s in (a, b, c)] == [50, 50, 50]

    def test_buy_capped_clamp(self):
        a = make_state(200, 50, (200, 100), buy_capped=True)
        b = make_state(1000, 1000, (100, 200), owner=BOB, sell_token=TOKEN_Y, buy_token=TOKEN_X)
        bottleneck = FillAmountPropagator().propagate([a, b])
        assert bottleneck == 0
        assert a.fill_sell_amount == 100
        assert b.fill_sell_amount == 50

    def test_unfunded_order_empties_ring(self):
        a, b = self._pair()
        b.fill_sell_amount = 0
        with pytest.raises(OrderFullyConsumedError, match="nothing to fill"):
            FillAmountPropagator().propagate([a, b])

    def test_fees_follow_final_fills(self):
        a, b = self._pair()
        a.order = replace(a.order, fee_amount=10)
        FillAmountPropagator().propagate([a, b])
        assert a.fee_due == 4

    def test_buy_capped_fee_on_buy_side(self):
        state = make_state(200, 50, (200, 100), buy_capped=True, fee_amount=10, fill=60)
        assert FillAmountPropagator.fee_for_fill(state) == 6


# ============================================================================
#  FEES AND MARGIN SPLITS
# ============================================================================

class TestFeeAndSplitCalculator:
    """Miner pool, fee asset and margin split policies."""

    def test_fee_asset_paid(self):
        ledger = InMemoryLedger()
        ledger.credit(FEE_TOKEN, ALICE, 10)
        ledger.credit(FEE_TOKEN, BOB, 10)
        a, b = _margin_pair()
        a.fee_selection = b.fee_selection = FeeSelection.FEE_ASSET
        pool = FeeAndSplitCalculator(ledger, FEE_TOKEN).calculate(_ring([a, b]))
        assert pool == 0
        assert a.fee_due == 10

    def test_fee_asset_shortfall_aborts(self):
        ledger = InMemoryLedger()
        ledger.credit(FEE_TOKEN, ALICE, 4)
        a, _ = _margin_pair()
        a.fee_selection = FeeSelection.FEE_ASSET
        with pytest.raises(InsufficientFeeBalanceError, match="holds 4"):
            FeeAndSplitCalculator(ledger, FEE_TOKEN).apply_fee_asset(a, 0, abort=True)

    def test_fee_asset_shortfall_waived_credits_reduced_fee(self):
        ledger = InMemoryLedger()
        ledger.credit(FEE_TOKEN, ALICE, 4)
        a, _ = _margin_pair()
        pool = FeeAndSplitCalculator(ledger, FEE_TOKEN).apply_fee_asset(a, 7, abort=False)
        assert a.fee_due == 4
        assert pool == 11

    def test_waived_fee_funds_later_rebate(self):
        # The pool starts empty; only the waived fee of A lets B be rebated.
        ledger = InMemoryLedger()
        ledger.credit(FEE_TOKEN, ALICE, 4)
        a, b = _margin_pair(pct=100, fee=10)
        a.fee_selection = FeeSelection.FEE_ASSET
        b.fee_due = 4
        pool = FeeAndSplitCalculator(ledger, FEE_TOKEN).calculate(_ring([a, b], abort=False))
        assert a.fee_due == 4
        assert b.fee_rebate == 4
        assert b.fee_due == 0
        assert b.buy_side_split == 50
        assert pool == 0

    def test_margin_split(self):
        ledger = InMemoryLedger()
        ledger.credit(FEE_TOKEN, MINER, 100)
        a, b = _margin_pair()
        pool = FeeAndSplitCalculator(ledger, FEE_TOKEN).calculate(_ring([a, b]))
        assert pool == 80
        for state in (a, b):
            assert state.buy_side_split == 25
            assert state.sell_side_split == 0
            assert state.fee_rebate == 10
            assert state.fee_due == 0

    def test_earlier_orders_win_the_pool(self):
        ledger = InMemoryLedger()
        ledger.credit(FEE_TOKEN, MINER, 10)
        ledger.credit(FEE_TOKEN, BOB, 10)
        a, b = _margin_pair()
        pool = FeeAndSplitCalculator(ledger, FEE_TOKEN).calculate(_ring([a, b]))
        assert pool == 0
        assert a.fee_rebate == 10
        assert b.fee_rebate == 0
        assert b.fee_due == 10
        assert b.buy_side_split == 0

    def test_margin_split_without_pool_charges_fee(self):
        ledger = InMemoryLedger()
        a, b = _margin_pair()
        with pytest.raises(InsufficientFeeBalanceError):
            FeeAndSplitCalculator(ledger, FEE_TOKEN).apply_margin_split(a, b, 0, abort=True)

    def test_zero_margin_clears_fee_without_rebate(self):
        ledger = InMemoryLedger()
        a = make_state(100, 100, (100, 100), fee_amount=10,
                       fee_selection=FeeSelection.MARGIN_SPLIT, margin_split_percentage=50)
        b = make_state(100, 100, (100, 100), owner=BOB, sell_token=TOKEN_Y, buy_token=TOKEN_X)
        a.fee_due = 10
        pool = FeeAndSplitCalculator(ledger, FEE_TOKEN).apply_margin_split(a, b, 50, abort=True)
        assert pool == 50
        assert a.fee_due == 0
        assert a.fee_rebate == 0

    def test_buy_capped_margin_on_sell_side(self):
        a = make_state(100, 50, (100, 100), buy_capped=True, fill=40,
                       margin_split_percentage=100)
        b = make_state(100, 100, (100, 100), owner=BOB, sell_token=TOKEN_Y,
                       buy_token=TOKEN_X, fill=50)
        assert FeeAndSplitCalculator.margin(a, b) == 60

    def test_negative_margin_is_invariant_violation(self):
        a = make_state(100, 50, (100, 100), margin_split_percentage=100)
        b = make_state(40, 40, (40, 40), owner=BOB, sell_token=TOKEN_Y, buy_token=TOKEN_X)
        with pytest.raises(SettlementInvariantError, match="negative margin"):
            FeeAndSplitCalculator.margin(a, b)

    def test_unsupported_fee_selection(self):
        a, b = _margin_pair()
        a.fee_selection = 7
        with pytest.raises(UnsupportedFeeSelectionError, match="7"):
            FeeAndSplitCalculator(InMemoryLedger(), FEE_TOKEN).calculate(_ring([a, b]))


# ============================================================================
#  SETTLEMENT
# ============================================================================

class TestSettlementEngine:
    """Transfer plans and all-or-nothing execution."""

    def _settled_margin_ring(self, ledger):
        a, b = _margin_pair()
        ring = _ring([a, b])
        FeeAndSplitCalculator(ledger, FEE_TOKEN).calculate(ring)
        return ring

    def _funded(self):
        ledger = InMemoryLedger()
        ledger.credit(TOKEN_X, ALICE, 100)
        ledger.credit(TOKEN_Y, BOB, 100)
        ledger.credit(FEE_TOKEN, MINER, 100)
        return ledger

    def test_margin_plan(self):
        ledger = self._funded()
        ring = self._settled_margin_ring(ledger)
        plan = SettlementEngine(ledger, FEE_TOKEN).build_plan(ring, ring_index=3)
        assert plan.transfers == [
            Transfer(TOKEN_X, ALICE, BOB, 75),
            Transfer(TOKEN_X, ALICE, MINER, 25),
            Transfer(FEE_TOKEN, MINER, ALICE, 10),
            Transfer(TOKEN_Y, BOB, ALICE, 75),
            Transfer(TOKEN_Y, BOB, MINER, 25),
            Transfer(FEE_TOKEN, MINER, BOB, 10),
        ]
        a, b = ring.orders
        assert plan.fill_updates == {a.order_hash: 100, b.order_hash: 100}

        record = plan.records[0]
        assert record.ring_index == 3
        assert record.prev_order_hash == b.order_hash
        assert record.next_order_hash == b.order_hash
        assert (record.amount_sell, record.amount_buy) == (100, 75)
        assert (record.fee_rebate, record.fee) == (10, 0)

    def test_buy_capped_fill_counts_bought_amount(self):
        a = make_state(200, 50, (200, 100), buy_capped=True, fill=100)
        b = make_state(1000, 1000, (100, 200), owner=BOB, sell_token=TOKEN_Y,
                       buy_token=TOKEN_X, fill=50)
        plan = SettlementEngine(InMemoryLedger(), FEE_TOKEN).build_plan(_ring([a, b]), 0)
        assert plan.fill_updates[a.order_hash] == 50
        assert plan.fill_updates[b.order_hash] == 50

    def test_zero_transfers_skipped(self):
        a = make_state(100, 100, (100, 100), fill=0)
        b = make_state(100, 100, (100, 100), owner=BOB, sell_token=TOKEN_Y,
                       buy_token=TOKEN_X, fill=0)
        plan = SettlementEngine(InMemoryLedger(), FEE_TOKEN).build_plan(_ring([a, b]), 0)
        assert plan.transfers == []

    def test_negative_amount_is_invariant_violation(self):
        a = make_state(100, 100, (100, 100), fill=10)
        b = make_state(100, 100, (100, 100), owner=BOB, sell_token=TOKEN_Y, buy_token=TOKEN_X)
        b.buy_side_split = 20
        with pytest.raises(SettlementInvariantError, match="sell transfer"):
            SettlementEngine(InMemoryLedger(), FEE_TOKEN).build_plan(_ring([a, b]), 0)

    def test_execute_moves_balances(self):
        ledger = self._funded()
        ring = self._settled_margin_ring(ledger)
        engine = SettlementEngine(ledger, FEE_TOKEN)
        engine.execute(engine.build_plan(ring, 0))
        assert ledger.balance_of(TOKEN_Y, ALICE) == 75
        assert ledger.balance_of(TOKEN_X, BOB) == 75
        assert ledger.balance_of(TOKEN_X, MINER) == 25
        assert ledger.balance_of(TOKEN_Y, MINER) == 25
        assert ledger.balance_of(FEE_TOKEN, MINER) == 80

    def test_failed_transfer_rolls_back(self):
        class FailingLedger(InMemoryLedger):
            def transfer(self, token, sender, recipient, amount):
                if token == TOKEN_Y and recipient == ALICE:
                    return False
                return super().transfer(token, sender, recipient, amount)

        ledger = FailingLedger()
        for token, owner, amount in ((TOKEN_X, ALICE, 100), (TOKEN_Y, BOB, 100), (FEE_TOKEN, MINER, 100)):
            ledger.credit(token, owner, amount)
        ring = self._settled_margin_ring(ledger)
        engine = SettlementEngine(ledger, FEE_TOKEN)
        with pytest.raises(TransferFailedError, match="failed"):
            engine.execute(engine.build_plan(ring, 0))
        assert ledger.balance_of(TOKEN_X, ALICE) == 100
        assert ledger.balance_of(TOKEN_X, BOB) == 0
        assert ledger.balance_of(FEE_TOKEN, MINER) == 100
        assert ledger.balance_of(FEE_TOKEN, ALICE) == 0

    def test_raising_transfer_rolls_back(self):
        class RaisingLedger(InMemoryLedger):
            def transfer(self, token, sender, recipient, amount):
                if token == FEE_TOKEN and sender == MINER and recipient == BOB:
                    raise RuntimeError("ledger offline")
                return super().transfer(token, sender, recipient, amount)

        ledger = RaisingLedger()
        for token, owner, amount in ((TOKEN_X, ALICE, 100), (TOKEN_Y, BOB, 100), (FEE_TOKEN, MINER, 100)):
            ledger.credit(token, owner, amount)
        ring = self._settled_margin_ring(ledger)
        engine = SettlementEngine(ledger, FEE_TOKEN)
        with pytest.raises(TransferFailedError, match="ledger offline"):
            engine.execute(engine.build_plan(ring, 0))
        assert ledger.balance_of(TOKEN_Y, BOB) == 100
        assert ledger.balance_of(TOKEN_Y, ALICE) == 0

    def test_raising_rollback_transfer_is_transfer_failure(self):
        class BrokenUndoLedger(InMemoryLedger):
            def transfer(self, token, sender, recipient, amount):
                if token == TOKEN_Y:
                    return False
                if token == TOKEN_X and sender == BOB:
                    raise RuntimeError("ledger offline")
                return super().transfer(token, sender, recipient, amount)

        ledger = BrokenUndoLedger()
        for token, owner, amount in ((TOKEN_X, ALICE, 100), (TOKEN_Y, BOB, 100), (FEE_TOKEN, MINER, 100)):
            ledger.credit(token, owner, amount)
        ring = self._settled_margin_ring(ledger)
        engine = SettlementEngine(ledger, FEE_TOKEN)
        with pytest.raises(TransferFailedError, match="Rollback transfer raised: ledger offline"):
            engine.execute(engine.build_plan(ring, 0))


# ============================================================================
#  ORDER LEDGER
# ============================================================================

class TestOrderLedger:
    """Monotonic history maps."""

    def test_defaults_are_zero(self):
        ledger = OrderLedger()
        assert ledger.get_filled(b"\x01" * 32) == 0
        assert ledger.get_cancelled(b"\x01" * 32) == 0
        assert ledger.get_cutoff(ALICE) == 0

    def test_cancelled_accumulates(self):
        ledger = OrderLedger()
        ledger.add_cancelled(b"\x01" * 32, 10)
        assert ledger.add_cancelled(b"\x01" * 32, 5) == 15

    def test_cutoff_forward_only(self):
        ledger = OrderLedger()
        ledger.set_cutoff(ALICE, 100)
        with pytest.raises(ValueError, match="forward"):
            ledger.set_cutoff(ALICE.lower(), 100)
        assert ledger.get_cutoff(ALICE.lower()) == 100

    def test_commit_fills_all_or_nothing(self):
        ledger = OrderLedger()
        with pytest.raises(ValueError):
            ledger.commit_fills({b"\x01" * 32: 10, b"\x02" * 32: -1})
        assert ledger.get_filled(b"\x01" * 32) == 0

    def test_state_root_tracks_changes(self):
        ledger = OrderLedger()
        empty_root = ledger.compute_state_root()
        ledger.commit_fills({b"\x01" * 32: 10})
        assert ledger.compute_state_root() != empty_root
        assert len(ledger.compute_state_root()) == 64

    def test_serialization_preserves_state_root(self):
        ledger = OrderLedger()
        ledger.commit_fills({b"\x01" * 32: 10})
        ledger.add_cancelled(b"\x02" * 32, 3)
        ledger.set_cutoff(BOB, NOW)
        restored = OrderLedger.from_dict(ledger.to_dict())
        assert restored.compute_state_root() == ledger.compute_state_root()
