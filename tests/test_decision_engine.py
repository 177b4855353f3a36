"""
Unit tests for the decision engine

Tests:
- Raise / lower / no-action outcomes
- Inclusive band boundaries
- Integer floor arithmetic
- Zero contract price
- Purity (no dependence on call order)
"""

import pytest
from pydantic import ValidationError

from fee_updater.config import ThresholdConfig
from fee_updater.decision_engine import decide, decide_snapshot
from fee_updater.types import Decision, DecisionAction, GasSnapshot


def create_thresholds(upward=105, downward=85, upward_buffer=110, downward_buffer=110):
    return ThresholdConfig(
        upward_threshold_pct=upward,
        downward_threshold_pct=downward,
        upward_buffer_pct=upward_buffer,
        downward_buffer_pct=downward_buffer
    )


# ============================================================================
# Outcomes
# ============================================================================

def test_network_above_band_raises():
    """Network price above upper bound raises to network * upward buffer"""
    decision = decide(1100, 1000, create_thresholds())

    assert decision == Decision.raise_to(1210)
    assert str(decision) == "RaiseTo(1210)"


def test_network_below_band_lowers():
    """Network price below lower bound lowers to network * downward buffer"""
    decision = decide(800, 1000, create_thresholds())

    assert decision == Decision.lower_to(880)
    assert str(decision) == "LowerTo(880)"


def test_network_inside_band_no_action():
    decision = decide(950, 1000, create_thresholds())

    assert decision == Decision.no_action()
    assert not decision.requires_update
    assert str(decision) == "NoAction"


@pytest.mark.parametrize("network_price", [850, 1050])
def test_band_bounds_are_inclusive(network_price):
    """Equality with either bound is NoAction"""
    assert decide(network_price, 1000, create_thresholds()).action == DecisionAction.NO_ACTION


def test_one_past_bounds_triggers():
    thresholds = create_thresholds()

    assert decide(1051, 1000, thresholds).action == DecisionAction.RAISE
    assert decide(849, 1000, thresholds).action == DecisionAction.LOWER


# ============================================================================
# Arithmetic
# ============================================================================

def test_bounds_use_floor_division():
    """Upper bound of 999 at 105% is 1048 (1048.95 floored)"""
    thresholds = create_thresholds()

    assert decide(1048, 999, thresholds).action == DecisionAction.NO_ACTION
    assert decide(1049, 999, thresholds).action == DecisionAction.RAISE


def test_target_uses_floor_division():
    """1999 * 110 / 100 = 2198.9 -> 2198"""
    decision = decide(1999, 1000, create_thresholds())

    assert decision.target_price == 2198


def test_large_prices_stay_exact():
    """Prices beyond float precision are handled as integers"""
    contract_price = 10**30
    network_price = 2 * 10**30 + 1

    decision = decide(network_price, contract_price, create_thresholds())

    assert decision.target_price == network_price * 110 // 100


def test_zero_contract_price_raises_on_any_positive_network_price():
    thresholds = create_thresholds()

    assert decide(1, 0, thresholds) == Decision.raise_to(1)
    assert decide(0, 0, thresholds) == Decision.no_action()


def test_negative_prices_rejected():
    with pytest.raises(ValueError):
        decide(-1, 1000, create_thresholds())
    with pytest.raises(ValueError):
        decide(1000, -1, create_thresholds())


# ============================================================================
# Purity
# ============================================================================

def test_decide_is_pure():
    """Same inputs give the same output regardless of call history"""
    thresholds = create_thresholds()

    first = decide(1100, 1000, thresholds)
    decide(800, 1000, thresholds)
    decide(950, 1000, thresholds)
    second = decide(1100, 1000, thresholds)

    assert first == second


def test_decide_snapshot_matches_decide():
    thresholds = create_thresholds()
    snapshot = GasSnapshot(network_price=800, contract_price=1000, observed_at_block=7)

    assert decide_snapshot(snapshot, thresholds) == decide(800, 1000, thresholds)


# ============================================================================
# Threshold validation
# ============================================================================

def test_thresholds_must_straddle_100():
    with pytest.raises(ValidationError):
        create_thresholds(upward=100)
    with pytest.raises(ValidationError):
        create_thresholds(downward=100)


def test_buffers_below_100_rejected():
    with pytest.raises(ValidationError):
        create_thresholds(upward_buffer=99)
