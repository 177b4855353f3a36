"""
Decision Engine - Hysteresis check between network and contract gas price

Stateless. All arithmetic is integer percent with floor division so trigger
points are reproducible bit for bit across runs and implementations.
"""

from .types import Decision, GasSnapshot
from .config import ThresholdConfig


def _pct(value: int, pct: int) -> int:
    return value * pct // 100


def decide(network_price: int, contract_price: int, thresholds: ThresholdConfig) -> Decision:
    """
    Decide whether the contract gas price must move.

    Args:
        network_price: Gas price signaled by the network for the current block
        contract_price: Gas price currently stored in the contract
        thresholds: Threshold and buffer percentages

    Returns:
        RaiseTo(network * upward_buffer) when network is strictly above the
        upper bound, LowerTo(network * downward_buffer) when strictly below
        the lower bound, NoAction otherwise (bounds inclusive).
    """
    if network_price < 0 or contract_price < 0:
        raise ValueError(
            f"Prices must be non-negative (network={network_price}, contract={contract_price})"
        )

    # contract_price == 0 yields both bounds at 0: any positive network price raises
    upper_bound = _pct(contract_price, thresholds.upward_threshold_pct)
    lower_bound = _pct(contract_price, thresholds.downward_threshold_pct)

    if network_price > upper_bound:
        return Decision.raise_to(_pct(network_price, thresholds.upward_buffer_pct))
    if network_price < lower_bound:
        return Decision.lower_to(_pct(network_price, thresholds.downward_buffer_pct))
    return Decision.no_action()


def decide_snapshot(snapshot: GasSnapshot, thresholds: ThresholdConfig) -> Decision:
    """Convenience wrapper over decide() for a GasSnapshot"""
    return decide(snapshot.network_price, snapshot.contract_price, thresholds)
