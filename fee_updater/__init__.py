"""
Gas price updater for an on-chain gas price contract.

Watches new blocks, compares the network gas price against the value stored
in the contract and keeps the contract within a hysteresis band, with at most
one update transaction in flight.
"""

__version__ = "1.0.0"
