"""Stake bonding, unbonding and cluster participation for storage node providers."""

__version__ = "0.1.0"
__all__ = ["primitives", "weights", "runtime", "ledger", "staking", "testing"]