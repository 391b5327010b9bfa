"""The surrounding runtime the staking logic relies on: system, balances, visitors."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Hashable, Optional, Protocol

from ddcstake.primitives import (
    ClusterBondingParams,
    ClusterFeesParams,
    ClusterId,
    ClusterPricingParams,
    NodePubKey,
    NodeType,
    Perquintill,
)


class ClusterVisitorError(Exception):
    """A cluster lookup failed."""


class ClusterDoesNotExist(ClusterVisitorError):
    """No cluster with that identifier."""


class ClusterGovParamsNotSet(ClusterVisitorError):
    """The cluster has no governance parameters."""


class NodeVisitorError(Exception):
    """A node lookup failed."""


class NodeDoesNotExist(NodeVisitorError):
    """No node with that key."""


class LiquidityRestrictions(Exception):
    """The operation would take the free balance below the locked amount."""


class ConsumerLimitReached(Exception):
    """The account already has the maximum number of consumers."""


@dataclass
class System:
    """Block number, deposited events and per-account consumer counts."""

    block_number: int = 0
    events: list = field(default_factory=list)
    consumers: dict = field(default_factory=dict)
    max_consumers: int = 16

    def set_block_number(self, number: int) -> None:
        self.block_number = number

    def deposit_event(self, event: Any) -> None:
        self.events.append(event)

    def last_event(self) -> Any:
        if not self.events:
            raise LookupError("no events have been deposited")
        return self.events[-1]

    def has_event(self, event: Any) -> bool:
        return event in self.events

    def inc_consumers(self, who: Hashable) -> None:
        current = self.consumers.get(who, 0)
        if current >= self.max_consumers:
            raise ConsumerLimitReached(who)
        self.consumers[who] = current + 1

    def dec_consumers(self, who: Hashable) -> None:
        current = self.consumers.get(who, 0)
        if current <= 1:
            self.consumers.pop(who, None)
        else:
            self.consumers[who] = current - 1


@dataclass
class Balances:
    """Free and reserved balances with named locks on the free part."""

    existential_deposit: int = 1
    free: dict = field(default_factory=dict)
    reserved: dict = field(default_factory=dict)
    locks: dict = field(default_factory=dict)

    def free_balance(self, who: Hashable) -> int:
        return self.free.get(who, 0)

    def make_free_balance_be(self, who: Hashable, amount: int) -> None:
        if amount < 0:
            raise ValueError("balance cannot be negative")
        self.free[who] = amount

    def set_lock(self, lock_id: bytes, who: Hashable, amount: int) -> None:
        if amount == 0:
            return
        self.locks.setdefault(who, {})[lock_id] = amount

    def remove_lock(self, lock_id: bytes, who: Hashable) -> None:
        account_locks = self.locks.get(who)
        if account_locks is None:
            return
        account_locks.pop(lock_id, None)
        if not account_locks:
            del self.locks[who]

    def locked(self, who: Hashable) -> int:
        return max(self.locks.get(who, {}).values(), default=0)

    def reserve(self, who: Hashable, amount: int) -> None:
        if amount < 0:
            raise ValueError("amount cannot be negative")
        if amount == 0:
            return
        free = self.free_balance(who)
        if amount > free:
            raise ValueError(f"insufficient balance: {free} < {amount}")
        if free - amount < self.locked(who):
            raise LiquidityRestrictions(who)
        self.free[who] = free - amount
        self.reserved[who] = self.reserved.get(who, 0) + amount


class ClusterVisitor(Protocol):
    """Read access to cluster settings."""

    def ensure_cluster(self, cluster: ClusterId) -> None:
        """Raise ClusterVisitorError if the cluster does not exist."""

    def get_bond_size(self, cluster: ClusterId, node_type: NodeType) -> int:
        """Minimum bond for a node of the given type."""

    def get_chill_delay(self, cluster: ClusterId, node_type: NodeType) -> int:
        """Blocks to wait before a node of the given type may chill."""

    def get_unbonding_delay(self, cluster: ClusterId, node_type: NodeType) -> int:
        """Blocks to wait before unbonded funds may be withdrawn."""

    def get_pricing_params(self, cluster: ClusterId) -> ClusterPricingParams:
        """Pricing parameters of the cluster."""

    def get_fees_params(self, cluster: ClusterId) -> ClusterFeesParams:
        """Fee shares of the cluster."""

    def get_reserve_account_id(self, cluster: ClusterId) -> Any:
        """Reserve account of the cluster."""

    def get_bonding_params(self, cluster: ClusterId) -> ClusterBondingParams:
        """Bonding parameters of the cluster."""


class NodeVisitor(Protocol):
    """Read access to registered nodes."""

    def get_cluster_id(self, node: NodePubKey) -> Optional[ClusterId]:
        """Cluster the node belongs to, if any."""

    def exists(self, node: NodePubKey) -> bool:
        """Whether the node is registered."""


class ClusterManager(Protocol):
    """Cluster membership management."""

    def contains_node(self, cluster: ClusterId, node: NodePubKey) -> bool:
        """Whether the node is a member of the cluster."""

    def add_node(self, cluster: ClusterId, node: NodePubKey) -> None:
        """Add the node to the cluster."""

    def remove_node(self, cluster: ClusterId, node: NodePubKey) -> None:
        """Remove the node from the cluster."""


def _default_pricing() -> ClusterPricingParams:
    return ClusterPricingParams(
        unit_per_mb_stored=2,
        unit_per_mb_streamed=3,
        unit_per_put_request=4,
        unit_per_get_request=5,
    )


def _default_fees() -> ClusterFeesParams:
    return ClusterFeesParams(
        treasury_share=Perquintill.from_percent(1),
        validators_share=Perquintill.from_percent(10),
        cluster_reserve_share=Perquintill.from_percent(2),
    )


@dataclass
class FixedClusterVisitor:
    """A cluster visitor answering the same settings for every cluster."""

    bond_size: int = 10
    chill_delay: int = 10
    unbonding_delay: int = 10
    pricing_params: ClusterPricingParams = field(default_factory=_default_pricing)
    fees_params: ClusterFeesParams = field(default_factory=_default_fees)

    def ensure_cluster(self, cluster: ClusterId) -> None:
        return None

    def get_bond_size(self, cluster: ClusterId, node_type: NodeType) -> int:
        return self.bond_size

    def get_chill_delay(self, cluster: ClusterId, node_type: NodeType) -> int:
        return self.chill_delay

    def get_unbonding_delay(self, cluster: ClusterId, node_type: NodeType) -> int:
        return self.unbonding_delay

    def get_pricing_params(self, cluster: ClusterId) -> ClusterPricingParams:
        return self.pricing_params

    def get_fees_params(self, cluster: ClusterId) -> ClusterFeesParams:
        return self.fees_params

    def get_reserve_account_id(self, cluster: ClusterId) -> Any:
        raise ClusterDoesNotExist(cluster)

    def get_bonding_params(self, cluster: ClusterId) -> ClusterBondingParams:
        return ClusterBondingParams(
            storage_bond_size=self.get_bond_size(cluster, NodeType.STORAGE),
            storage_chill_delay=self.get_chill_delay(cluster, NodeType.STORAGE),
            storage_unbonding_delay=self.get_unbonding_delay(cluster, NodeType.STORAGE),
        )


@dataclass
class FixedClusterManager:
    """A cluster manager with a fixed membership answer that records changes."""

    contains: bool = True
    added: list = field(default_factory=list)
    removed: list = field(default_factory=list)

    def contains_node(self, cluster: ClusterId, node: NodePubKey) -> bool:
        return self.contains

    def add_node(self, cluster: ClusterId, node: NodePubKey) -> None:
        self.added.append((cluster, node))

    def remove_node(self, cluster: ClusterId, node: NodePubKey) -> None:
        self.removed.append((cluster, node))


@dataclass
class MockNodeVisitor:
    """A node visitor answering the same configured state for every node."""

    cluster: Optional[ClusterId] = None
    node_exists: bool = True

    def get_cluster_id(self, node: NodePubKey) -> Optional[ClusterId]:
        return self.cluster

    def exists(self, node: NodePubKey) -> bool:
        return self.node_exists