"""Staking of funds by DDC network maintainers: bonding, storing, chilling, unbonding."""

from __future__ import annotations

import copy
import functools
from contextlib import contextmanager
from typing import Hashable, Iterable, Iterator, Optional, Tuple

from ddcstake.ledger import (
    DDC_STAKING_ID,
    MAX_UNLOCKING_CHUNKS,
    Activated,
    Bonded,
    Chilled,
    ChillSoon,
    ErrorKind,
    LeaveSoon,
    Left,
    StakingError,
    StakingLedger,
    StakingVisitorError,
    Unbonded,
    UnlockChunk,
    Withdrawn,
)
from ddcstake.primitives import ClusterId, NodePubKey, NodeType, StoragePubKey
from ddcstake.runtime import (
    Balances,
    ClusterGovParamsNotSet,
    ClusterManager,
    ClusterVisitor,
    ClusterVisitorError,
    ConsumerLimitReached,
    NodeVisitor,
    NodeVisitorError,
    System,
)

GenesisStorage = Tuple[Hashable, Hashable, NodePubKey, int, ClusterId]


@contextmanager
def _visitor_errors() -> Iterator[None]:
    """Turn cluster and node lookup failures into staking errors."""
    try:
        yield
    except ClusterGovParamsNotSet as exc:
        raise StakingError(ErrorKind.NO_CLUSTER_GOV_PARAMS) from exc
    except ClusterVisitorError as exc:
        raise StakingError(ErrorKind.NO_CLUSTER) from exc
    except NodeVisitorError as exc:
        raise StakingError(ErrorKind.NODE_IS_NOT_FOUND) from exc


def _transactional(method):
    """Undo every state change made by the call if it raises."""

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        with self._transaction():
            return method(self, *args, **kwargs)

    return wrapper


class DdcStaking:
    """Funds at stake by DDC node providers and their participation in clusters."""

    def __init__(
        self,
        system: System,
        balances: Balances,
        cluster_visitor: ClusterVisitor,
        node_visitor: NodeVisitor,
        cluster_manager: ClusterManager,
    ) -> None:
        self.system = system
        self.balances = balances
        self.cluster_visitor = cluster_visitor
        self.node_visitor = node_visitor
        self.cluster_manager = cluster_manager
        self.bonded: dict = {}
        """Stash account to its controller."""
        self.ledgers: dict = {}
        """Controller account to its staking ledger."""
        self.storages: dict = {}
        """Stash of a storage participant to the cluster it takes part in."""
        self.nodes: dict = {}
        """Node key to the stash of its operator."""
        self.providers: dict = {}
        """Stash of an operator to its node key."""
        self.leaving_storages: dict = {}
        """Stash of a storage provider leaving a cluster to that cluster."""

    @property
    def _minimum_balance(self) -> int:
        return self.balances.existential_deposit

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        maps = (
            self.bonded,
            self.ledgers,
            self.storages,
            self.nodes,
            self.providers,
            self.leaving_storages,
            self.system.consumers,
            self.balances.free,
            self.balances.reserved,
            self.balances.locks,
        )
        saved = copy.deepcopy(maps)
        event_count = len(self.system.events)
        try:
            yield
        except BaseException:
            for current, snapshot in zip(maps, saved):
                current.clear()
                current.update(snapshot)
            del self.system.events[event_count:]
            raise

    def _deposit(self, event) -> None:
        self.system.deposit_event(event)

    def build_genesis(self, storages: Iterable[GenesisStorage]) -> None:
        """Bond and activate the initial storage network participants."""
        for stash, controller, node, balance, cluster in storages:
            if self.balances.free_balance(stash) < balance:
                raise ValueError(
                    "Stash do not have enough balance to participate in storage network."
                )
            self.bond(stash, controller, node, balance)
            self.store(controller, cluster)

    @_transactional
    def bond(self, stash: Hashable, controller: Hashable, node: NodePubKey, value: int) -> None:
        """Lock up `value` of the stash's balance, controlled by `controller`."""
        if stash in self.bonded:
            raise StakingError(ErrorKind.ALREADY_BONDED)
        if controller in self.ledgers:
            raise StakingError(ErrorKind.ALREADY_PAIRED)
        if value < self._minimum_balance:
            raise StakingError(ErrorKind.INSUFFICIENT_BOND)
        if node in self.nodes or stash in self.providers:
            raise StakingError(ErrorKind.ALREADY_PAIRED)
        if not self.node_visitor.exists(node):
            raise StakingError(ErrorKind.NODE_IS_NOT_FOUND)
        try:
            self.system.inc_consumers(stash)
        except ConsumerLimitReached as exc:
            raise StakingError(ErrorKind.BAD_STATE) from exc

        self.nodes[node] = stash
        self.providers[stash] = node
        self.bonded[stash] = controller

        value = min(value, self.balances.free_balance(stash))
        self._deposit(Bonded(stash, value))
        self._update_ledger(controller, StakingLedger(stash=stash, total=value, active=value))

    @_transactional
    def unbond(self, controller: Hashable, value: int) -> None:
        """Schedule part of the stash to be unlocked after the unbonding delay."""
        ledger = self._ledger_of(controller)
        if len(ledger.unlocking) >= MAX_UNLOCKING_CHUNKS:
            raise StakingError(ErrorKind.NO_MORE_CHUNKS)

        value = min(value, ledger.active)
        if value == 0:
            return

        ledger.active -= value
        # Avoid leaving a dust balance in the staking system.
        if ledger.active < self._minimum_balance:
            value += ledger.active
            ledger.active = 0

        cluster = self.storages.get(ledger.stash)
        if cluster is not None:
            with _visitor_errors():
                min_active_bond = self.cluster_visitor.get_bond_size(cluster, NodeType.STORAGE)
        else:
            # Not assigned to a cluster or already chilled: anything may be unbonded.
            min_active_bond = 0
        if ledger.active < min_active_bond:
            raise StakingError(ErrorKind.INSUFFICIENT_BOND)

        node = self.providers.get(ledger.stash)
        if node is None:
            raise StakingError(ErrorKind.BAD_STATE)

        unbonding_delay = 0
        if self.node_visitor.exists(node):
            with _visitor_errors():
                node_cluster = self.node_visitor.get_cluster_id(node)
            if node_cluster is not None:
                with _visitor_errors():
                    params = self.cluster_visitor.get_bonding_params(node_cluster)
                # A provider unbonding below the cluster minimum keeps its stake
                # until the end of the unbonding period, then leaves the cluster.
                if ledger.active < params.storage_bond_size:
                    self.leaving_storages[ledger.stash] = node_cluster
                    self._deposit(LeaveSoon(ledger.stash))
                unbonding_delay = params.storage_unbonding_delay

        block = self.system.block_number + unbonding_delay
        if ledger.unlocking and ledger.unlocking[-1].block == block:
            # One chunk per block; being FIFO, a chunk for this block is the last one.
            ledger.unlocking[-1].value += value
        elif len(ledger.unlocking) >= MAX_UNLOCKING_CHUNKS:
            raise StakingError(ErrorKind.NO_MORE_CHUNKS)
        else:
            ledger.unlocking.append(UnlockChunk(value=value, block=block))

        self._update_ledger(controller, ledger)
        self._deposit(Unbonded(ledger.stash, value))

    @_transactional
    def withdraw_unbonded(self, controller: Hashable) -> None:
        """Release the unlocking chunks whose block has been reached."""
        ledger = self._ledger_of(controller)
        stash, old_total = ledger.stash, ledger.total
        node = self.providers.get(stash)
        if node is None:
            raise StakingError(ErrorKind.BAD_STATE)

        ledger = ledger.consolidate_unlocked(self.system.block_number)

        if not ledger.unlocking and ledger.active < self._minimum_balance:
            # Everything was unbonded and released: drop all staking information.
            self._kill_stash(stash)
            self.balances.remove_lock(DDC_STAKING_ID, stash)
        else:
            self._update_ledger(controller, ledger)

        if ledger.total < old_total:
            self._deposit(Withdrawn(stash, old_total - ledger.total))
            leaving_cluster = self.leaving_storages.get(stash)
            if leaving_cluster is not None:
                # The cluster manager may have removed the node already.
                try:
                    self.cluster_manager.remove_node(leaving_cluster, node)
                except Exception:
                    pass
                del self.leaving_storages[stash]
                self._deposit(Left(stash))

    @_transactional
    def store(self, controller: Hashable, cluster: ClusterId) -> None:
        """Declare the wish to store data in `cluster`, or cancel a pending chill."""
        with _visitor_errors():
            self.cluster_visitor.ensure_cluster(cluster)
        ledger = self._ledger_of(controller)
        with _visitor_errors():
            bond_size = self.cluster_visitor.get_bond_size(cluster, NodeType.STORAGE)
        if ledger.active < bond_size:
            raise StakingError(ErrorKind.INSUFFICIENT_BOND)
        stash = ledger.stash

        node = self.providers.get(stash)
        if node is None:
            raise StakingError(ErrorKind.BAD_STATE)
        if not isinstance(node, StoragePubKey):
            raise StakingError(ErrorKind.STORING_PROHIBITED)

        current = self.storages.get(stash)
        if current is not None:
            if current != cluster:
                raise StakingError(ErrorKind.ALREADY_IN_ROLE)
            self.reset_chilling(controller)
            return
        if stash in self.leaving_storages:
            raise StakingError(ErrorKind.NODE_IS_LEAVING)

        self.do_add_storage(stash, cluster)
        self._deposit(Activated(stash))

    @_transactional
    def chill(self, controller: Hashable) -> None:
        """Declare, and later carry out, the wish to stop participating."""
        ledger = self._ledger_of(controller)
        current_block = self.system.block_number

        cluster = self.storages.get(ledger.stash)
        if cluster is None:
            return  # already chilled or leaving the cluster
        with _visitor_errors():
            delay = self.cluster_visitor.get_chill_delay(cluster, NodeType.STORAGE)

        if delay == 0:
            self._chill_stash(ledger.stash)
            return

        can_chill_from = current_block + delay
        chilling = ledger.chilling
        if chilling is None or can_chill_from < chilling:
            self.chill_stash_soon(ledger.stash, controller, cluster, can_chill_from)
            return
        if chilling > current_block:
            raise StakingError(ErrorKind.TOO_EARLY)

        self._chill_stash(ledger.stash)
        self.reset_chilling(controller)

    @_transactional
    def set_controller(self, stash: Hashable, controller: Hashable) -> None:
        """Make `controller` the controller of the stash."""
        old_controller = self.bonded.get(stash)
        if old_controller is None:
            raise StakingError(ErrorKind.NOT_STASH)
        if controller in self.ledgers:
            raise StakingError(ErrorKind.ALREADY_PAIRED)
        if controller != old_controller:
            self.bonded[stash] = controller
            ledger = self.ledgers.pop(old_controller, None)
            if ledger is not None:
                self.ledgers[controller] = ledger

    @_transactional
    def set_node(self, stash: Hashable, new_node: NodePubKey) -> None:
        """Replace the node of an operator stash; the stash must be chilled."""
        existing_stash = self.nodes.get(new_node)
        if existing_stash is not None and existing_stash != stash:
            raise StakingError(ErrorKind.ALREADY_PAIRED)

        current_node = self.providers.get(stash)
        if current_node is not None:
            self.nodes.pop(current_node, None)

        if stash in self.storages:
            raise StakingError(ErrorKind.ALREADY_IN_ROLE)
        if stash in self.leaving_storages:
            raise StakingError(ErrorKind.NODE_IS_LEAVING)

        self.nodes[new_node] = stash
        self.providers[stash] = new_node

    @_transactional
    def fast_chill(self, controller: Hashable) -> None:
        """Allow a node that is not a cluster member to chill from the next block."""
        stash = self._ledger_of(controller).stash
        node = self.providers.get(stash)
        if node is None:
            raise StakingError(ErrorKind.BAD_STATE)
        node_stash = self.nodes.get(node)
        if node_stash is None:
            raise StakingError(ErrorKind.BAD_STATE)
        if node_stash != stash:
            raise StakingError(ErrorKind.NOT_NODE_CONTROLLER)

        cluster = self.storages.get(stash)
        if cluster is None:
            raise StakingError(ErrorKind.NODE_HAS_NO_STAKE)
        if self.cluster_manager.contains_node(cluster, node):
            raise StakingError(ErrorKind.FAST_CHILL_PROHIBITED)

        self.chill_stash_soon(stash, controller, cluster, self.system.block_number + 1)

    def chill_stash_soon(
        self, stash: Hashable, controller: Hashable, cluster: ClusterId, can_chill_from: int
    ) -> None:
        """Note that the stash may chill from block `can_chill_from`."""
        ledger = self.ledgers.get(controller)
        if ledger is not None:
            ledger.chilling = can_chill_from
        self._deposit(ChillSoon(stash, cluster, can_chill_from))

    def do_add_storage(self, who: Hashable, cluster: ClusterId) -> None:
        """Add or move a storage participant to `cluster`."""
        self.storages[who] = cluster

    def do_remove_storage(self, who: Hashable) -> bool:
        """Remove a storage participant; return whether it was one."""
        return self.storages.pop(who, None) is not None

    def reset_chilling(self, controller: Hashable) -> None:
        """Forget any pending chill of the controller's ledger."""
        ledger = self.ledgers.get(controller)
        if ledger is not None:
            ledger.chilling = None

    def bond_stake_and_participate(
        self,
        stash: Hashable,
        controller: Hashable,
        node: NodePubKey,
        value: int,
        cluster: ClusterId,
    ) -> None:
        """Bond a stake and make the stash a storage participant of `cluster` at once."""
        self.nodes[node] = stash
        self.providers[stash] = node
        self.bonded[stash] = controller
        value = min(value, self.balances.free_balance(stash))
        self._deposit(Bonded(stash, value))
        self._update_ledger(controller, StakingLedger(stash=stash, total=value, active=value))
        self.do_add_storage(stash, cluster)

    def has_activated_stake(self, node: NodePubKey, cluster: ClusterId) -> bool:
        """Whether the node's stash participates in `cluster`."""
        stash = self._stash_of_node(node)
        return self.storages.get(stash) == cluster

    def has_stake(self, node: NodePubKey) -> bool:
        """Whether any stash is bonded with the node."""
        return node in self.nodes

    def has_chilling_attempt(self, node: NodePubKey) -> bool:
        """Whether the node's stake has a pending chill."""
        stash = self._stash_of_node(node)
        controller = self.bonded.get(stash)
        if controller is None:
            raise StakingVisitorError(StakingVisitorError.Kind.NODE_STAKE_IS_IN_BAD_STATE)
        ledger = self.ledgers.get(controller)
        if ledger is None:
            raise StakingVisitorError(StakingVisitorError.Kind.NODE_STAKE_IS_IN_BAD_STATE)
        return ledger.chilling is not None

    def _stash_of_node(self, node: NodePubKey) -> Hashable:
        stash = self.nodes.get(node)
        if stash is None:
            raise StakingVisitorError(StakingVisitorError.Kind.NODE_STAKE_DOES_NOT_EXIST)
        return stash

    def _ledger_of(self, controller: Hashable) -> StakingLedger:
        ledger = self.ledgers.get(controller)
        if ledger is None:
            raise StakingError(ErrorKind.NOT_CONTROLLER)
        return copy.deepcopy(ledger)

    def _update_ledger(self, controller: Hashable, ledger: StakingLedger) -> None:
        self.balances.set_lock(DDC_STAKING_ID, ledger.stash, ledger.total)
        self.ledgers[controller] = ledger

    def _chill_stash(self, stash: Hashable) -> None:
        if self.do_remove_storage(stash):
            self._deposit(Chilled(stash))

    def _kill_stash(self, stash: Hashable) -> None:
        controller = self.bonded.get(stash)
        if controller is None:
            raise StakingError(ErrorKind.NOT_STASH)
        del self.bonded[stash]
        self.ledgers.pop(controller, None)
        node: Optional[NodePubKey] = self.providers.pop(stash, None)
        if node is not None:
            self.nodes.pop(node, None)
        self.do_remove_storage(stash)
        self.system.dec_consumers(stash)