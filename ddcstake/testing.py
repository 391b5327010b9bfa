"""A ready-made staking environment and helpers to populate and check it."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Hashable, Tuple

from ddcstake.ledger import StakingLedger
from ddcstake.primitives import NodePubKey, StoragePubKey, cluster_id
from ddcstake.runtime import (
    Balances,
    FixedClusterManager,
    FixedClusterVisitor,
    MockNodeVisitor,
    System,
)
from ddcstake.staking import DdcStaking

SEED = 0
"""Seed used for every account created by the helpers."""

EXISTENTIAL_DEPOSIT = 1

GENESIS_BALANCES = {
    1: 100,
    2: 100,
    3: 100,
    4: 100,
    # storage controllers
    10: 100,
    20: 100,
    30: 100,
    40: 100,
    # storage stashes
    11: 100,
    21: 100,
    31: 100,
    41: 100,
}

GENESIS_CLUSTER = cluster_id(bytes([1] * 20))

# (stash, controller, node key byte, stake)
_GENESIS_STORAGES = (
    (11, 10, 12, 100),
    (21, 20, 22, 100),
    (31, 30, 32, 100),
    (41, 40, 42, 100),
)

_DEFAULT_NODE = StoragePubKey(bytes(32))


@dataclass
class StakingEnvironment:
    """A staking instance wired to in-memory system, balances and visitors."""

    system: System = field(default_factory=System)
    balances: Balances = field(
        default_factory=lambda: Balances(existential_deposit=EXISTENTIAL_DEPOSIT)
    )
    cluster_visitor: FixedClusterVisitor = field(default_factory=FixedClusterVisitor)
    node_visitor: MockNodeVisitor = field(default_factory=MockNodeVisitor)
    cluster_manager: FixedClusterManager = field(default_factory=FixedClusterManager)
    staking: DdcStaking = field(init=False)

    def __post_init__(self) -> None:
        self.staking = DdcStaking(
            self.system,
            self.balances,
            self.cluster_visitor,
            self.node_visitor,
            self.cluster_manager,
        )

    @property
    def minimum_balance(self) -> int:
        return self.balances.existential_deposit


def build_environment(has_storages: bool = True) -> StakingEnvironment:
    """Create an environment with funded accounts and, optionally, four storage participants."""
    env = StakingEnvironment()
    for who, amount in GENESIS_BALANCES.items():
        env.balances.make_free_balance_be(who, amount)
    if has_storages:
        env.staking.build_genesis(
            (stash, controller, StoragePubKey(bytes([key] * 32)), stake, GENESIS_CLUSTER)
            for stash, controller, key, stake in _GENESIS_STORAGES
        )
    # Events are not recorded while the initial state is built.
    env.system.events.clear()
    return env


def _compact(value: int) -> bytes:
    if value < 1 << 6:
        return bytes([value << 2])
    if value < 1 << 14:
        return ((value << 2) | 0b01).to_bytes(2, "little")
    if value < 1 << 30:
        return ((value << 2) | 0b10).to_bytes(4, "little")
    length = (value.bit_length() + 7) // 8
    return bytes([((length - 4) << 2) | 0b11]) + value.to_bytes(length, "little")


def account(name: str, index: int, seed: int) -> int:
    """A deterministic account id derived from a name, an index and a seed."""
    raw_name = name.encode("utf-8")
    encoded = (
        _compact(len(raw_name))
        + raw_name
        + index.to_bytes(4, "little")
        + seed.to_bytes(4, "little")
    )
    digest = hashlib.blake2b(encoded, digest_size=32).digest()
    return int.from_bytes(digest[:8], "little")


def clear_activated_nodes(staking: DdcStaking) -> None:
    """Remove every storage participant."""
    staking.storages.clear()


def create_funded_user(
    env: StakingEnvironment, name: str, index: int, balance_factor: int
) -> int:
    """Create an account holding `balance_factor` times the minimum balance."""
    user = account(name, index, SEED)
    env.balances.make_free_balance_be(user, env.minimum_balance * balance_factor)
    return user


def create_stash_controller_node(
    env: StakingEnvironment, index: int, balance_factor: int
) -> Tuple[int, int, NodePubKey]:
    """Fund a stash and a controller and bond a tenth of the stash's funds."""
    stash = create_funded_user(env, "stash", index, balance_factor)
    controller = create_funded_user(env, "controller", index, balance_factor)
    node = _DEFAULT_NODE
    amount = env.minimum_balance * max(balance_factor // 10, 1)
    env.staking.bond(stash, controller, node, amount)
    return stash, controller, node


def create_stash_controller_node_with_balance(
    env: StakingEnvironment, index: int, balance_factor: int, node: NodePubKey
) -> Tuple[int, int, NodePubKey]:
    """Fund a stash and a controller and bond all of the stash's funds with `node`."""
    stash = create_funded_user(env, "stash", index, balance_factor)
    controller = create_funded_user(env, "controller", index, balance_factor)
    env.staking.bond(stash, controller, node, env.minimum_balance * balance_factor)
    return stash, controller, node


def assert_ledger_consistent(env: StakingEnvironment, controller: Hashable) -> None:
    """Check that total equals active plus unlocking and that active is not dust."""
    ledger: StakingLedger = env.staking.ledgers.get(controller)
    if ledger is None:
        raise AssertionError("Not a controller.")
    real_total = ledger.active + sum(chunk.value for chunk in ledger.unlocking)
    if real_total != ledger.total:
        raise AssertionError(
            f"{controller}: ledger total {ledger.total} differs from {real_total}"
        )
    if not (ledger.active >= env.minimum_balance or ledger.active == 0):
        raise AssertionError(
            f"{controller}: active ledger amount ({ledger.active}) "
            f"must be greater than ED {env.minimum_balance}"
        )


def check_ledgers(env: StakingEnvironment) -> None:
    """Check the ledger of every bonded stash."""
    for controller in list(env.staking.bonded.values()):
        assert_ledger_consistent(env, controller)