from dataclasses import dataclass, field

import pytest

from ddcstake.ledger import (
    DDC_STAKING_ID,
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
from ddcstake.primitives import StoragePubKey, cluster_id
from ddcstake.runtime import (
    Balances,
    ClusterDoesNotExist,
    FixedClusterManager,
    FixedClusterVisitor,
    LiquidityRestrictions,
    MockNodeVisitor,
    System,
)
from ddcstake.staking import DdcStaking

CLUSTER = cluster_id(bytes([1] * 20))
CLUSTER_ZERO = cluster_id(bytes(20))


def node(byte):
    return StoragePubKey(bytes([byte] * 32))


@dataclass
class Env:
    system: System
    balances: Balances
    staking: DdcStaking
    node_visitor: MockNodeVisitor
    cluster_manager: FixedClusterManager = field(default_factory=FixedClusterManager)


def make_env(node_visitor=None, cluster_visitor=None, cluster_manager=None, has_storages=True):
    system = System()
    balances = Balances(existential_deposit=1)
    for who in (1, 2, 3, 4, 10, 20, 30, 40, 11, 21, 31, 41):
        balances.make_free_balance_be(who, 100)
    node_visitor = node_visitor or MockNodeVisitor()
    cluster_manager = cluster_manager or FixedClusterManager()
    staking = DdcStaking(
        system,
        balances,
        cluster_visitor or FixedClusterVisitor(),
        node_visitor,
        cluster_manager,
    )
    if has_storages:
        staking.build_genesis(
            [
                (11, 10, node(12), 100, CLUSTER),
                (21, 20, node(22), 100, CLUSTER),
                (31, 30, node(32), 100, CLUSTER),
                (41, 40, node(42), 100, CLUSTER),
            ]
        )
    return Env(system, balances, staking, node_visitor, cluster_manager)


def assert_ledgers_consistent(env):
    for controller in env.staking.bonded.values():
        ledger = env.staking.ledgers[controller]
        assert ledger.total == ledger.active + sum(c.value for c in ledger.unlocking)
        assert ledger.active >= env.balances.existential_deposit or ledger.active == 0


def expect_error(kind, call, *args):
    with pytest.raises(StakingError) as info:
        call(*args)
    assert info.value.kind is kind


def test_basic_setup_works():
    env = make_env()
    assert env.staking.bonded.get(11) == 10
    assert env.staking.bonded.get(21) == 20
    assert env.staking.bonded.get(1) is None
    assert env.staking.ledgers.get(10) == StakingLedger(stash=11, total=100, active=100)
    assert env.staking.ledgers.get(20) == StakingLedger(stash=21, total=100, active=100)
    assert env.staking.ledgers.get(1) is None
    assert env.balances.locked(11) == 100
    assert_ledgers_consistent(env)


def test_change_controller_works():
    env = make_env()
    staking = env.staking
    assert staking.bonded[11] == 10
    staking.withdraw_unbonded(10)
    staking.set_controller(11, 3)
    expect_error(ErrorKind.ALREADY_PAIRED, staking.set_controller, 11, 3)
    assert staking.bonded[11] == 3
    expect_error(ErrorKind.NOT_CONTROLLER, staking.store, 10, CLUSTER)
    staking.store(3, CLUSTER)
    assert staking.storages[11] == CLUSTER
    assert_ledgers_consistent(env)


def test_set_controller_requires_stash():
    env = make_env()
    expect_error(ErrorKind.NOT_STASH, env.staking.set_controller, 10, 5)


def test_not_enough_initial_bond_flow():
    env = make_env()
    staking, system = env.staking, env.system
    system.set_block_number(1)

    staking.bond(3, 4, node(5), 5)
    expect_error(ErrorKind.INSUFFICIENT_BOND, staking.store, 4, CLUSTER)

    staking.bond(1, 2, node(3), 100)
    expect_error(ErrorKind.INSUFFICIENT_BOND, staking.store, 4, CLUSTER)

    expect_error(ErrorKind.ALREADY_BONDED, staking.bond, 3, 4, node(5), 5)

    staking.unbond(4, 5)
    assert system.last_event() == Unbonded(3, 5)
    system.set_block_number(11)
    staking.withdraw_unbonded(4)
    assert system.last_event() == Withdrawn(3, 5)
    assert 3 not in staking.bonded
    assert 4 not in staking.ledgers
    assert node(5) not in staking.nodes
    assert env.balances.locked(3) == 0

    staking.bond(3, 4, node(5), 10)
    staking.store(4, CLUSTER)
    assert system.last_event() == Activated(3)
    assert_ledgers_consistent(env)


def test_unbonding_edge_cases_work():
    env = make_env()
    staking, system = env.staking, env.system
    system.set_block_number(1)
    staking.bond(3, 4, node(5), 100)
    staking.store(4, CLUSTER)

    staking.unbond(4, 1)
    while system.block_number < 33:
        staking.unbond(4, 1)
        assert system.last_event() == Unbonded(3, 1)
        system.set_block_number(system.block_number + 1)

    expect_error(ErrorKind.NO_MORE_CHUNKS, staking.unbond, 4, 1)
    ledger = staking.ledgers[4]
    assert len(ledger.unlocking) == 32
    assert ledger.unlocking[0] == UnlockChunk(value=2, block=1)
    assert ledger.active == 67
    assert_ledgers_consistent(env)


def test_set_node_works():
    env = make_env()
    staking, system = env.staking, env.system
    system.set_block_number(1)
    assert staking.bonded[11] == 10

    expect_error(ErrorKind.ALREADY_PAIRED, staking.set_node, 10, node(12))
    expect_error(ErrorKind.ALREADY_IN_ROLE, staking.set_node, 11, node(12))
    # The failed call leaves the node mapping untouched.
    assert staking.nodes[node(12)] == 11

    staking.chill(10)
    system.set_block_number(11)
    staking.chill(10)

    staking.set_node(11, node(13))
    assert staking.nodes[node(13)] == 11
    assert staking.providers[11] == node(13)
    assert node(12) not in staking.nodes


def test_cancel_previous_chill_works():
    env = make_env()
    staking, system = env.staking, env.system
    system.set_block_number(1)
    staking.bond(3, 4, node(5), 100)
    staking.bond(1, 2, node(3), 100)
    staking.store(4, CLUSTER)
    staking.store(2, CLUSTER)

    staking.chill(4)
    assert staking.ledgers[4].chilling == 11
    staking.store(4, CLUSTER)
    assert staking.ledgers[4].chilling is None

    staking.chill(2)
    staking.store(2, CLUSTER)
    assert staking.ledgers[2].chilling is None


def test_store_in_other_cluster_requires_chill():
    env = make_env()
    expect_error(ErrorKind.ALREADY_IN_ROLE, env.staking.store, 10, CLUSTER_ZERO)


def test_staking_should_work():
    env = make_env()
    staking, system, balances = env.staking, env.system, env.balances
    system.set_block_number(1)
    for who in range(1, 5):
        balances.make_free_balance_be(who, 2000)

    expect_error(ErrorKind.INSUFFICIENT_BOND, staking.bond, 3, 4, node(5), 0)

    staking.bond(3, 4, node(5), 1500)
    assert system.last_event() == Bonded(3, 1500)
    staking.store(4, CLUSTER_ZERO)
    assert system.last_event() == Activated(3)

    expect_error(ErrorKind.ALREADY_PAIRED, staking.bond, 5, 4, node(10), 10)
    expect_error(ErrorKind.ALREADY_PAIRED, staking.bond, 5, 6, node(5), 10)

    assert staking.bonded[3] == 4
    assert staking.ledgers[4] == StakingLedger(stash=3, total=1500, active=1500)
    assert staking.storages[3] == CLUSTER_ZERO
    assert staking.nodes[node(5)] == 3

    staking.chill(4)
    assert system.last_event() == ChillSoon(3, CLUSTER_ZERO, 11)
    chilling = system.block_number + 10
    assert staking.ledgers[4] == StakingLedger(
        stash=3, total=1500, active=1500, chilling=chilling
    )

    with pytest.raises(LiquidityRestrictions):
        balances.reserve(3, 501)
    balances.reserve(3, 409)
    assert balances.free_balance(3) == 1591

    expect_error(ErrorKind.TOO_EARLY, staking.chill, 4)
    expect_error(ErrorKind.FAST_CHILL_PROHIBITED, staking.fast_chill, 4)

    while system.block_number < chilling:
        system.set_block_number(system.block_number + 1)

    assert staking.ledgers[4].chilling == chilling

    staking.chill(4)
    assert system.last_event() == Chilled(3)
    assert staking.storages.get(3) is None
    assert staking.ledgers[4].chilling is None
    assert_ledgers_consistent(env)


def test_storage_full_unbonding_works():
    visitor = MockNodeVisitor(cluster=CLUSTER, node_exists=True)
    env = make_env(node_visitor=visitor)
    staking, system, balances = env.staking, env.system, env.balances
    system.set_block_number(1)
    stash, controller = 3, 4
    key = node(2)
    balances.make_free_balance_be(controller, 2000)
    balances.make_free_balance_be(stash, 2000)

    staking.bond(stash, controller, key, 10)
    assert system.last_event() == Bonded(stash, 10)
    staking.store(controller, CLUSTER)
    assert system.last_event() == Activated(stash)
    assert staking.storages[stash] == CLUSTER
    assert staking.nodes[key] == stash

    staking.chill(controller)
    chilling = system.block_number + 10
    assert system.last_event() == ChillSoon(stash, CLUSTER, chilling)
    system.set_block_number(chilling)
    staking.chill(controller)
    assert system.last_event() == Chilled(stash)
    assert staking.storages.get(stash) is None

    staking.unbond(controller, 10)
    assert system.has_event(LeaveSoon(stash))
    assert staking.leaving_storages[stash] == CLUSTER
    assert system.last_event() == Unbonded(stash, 10)

    system.set_block_number(system.block_number + 10)
    staking.withdraw_unbonded(controller)
    assert system.has_event(Withdrawn(stash, 10))
    assert staking.leaving_storages.get(stash) is None
    assert system.last_event() == Left(stash)
    assert env.cluster_manager.removed == [(CLUSTER, key)]


def test_leaving_provider_cannot_store_or_set_node():
    visitor = MockNodeVisitor(cluster=CLUSTER)
    env = make_env(node_visitor=visitor)
    staking, system = env.staking, env.system
    system.set_block_number(1)
    staking.bond(3, 4, node(5), 10)
    staking.unbond(4, 10)
    assert staking.leaving_storages[3] == CLUSTER
    staking.bond_stake_and_participate(1, 2, node(6), 50, CLUSTER)
    expect_error(ErrorKind.NODE_IS_LEAVING, staking.set_node, 3, node(7))
    assert staking.nodes[node(5)] == 3


def test_withdraw_too_early_keeps_chunks():
    env = make_env(node_visitor=MockNodeVisitor(cluster=CLUSTER))
    staking, system = env.staking, env.system
    system.set_block_number(1)
    staking.unbond(10, 40)
    staking.withdraw_unbonded(10)
    ledger = staking.ledgers[10]
    assert ledger.total == 100
    assert ledger.unlocking == [UnlockChunk(value=40, block=11)]
    system.set_block_number(11)
    staking.withdraw_unbonded(10)
    assert system.last_event() == Withdrawn(11, 40)
    assert staking.ledgers[10].total == 60
    assert env.balances.locked(11) == 60
    assert_ledgers_consistent(env)


def test_unbond_below_cluster_bond_is_rejected():
    env = make_env()
    expect_error(ErrorKind.INSUFFICIENT_BOND, env.staking.unbond, 10, 95)
    assert env.staking.ledgers[10].active == 100


def test_bond_caps_value_at_free_balance():
    env = make_env(has_storages=False)
    env.staking.bond(3, 4, node(5), 500)
    assert env.system.last_event() == Bonded(3, 100)
    assert env.staking.ledgers[4].total == 100
    assert env.balances.locked(3) == 100
    assert env.system.consumers[3] == 1


def test_bond_unknown_node_rejected():
    env = make_env(node_visitor=MockNodeVisitor(node_exists=False), has_storages=False)
    expect_error(ErrorKind.NODE_IS_NOT_FOUND, env.staking.bond, 3, 4, node(5), 10)
    assert env.staking.bonded == {}
    assert env.system.events == []


def test_unbond_with_deleted_node_is_immediate():
    env = make_env(node_visitor=MockNodeVisitor(cluster=CLUSTER, node_exists=False),
                   has_storages=False)
    env.staking.bond_stake_and_participate(3, 4, node(5), 50, CLUSTER)
    env.system.set_block_number(7)
    env.staking.unbond(4, 20)
    assert env.staking.ledgers[4].unlocking == [UnlockChunk(value=20, block=7)]
    assert env.staking.leaving_storages == {}


def test_chill_without_delay_is_immediate():
    env = make_env(cluster_visitor=FixedClusterVisitor(chill_delay=0))
    env.staking.chill(10)
    assert env.system.last_event() == Chilled(11)
    assert 11 not in env.staking.storages


def test_chill_when_not_participating_does_nothing():
    env = make_env(has_storages=False)
    env.staking.bond(3, 4, node(5), 50)
    events = list(env.system.events)
    env.staking.chill(4)
    assert env.system.events == events


def test_fast_chill_allowed_outside_cluster():
    env = make_env(cluster_manager=FixedClusterManager(contains=False))
    env.system.set_block_number(5)
    env.staking.fast_chill(10)
    assert env.staking.ledgers[10].chilling == 6
    assert env.system.last_event() == ChillSoon(11, CLUSTER, 6)


def test_fast_chill_requires_participation():
    env = make_env(has_storages=False)
    env.staking.bond(3, 4, node(5), 50)
    expect_error(ErrorKind.NODE_HAS_NO_STAKE, env.staking.fast_chill, 4)
    expect_error(ErrorKind.NOT_CONTROLLER, env.staking.fast_chill, 3)


def test_cluster_lookup_failure_maps_to_no_cluster():
    class MissingClusterVisitor(FixedClusterVisitor):
        def ensure_cluster(self, cluster):
            raise ClusterDoesNotExist(cluster)

    env = make_env(cluster_visitor=MissingClusterVisitor(), has_storages=False)
    env.staking.bond(3, 4, node(5), 50)
    expect_error(ErrorKind.NO_CLUSTER, env.staking.store, 4, CLUSTER)


def test_genesis_requires_enough_balance():
    env = make_env(has_storages=False)
    with pytest.raises(ValueError):
        env.staking.build_genesis([(1, 2, node(9), 1000, CLUSTER)])


def test_staking_creator_works():
    env = make_env()
    env.staking.bond_stake_and_participate(1, 2, node(2), 5, CLUSTER)
    assert env.staking.ledgers[2] == StakingLedger(stash=1, total=5, active=5)
    assert env.staking.storages[1] == CLUSTER
    assert env.staking.nodes[node(2)] == 1
    assert env.system.last_event() == Bonded(1, 5)
    assert env.balances.locked(1) == 5
    assert DDC_STAKING_ID in env.balances.locks[1]


def test_staking_visitor_works():
    env = make_env()
    staking = env.staking
    key = node(5)
    staking.bond(3, 4, key, 100)
    assert staking.has_stake(key) is True
    assert staking.has_chilling_attempt(key) is False
    staking.store(4, CLUSTER)
    assert staking.has_activated_stake(key, CLUSTER) is True
    assert staking.has_activated_stake(key, CLUSTER_ZERO) is False
    staking.chill(4)
    assert staking.has_chilling_attempt(key) is True


def test_staking_visitor_unknown_node():
    env = make_env()
    assert env.staking.has_stake(node(99)) is False
    with pytest.raises(StakingVisitorError) as info:
        env.staking.has_activated_stake(node(99), CLUSTER)
    assert info.value.kind is StakingVisitorError.Kind.NODE_STAKE_DOES_NOT_EXIST
    with pytest.raises(StakingVisitorError) as info:
        env.staking.has_chilling_attempt(node(99))
    assert info.value.kind is StakingVisitorError.Kind.NODE_STAKE_DOES_NOT_EXIST


def test_do_remove_storage_reports_membership():
    env = make_env()
    assert env.staking.do_remove_storage(11) is True
    assert env.staking.do_remove_storage(11) is False