# ddcstake

An in-memory model of the staking rules that govern storage node providers
in a cluster: bonding funds to a node, declaring participation in a cluster,
chilling out of it after a delay, unbonding in chunks and withdrawing once
the unbonding period has passed.

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `ddcstake.primitives` – shared value types: `Perquintill` (with
  `Perquintill.from_percent()`), `NodeType`, `StorageNodeMode`,
  `StoragePubKey`, `StorageNodeParams` and the cluster parameter records
  `ClusterParams`, `ClusterGovParams`, `ClusterPricingParams`,
  `ClusterFeesParams` and `ClusterBondingParams`; `cluster_id()` validates a
  20-byte cluster identifier and `node_type_from_int()` maps a numeric code
  to a `NodeType`.
- `ddcstake.weights` – `Weight`, `RuntimeDbWeight` and `StakingWeights`, the
  cost of each staking call (`bond`, `unbond`, `withdraw_unbonded`, `store`,
  `chill`, `set_controller`, `set_node`), priced by default with
  `ROCKS_DB_WEIGHT`.
- `ddcstake.runtime` – the surroundings the staking logic runs in: `System`
  (block number, recorded events, per-account consumer counts), `Balances`
  (free balances, named locks, reserves) and the cluster and node
  collaborators. `ClusterVisitor`, `NodeVisitor` and `ClusterManager` are the
  protocols; `FixedClusterVisitor`, `FixedClusterManager` and
  `MockNodeVisitor` give the same configured answer for every cluster or
  node. Lookup failures are `ClusterDoesNotExist`, `ClusterGovParamsNotSet`
  and `NodeDoesNotExist`.
- `ddcstake.ledger` – `StakingLedger` and `UnlockChunk`, the events
  (`Bonded`, `Unbonded`, `Withdrawn`, `Chilled`, `ChillSoon`, `Activated`,
  `LeaveSoon`, `Left`) and the errors: `StakingError`, carrying an
  `ErrorKind`, and `StakingVisitorError`. At most `MAX_UNLOCKING_CHUNKS` (32)
  chunks may be pending per ledger.
- `ddcstake.staking` – `DdcStaking`, the staking rules: `bond`, `unbond`,
  `withdraw_unbonded`, `store`, `chill`, `fast_chill`, `set_controller`,
  `set_node`, `bond_stake_and_participate`, `build_genesis`, and the queries
  `has_stake`, `has_activated_stake` and `has_chilling_attempt`. State is held
  in plain dictionaries: `bonded`, `ledgers`, `storages`, `nodes`,
  `providers` and `leaving_storages`.
- `ddcstake.testing` – a ready-made `StakingEnvironment` and helpers:
  `build_environment()`, `account()`, `create_funded_user()`,
  `create_stash_controller_node()`,
  `create_stash_controller_node_with_balance()`, `clear_activated_nodes()`,
  `assert_ledger_consistent()` and `check_ledgers()`.

## Example

```python
from ddcstake.ledger import ErrorKind, StakingError
from ddcstake.primitives import StoragePubKey, cluster_id
from ddcstake.testing import build_environment

env = build_environment(has_storages=True)
staking = env.staking
env.system.set_block_number(1)

node = StoragePubKey(bytes([5] * 32))
cluster = cluster_id(bytes([1] * 20))

staking.bond(3, 4, node, 100)          # stash 3, controller 4
staking.store(4, cluster)              # join the cluster

staking.chill(4)                       # may leave from block 11
try:
    staking.chill(4)                   # too early to leave yet
except StakingError as err:
    assert err.kind is ErrorKind.TOO_EARLY

env.system.set_block_number(11)
staking.chill(4)                       # now removed from the cluster
assert 3 not in staking.storages
```

The calls `bond`, `unbond`, `withdraw_unbonded`, `store`, `chill`,
`fast_chill`, `set_controller` and `set_node` either complete or raise
`StakingError` with the state, balances and recorded events left as they
were. Events are recorded by `System` and can be inspected with
`System.last_event()` and `System.has_event()`.

## What it does not do

Everything lives in memory: there is no persistence, no network, no
command-line program and no real cluster or node registry. Cluster settings
and node membership come from whatever objects are passed to `DdcStaking`;
the ones provided answer fixed, configured values.