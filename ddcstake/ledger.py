"""Staking ledger records, staking errors and the events the staking logic emits."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Generic, Hashable, List, Optional, TypeVar

from ddcstake.primitives import ClusterId

AccountId = TypeVar("AccountId", bound=Hashable)

DDC_STAKING_ID = b"ddcstake"
"""Identifier of the balance lock that holds a maintainer's stake."""

MAX_UNLOCKING_CHUNKS = 32
"""Limit on the number of pending unlocks an account may have at once."""


@dataclass
class UnlockChunk:
    """An amount of funds and the block at which it becomes unlocked."""

    value: int
    block: int


@dataclass
class StakingLedger(Generic[AccountId]):
    """What is staked by a stash account and what is on its way out."""

    stash: AccountId
    total: int = 0
    """`active` plus everything still in `unlocking`."""
    active: int = 0
    """The amount at stake in any forthcoming rounds."""
    chilling: Optional[int] = None
    """Block number from which chilling is allowed."""
    unlocking: List[UnlockChunk] = field(default_factory=list)
    """First in, first out queue of chunks; later blocks go to the back."""

    def __post_init__(self) -> None:
        if len(self.unlocking) > MAX_UNLOCKING_CHUNKS:
            raise ValueError(
                f"at most {MAX_UNLOCKING_CHUNKS} unlocking chunks, got {len(self.unlocking)}"
            )

    @classmethod
    def default_from(cls, stash: AccountId) -> "StakingLedger[AccountId]":
        """An empty ledger for the given stash."""
        return cls(stash=stash)

    def consolidate_unlocked(self, current_block: int) -> "StakingLedger[AccountId]":
        """Return a ledger without the chunks unlocked by `current_block`.

        The total is reduced, saturating at zero, by the sum of the dropped chunks.
        """
        total = self.total
        remaining = []
        for chunk in self.unlocking:
            if chunk.block > current_block:
                remaining.append(replace(chunk))
            else:
                total = max(0, total - chunk.value)
        return StakingLedger(
            stash=self.stash,
            total=total,
            active=self.active,
            chilling=self.chilling,
            unlocking=remaining,
        )


class ErrorKind(enum.Enum):
    NOT_CONTROLLER = "Not a controller account."
    NOT_STASH = "Not a stash account."
    ALREADY_BONDED = "Stash is already bonded."
    ALREADY_PAIRED = "Controller or node is already paired."
    INSUFFICIENT_BOND = "Bond is less than the cluster requires; chill first to unbond."
    NO_MORE_CHUNKS = "Can not schedule more unlock chunks."
    BAD_STATE = "Internal state has become corrupted."
    ALREADY_IN_ROLE = "Account already participates; chill first to take another role."
    TOO_EARLY = "Action is allowed at a later block."
    NOT_NODE_CONTROLLER = "Caller does not control the stake of the node."
    NODE_HAS_NO_STAKE = "No stake found for the node."
    NO_CLUSTER = "No cluster found."
    NO_CLUSTER_GOV_PARAMS = "No cluster governance parameters found."
    FAST_CHILL_PROHIBITED = "Conditions for fast chill are not met; use regular chill."
    STORING_PROHIBITED = "Storing is called for a non-storage node."
    ARITHMETIC_OVERFLOW = "Arithmetic overflow occurred."
    ARITHMETIC_UNDERFLOW = "Arithmetic underflow occurred."
    NODE_IS_NOT_FOUND = "Node is not registered."
    NODE_IS_LEAVING = "Node provider is leaving a cluster."


class StakingError(Exception):
    """A staking call was rejected."""

    def __init__(self, kind: ErrorKind) -> None:
        super().__init__(kind.value)
        self.kind = kind

    def __repr__(self) -> str:
        return f"StakingError({self.kind.name})"


class StakingVisitorError(Exception):
    """A query about a node's stake could not be answered."""

    class Kind(enum.Enum):
        NODE_STAKE_DOES_NOT_EXIST = "No stake exists for the node."
        NODE_STAKE_IS_IN_BAD_STATE = "The stake of the node is in a bad state."

    def __init__(self, kind: "StakingVisitorError.Kind") -> None:
        super().__init__(kind.value)
        self.kind = kind


@dataclass(frozen=True)
class Bonded:
    """A stash bonded an amount."""

    stash: Hashable
    amount: int


@dataclass(frozen=True)
class Unbonded:
    """A stash unbonded an amount."""

    stash: Hashable
    amount: int


@dataclass(frozen=True)
class Withdrawn:
    """Unlocked chunks worth an amount were removed from the unlocking queue."""

    stash: Hashable
    amount: int


@dataclass(frozen=True)
class Chilled:
    """A stash stopped participating in the network."""

    stash: Hashable


@dataclass(frozen=True)
class ChillSoon:
    """A stash declared it will stop participating from a given block."""

    stash: Hashable
    cluster: ClusterId
    block: int


@dataclass(frozen=True)
class Activated:
    """A stash started participating in the network."""

    stash: Hashable


@dataclass(frozen=True)
class LeaveSoon:
    """A stash started unbonding below the minimum bond of its cluster."""

    stash: Hashable


@dataclass(frozen=True)
class Left:
    """A stash finished unbonding below the minimum bond and left its cluster."""

    stash: Hashable