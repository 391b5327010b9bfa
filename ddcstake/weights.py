"""Execution weights of the staking calls."""

from __future__ import annotations

from dataclasses import dataclass

U64_MAX = 2**64 - 1
WEIGHT_REF_TIME_PER_NANOS = 1_000


def _saturate(value: int) -> int:
    return min(value, U64_MAX)


@dataclass(frozen=True, order=True)
class Weight:
    """Computation time and proof size, each saturating at 64 bits."""

    ref_time: int = 0
    proof_size: int = 0

    def __post_init__(self) -> None:
        if self.ref_time < 0 or self.proof_size < 0:
            raise ValueError("weight components cannot be negative")

    @classmethod
    def from_ref_time(cls, ref_time: int) -> "Weight":
        return cls(ref_time=_saturate(ref_time))

    def saturating_add(self, other: "Weight") -> "Weight":
        return Weight(
            _saturate(self.ref_time + other.ref_time),
            _saturate(self.proof_size + other.proof_size),
        )


@dataclass(frozen=True)
class RuntimeDbWeight:
    """Cost of one database read and one write."""

    read: int
    write: int

    def reads(self, count: int) -> Weight:
        return Weight.from_ref_time(self.read * count)

    def writes(self, count: int) -> Weight:
        return Weight.from_ref_time(self.write * count)


ROCKS_DB_WEIGHT = RuntimeDbWeight(
    read=25_000 * WEIGHT_REF_TIME_PER_NANOS,
    write=100_000 * WEIGHT_REF_TIME_PER_NANOS,
)


@dataclass(frozen=True)
class StakingWeights:
    """Weights of the staking calls for a given database cost."""

    db: RuntimeDbWeight = ROCKS_DB_WEIGHT

    def _weigh(self, base: int, reads: int, writes: int) -> Weight:
        return (
            Weight.from_ref_time(base)
            .saturating_add(self.db.reads(reads))
            .saturating_add(self.db.writes(writes))
        )

    def bond(self) -> Weight:
        return self._weigh(39_000_000, 6, 5)

    def unbond(self) -> Weight:
        return self._weigh(37_000_000, 6, 3)

    def withdraw_unbonded(self) -> Weight:
        return self._weigh(33_000_000, 5, 3)

    def store(self) -> Weight:
        return self._weigh(28_000_000, 6, 1)

    def chill(self) -> Weight:
        return self._weigh(28_000_000, 3, 2)

    def set_controller(self) -> Weight:
        return self._weigh(14_000_000, 3, 3)

    def set_node(self) -> Weight:
        return self._weigh(14_000_000, 4, 3)