"""Shared DDC types: identifiers, node and cluster parameters, fractions."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import ClassVar, Generic, Optional, TypeVar

MILLICENTS = 100_000
CENTS = 1_000 * MILLICENTS  # assume this is worth about a cent
DOLLARS = 100 * CENTS

CLUSTER_ID_LENGTH = 20
STORAGE_PUB_KEY_LENGTH = 32
_U16_MAX = 0xFFFF

AccountId = TypeVar("AccountId")

ClusterId = bytes


@dataclass(frozen=True, order=True)
class Perquintill:
    """A fraction expressed in parts per quintillion (10**18)."""

    parts: int = 0

    ACCURACY: ClassVar[int] = 10**18

    def __post_init__(self) -> None:
        if not 0 <= self.parts <= self.ACCURACY:
            raise ValueError(f"perquintill parts out of range: {self.parts}")

    @classmethod
    def from_percent(cls, percent: int) -> "Perquintill":
        """Build a fraction from a whole percentage, clamped at 100%."""
        if percent < 0:
            raise ValueError(f"percentage cannot be negative: {percent}")
        return cls(min(percent, 100) * (cls.ACCURACY // 100))


class NodeType(enum.IntEnum):
    STORAGE = 1


def node_type_from_int(value: int) -> NodeType:
    """Return the node type with the given numeric code."""
    try:
        return NodeType(value)
    except ValueError:
        raise ValueError(f"unknown node type: {value}") from None


class StorageNodeMode(enum.IntEnum):
    FULL = 1
    """Caching in RAM enabled and data stored on disk."""
    STORAGE = 2
    """Caching in RAM disabled and data stored on disk."""
    CACHE = 3
    """Caching in RAM enabled and no data stored on disk."""


@dataclass(frozen=True)
class StoragePubKey:
    """The 32-byte public key of a storage node."""

    key: bytes

    def __post_init__(self) -> None:
        if isinstance(self.key, int):
            raise TypeError("a storage key is built from bytes, not an integer")
        raw = bytes(self.key)
        if len(raw) != STORAGE_PUB_KEY_LENGTH:
            raise ValueError(
                f"storage key must be {STORAGE_PUB_KEY_LENGTH} bytes, got {len(raw)}"
            )
        object.__setattr__(self, "key", raw)


NodePubKey = StoragePubKey


def _check_port(name: str, port: int) -> None:
    if not 0 <= port <= _U16_MAX:
        raise ValueError(f"{name} out of range: {port}")


@dataclass
class StorageNodeParams:
    mode: StorageNodeMode
    host: bytes
    domain: bytes
    ssl: bool
    http_port: int
    grpc_port: int
    p2p_port: int

    def __post_init__(self) -> None:
        self.mode = StorageNodeMode(self.mode)
        self.host = bytes(self.host)
        self.domain = bytes(self.domain)
        _check_port("http_port", self.http_port)
        _check_port("grpc_port", self.grpc_port)
        _check_port("p2p_port", self.p2p_port)


NodeParams = StorageNodeParams


@dataclass
class ClusterParams(Generic[AccountId]):
    """Governance non-sensitive cluster parameters."""

    node_provider_auth_contract: Optional[AccountId] = None


@dataclass
class ClusterGovParams:
    """Governance sensitive cluster parameters."""

    treasury_share: Perquintill = field(default_factory=Perquintill)
    validators_share: Perquintill = field(default_factory=Perquintill)
    cluster_reserve_share: Perquintill = field(default_factory=Perquintill)
    storage_bond_size: int = 0
    storage_chill_delay: int = 0
    storage_unbonding_delay: int = 0
    unit_per_mb_stored: int = 0
    unit_per_mb_streamed: int = 0
    unit_per_put_request: int = 0
    unit_per_get_request: int = 0


@dataclass
class ClusterPricingParams:
    unit_per_mb_stored: int
    unit_per_mb_streamed: int
    unit_per_put_request: int
    unit_per_get_request: int


@dataclass
class ClusterFeesParams:
    treasury_share: Perquintill
    validators_share: Perquintill
    cluster_reserve_share: Perquintill


@dataclass
class ClusterBondingParams:
    storage_bond_size: int
    storage_chill_delay: int
    storage_unbonding_delay: int


def cluster_id(value) -> ClusterId:
    """Return a validated 20-byte cluster identifier."""
    if isinstance(value, int):
        raise TypeError("a cluster id is built from bytes, not an integer")
    raw = bytes(value)
    if len(raw) != CLUSTER_ID_LENGTH:
        raise ValueError(f"cluster id must be {CLUSTER_ID_LENGTH} bytes, got {len(raw)}")
    return raw