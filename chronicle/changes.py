"""Notifications published when cluster metadata changes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from chronicle.cluster import PartitionAssignmentMeta


@dataclass(frozen=True)
class BrokerRegistered:
    id: int
    addr: str


@dataclass(frozen=True)
class BrokerDead:
    id: int


@dataclass(frozen=True)
class TopicCreated:
    name: str
    assignments: list[PartitionAssignmentMeta] = field(default_factory=list)


@dataclass(frozen=True)
class TopicDeleted:
    name: str


@dataclass(frozen=True)
class LeaderChanged:
    topic: str
    partition: int
    new_leader: int
    epoch: int


@dataclass(frozen=True)
class ISRChanged:
    topic: str
    partition: int
    isr: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class TransactionCompleted:
    producer_id: int
    producer_epoch: int
    committed: bool
    partitions: list[tuple[str, int]] = field(default_factory=list)


MetadataChange = Union[
    BrokerRegistered, BrokerDead, TopicCreated, TopicDeleted, LeaderChanged,
    ISRChanged, TransactionCompleted,
]