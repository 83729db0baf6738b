"""Cluster metadata held by the controller's replicated state machine."""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from typing import Any, Mapping


class BrokerStatus(enum.Enum):
    """Liveness of a registered broker."""

    LIVE = "Live"
    DEAD = "Dead"


class TransactionStatus(enum.Enum):
    """Lifecycle stage of a producer transaction."""

    ONGOING = "Ongoing"
    PREPARE_COMMIT = "PrepareCommit"
    PREPARE_ABORT = "PrepareAbort"
    COMPLETE_COMMIT = "CompleteCommit"
    COMPLETE_ABORT = "CompleteAbort"


class StreamJobStatus(enum.Enum):
    """Lifecycle stage of a stream processing job."""

    CREATED = "Created"
    RUNNING = "Running"
    STOPPED = "Stopped"


@dataclass(frozen=True, order=True)
class TopicPartitionKey:
    """Identifies one partition of one topic."""

    topic: str
    partition: int


@dataclass
class CommittedOffset:
    offset: int
    timestamp_ms: int


@dataclass
class GroupMember:
    member_id: str
    subscriptions: list[str]
    session_timeout_ms: int
    last_heartbeat_ms: int


@dataclass
class ConsumerGroupState:
    group_id: str
    generation_id: int = 0
    members: dict[str, GroupMember] = field(default_factory=dict)
    assignments: dict[str, list[TopicPartitionKey]] = field(default_factory=dict)
    offsets: dict[TopicPartitionKey, CommittedOffset] = field(default_factory=dict)


@dataclass
class BrokerRegistration:
    id: int
    addr: str
    last_heartbeat_ms: int
    status: BrokerStatus


@dataclass
class PartitionAssignmentMeta:
    partition_id: int
    leader: int
    leader_epoch: int
    replicas: list[int]
    isr: list[int]


@dataclass
class TopicMetadata:
    name: str
    partition_count: int
    replication_factor: int
    assignments: list[PartitionAssignmentMeta] = field(default_factory=list)


@dataclass
class TransactionalIdMapping:
    producer_id: int
    producer_epoch: int


@dataclass
class TxnOffsetCommits:
    group_id: str
    offsets: list[tuple[str, int, int]] = field(default_factory=list)


@dataclass
class TransactionState:
    transactional_id: str
    producer_id: int
    producer_epoch: int
    status: TransactionStatus
    partitions: set[TopicPartitionKey] = field(default_factory=set)
    offset_commits: TxnOffsetCommits | None = None
    start_time_ms: int = 0


@dataclass
class StreamJobMeta:
    job_name: str
    input_topic: str
    input_partition: int
    output_topic: str
    output_partition: int
    operator_chain: list[str]
    status: StreamJobStatus


@dataclass
class ClusterState:
    """Everything the controller knows about the cluster."""

    brokers: dict[int, BrokerRegistration] = field(default_factory=dict)
    topics: dict[str, TopicMetadata] = field(default_factory=dict)
    consumer_groups: dict[str, ConsumerGroupState] = field(default_factory=dict)
    next_producer_id: int = 0
    transactional_ids: dict[str, TransactionalIdMapping] = field(default_factory=dict)
    transactions: dict[int, TransactionState] = field(default_factory=dict)
    stream_jobs: dict[str, StreamJobMeta] = field(default_factory=dict)

    def live_broker_ids(self) -> list[int]:
        """Ids of brokers currently marked live, in ascending order."""
        return sorted(b.id for b in self.brokers.values() if b.status is BrokerStatus.LIVE)

    def to_dict(self) -> dict[str, Any]:
        """A JSON-compatible representation of the state."""
        return {
            "brokers": {
                str(broker_id): {**asdict(broker), "status": broker.status.value}
                for broker_id, broker in self.brokers.items()
            },
            "topics": {name: asdict(topic) for name, topic in self.topics.items()},
            "consumer_groups": {
                group_id: _group_to_dict(group)
                for group_id, group in self.consumer_groups.items()
            },
            "next_producer_id": self.next_producer_id,
            "transactional_ids": {
                tid: asdict(mapping) for tid, mapping in self.transactional_ids.items()
            },
            "transactions": {
                str(pid): _txn_to_dict(txn) for pid, txn in self.transactions.items()
            },
            "stream_jobs": {
                name: {**asdict(job), "status": job.status.value}
                for name, job in self.stream_jobs.items()
            },
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ClusterState:
        """Rebuild a state from the output of :meth:`to_dict`."""
        try:
            return cls(
                brokers={
                    int(k): _broker_from_dict(v) for k, v in data["brokers"].items()
                },
                topics={k: _topic_from_dict(v) for k, v in data["topics"].items()},
                consumer_groups={
                    k: _group_from_dict(v) for k, v in data["consumer_groups"].items()
                },
                next_producer_id=int(data["next_producer_id"]),
                transactional_ids={
                    k: TransactionalIdMapping(int(v["producer_id"]), int(v["producer_epoch"]))
                    for k, v in data["transactional_ids"].items()
                },
                transactions={
                    int(k): _txn_from_dict(v) for k, v in data["transactions"].items()
                },
                stream_jobs={k: _job_from_dict(v) for k, v in data["stream_jobs"].items()},
            )
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise ValueError(f"invalid cluster state: {exc!r}") from exc


def _key_to_dict(key: TopicPartitionKey) -> dict[str, Any]:
    return {"topic": key.topic, "partition": key.partition}


def _key_from_dict(data: Mapping[str, Any]) -> TopicPartitionKey:
    return TopicPartitionKey(str(data["topic"]), int(data["partition"]))


def _broker_from_dict(data: Mapping[str, Any]) -> BrokerRegistration:
    return BrokerRegistration(
        id=int(data["id"]),
        addr=str(data["addr"]),
        last_heartbeat_ms=int(data["last_heartbeat_ms"]),
        status=BrokerStatus(data["status"]),
    )


def _assignment_from_dict(data: Mapping[str, Any]) -> PartitionAssignmentMeta:
    return PartitionAssignmentMeta(
        partition_id=int(data["partition_id"]),
        leader=int(data["leader"]),
        leader_epoch=int(data["leader_epoch"]),
        replicas=[int(r) for r in data["replicas"]],
        isr=[int(r) for r in data["isr"]],
    )


def _topic_from_dict(data: Mapping[str, Any]) -> TopicMetadata:
    return TopicMetadata(
        name=str(data["name"]),
        partition_count=int(data["partition_count"]),
        replication_factor=int(data["replication_factor"]),
        assignments=[_assignment_from_dict(a) for a in data["assignments"]],
    )


def _group_to_dict(group: ConsumerGroupState) -> dict[str, Any]:
    return {
        "group_id": group.group_id,
        "generation_id": group.generation_id,
        "members": {mid: asdict(member) for mid, member in group.members.items()},
        "assignments": {
            mid: [_key_to_dict(k) for k in keys] for mid, keys in group.assignments.items()
        },
        "offsets": [
            {**_key_to_dict(key), "offset": committed.offset, "timestamp_ms": committed.timestamp_ms}
            for key, committed in sorted(group.offsets.items())
        ],
    }


def _group_from_dict(data: Mapping[str, Any]) -> ConsumerGroupState:
    return ConsumerGroupState(
        group_id=str(data["group_id"]),
        generation_id=int(data["generation_id"]),
        members={
            mid: GroupMember(
                member_id=str(m["member_id"]),
                subscriptions=[str(s) for s in m["subscriptions"]],
                session_timeout_ms=int(m["session_timeout_ms"]),
                last_heartbeat_ms=int(m["last_heartbeat_ms"]),
            )
            for mid, m in data["members"].items()
        },
        assignments={
            mid: [_key_from_dict(k) for k in keys] for mid, keys in data["assignments"].items()
        },
        offsets={
            _key_from_dict(o): CommittedOffset(int(o["offset"]), int(o["timestamp_ms"]))
            for o in data["offsets"]
        },
    )


def _txn_to_dict(txn: TransactionState) -> dict[str, Any]:
    commits = txn.offset_commits
    return {
        "transactional_id": txn.transactional_id,
        "producer_id": txn.producer_id,
        "producer_epoch": txn.producer_epoch,
        "status": txn.status.value,
        "partitions": [_key_to_dict(k) for k in sorted(txn.partitions)],
        "offset_commits": None
        if commits is None
        else {"group_id": commits.group_id, "offsets": [list(o) for o in commits.offsets]},
        "start_time_ms": txn.start_time_ms,
    }


def _txn_from_dict(data: Mapping[str, Any]) -> TransactionState:
    raw_commits = data["offset_commits"]
    commits = None
    if raw_commits is not None:
        commits = TxnOffsetCommits(
            group_id=str(raw_commits["group_id"]),
            offsets=[(str(t), int(p), int(o)) for t, p, o in raw_commits["offsets"]],
        )
    return TransactionState(
        transactional_id=str(data["transactional_id"]),
        producer_id=int(data["producer_id"]),
        producer_epoch=int(data["producer_epoch"]),
        status=TransactionStatus(data["status"]),
        partitions={_key_from_dict(k) for k in data["partitions"]},
        offset_commits=commits,
        start_time_ms=int(data["start_time_ms"]),
    )


def _job_from_dict(data: Mapping[str, Any]) -> StreamJobMeta:
    return StreamJobMeta(
        job_name=str(data["job_name"]),
        input_topic=str(data["input_topic"]),
        input_partition=int(data["input_partition"]),
        output_topic=str(data["output_topic"]),
        output_partition=int(data["output_partition"]),
        operator_chain=[str(op) for op in data["operator_chain"]],
        status=StreamJobStatus(data["status"]),
    )