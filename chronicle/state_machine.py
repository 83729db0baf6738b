"""The controller's replicated state machine: applies commands and takes snapshots."""

from __future__ import annotations

import copy
import json
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from chronicle import changes, responses
from chronicle.changes import MetadataChange
from chronicle.cluster import (
    BrokerRegistration,
    BrokerStatus,
    ClusterState,
    PartitionAssignmentMeta,
    StreamJobMeta,
    StreamJobStatus,
    TopicMetadata,
)
from chronicle.commands import (
    AddOffsetsToTxn,
    AddPartitionsToTxn,
    AllocateProducerId,
    BeginTransaction,
    CommitOffset,
    ConsumerHeartbeat,
    CreateStreamJob,
    CreateTopic,
    DeleteStreamJob,
    DeleteTopic,
    EndTransaction,
    Heartbeat,
    JoinGroup,
    LeaveGroup,
    MarkBrokerDead,
    MetadataRequest,
    RegisterBroker,
    RemoveExpiredMember,
    TxnOffsetCommit,
    UpdateISR,
    UpdateLeader,
    UpdateStreamJobStatus,
    WriteTxnMarkerComplete,
)
from chronicle.groups import (
    commit_offset,
    consumer_heartbeat,
    join_group,
    leave_group,
    remove_expired_member,
)
from chronicle.log_store import Entry, LogId
from chronicle.responses import Error, MetadataResponse, Ok
from chronicle.transactions import (
    add_offsets_to_txn,
    add_partitions_to_txn,
    allocate_producer_id,
    begin_transaction,
    end_transaction,
    txn_offset_commit,
    write_txn_marker_complete,
)

Assigner = Callable[[int, int, list[int]], Iterable[tuple[int, Sequence[int]]]]
"""Maps (partition count, replication factor, live broker ids) to (partition id, replicas)."""

_CHANNEL_CAPACITY = 256


def _current_time_ms() -> int:
    return time.time_ns() // 1_000_000


def _log_id_to_dict(log_id: Optional[LogId]) -> Optional[dict[str, int]]:
    if log_id is None:
        return None
    return {"term": log_id.term, "node_id": log_id.node_id, "index": log_id.index}


def _log_id_from_dict(data: Optional[Mapping[str, Any]]) -> Optional[LogId]:
    if data is None:
        return None
    return LogId(int(data["term"]), int(data["node_id"]), int(data["index"]))


@dataclass
class StateMachineData:
    """What the state machine has applied, and the resulting cluster state."""

    last_applied_log: Optional[LogId] = None
    membership_log_id: Optional[LogId] = None
    last_membership: dict[int, str] = field(default_factory=dict)
    cluster_state: ClusterState = field(default_factory=ClusterState)

    def to_dict(self) -> dict[str, Any]:
        """A JSON-compatible representation of the data."""
        return {
            "last_applied_log": _log_id_to_dict(self.last_applied_log),
            "last_membership": {
                "log_id": _log_id_to_dict(self.membership_log_id),
                "nodes": {str(k): v for k, v in self.last_membership.items()},
            },
            "cluster_state": self.cluster_state.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> StateMachineData:
        """Rebuild the data from the output of :meth:`to_dict`."""
        try:
            membership = data["last_membership"]
            return cls(
                last_applied_log=_log_id_from_dict(data["last_applied_log"]),
                membership_log_id=_log_id_from_dict(membership["log_id"]),
                last_membership={int(k): str(v) for k, v in membership["nodes"].items()},
                cluster_state=ClusterState.from_dict(data["cluster_state"]),
            )
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"invalid state machine data: {exc!r}") from exc


@dataclass(frozen=True)
class SnapshotMeta:
    last_log_id: Optional[LogId]
    membership_log_id: Optional[LogId]
    last_membership: dict[int, str]
    snapshot_id: str


@dataclass(frozen=True)
class Snapshot:
    meta: SnapshotMeta
    data: bytes


class StateMachineStore:
    """Holds the state machine data and applies committed log entries to it."""

    def __init__(self, assigner: Assigner) -> None:
        self._assigner = assigner
        self._lock = threading.RLock()
        self._data = StateMachineData()
        self._snapshot_idx = 0
        self._current_snapshot: Optional[Snapshot] = None
        self._subscribers: list[queue.Queue[MetadataChange]] = []

    def cluster_state(self) -> ClusterState:
        """A copy of the current cluster state."""
        with self._lock:
            return copy.deepcopy(self._data.cluster_state)

    def subscribe(self) -> queue.Queue[MetadataChange]:
        """A queue receiving every change published from now on.

        When a subscriber falls behind, its oldest changes are dropped.
        """
        receiver: queue.Queue[MetadataChange] = queue.Queue(maxsize=_CHANNEL_CAPACITY)
        with self._lock:
            self._subscribers.append(receiver)
        return receiver

    def _publish(self, change: MetadataChange) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for receiver in subscribers:
            while True:
                try:
                    receiver.put_nowait(change)
                    break
                except queue.Full:
                    try:
                        receiver.get_nowait()
                    except queue.Empty:
                        pass

    def apply_command(self, sm: StateMachineData, request: MetadataRequest) -> MetadataResponse:
        """Apply one command to ``sm`` and return its result."""
        state = sm.cluster_state
        match request:
            case RegisterBroker(id=broker_id, addr=addr):
                state.brokers[broker_id] = BrokerRegistration(
                    id=broker_id,
                    addr=addr,
                    last_heartbeat_ms=_current_time_ms(),
                    status=BrokerStatus.LIVE,
                )
                self._publish(changes.BrokerRegistered(id=broker_id, addr=addr))
                return Ok()
            case Heartbeat(broker_id=broker_id, timestamp_ms=timestamp_ms):
                broker = state.brokers.get(broker_id)
                if broker is not None:
                    broker.last_heartbeat_ms = timestamp_ms
                    broker.status = BrokerStatus.LIVE
                return Ok()
            case CreateTopic():
                return self._create_topic(state, request)
            case DeleteTopic(name=name):
                state.topics.pop(name, None)
                self._publish(changes.TopicDeleted(name=name))
                return Ok()
            case UpdateLeader(topic=topic, partition=partition, new_leader=leader, epoch=epoch):
                assignment = _find_assignment(state, topic, partition)
                if assignment is not None:
                    assignment.leader = leader
                    assignment.leader_epoch = epoch
                self._publish(
                    changes.LeaderChanged(
                        topic=topic, partition=partition, new_leader=leader, epoch=epoch
                    )
                )
                return Ok()
            case UpdateISR(topic=topic, partition=partition, isr=isr):
                assignment = _find_assignment(state, topic, partition)
                if assignment is not None:
                    assignment.isr = list(isr)
                self._publish(changes.ISRChanged(topic=topic, partition=partition, isr=list(isr)))
                return Ok()
            case MarkBrokerDead(broker_id=broker_id):
                broker = state.brokers.get(broker_id)
                if broker is not None:
                    broker.status = BrokerStatus.DEAD
                self._publish(changes.BrokerDead(id=broker_id))
                return Ok()
            case JoinGroup():
                return join_group(state, request, _current_time_ms())
            case LeaveGroup():
                return leave_group(state, request)
            case ConsumerHeartbeat():
                return consumer_heartbeat(state, request, _current_time_ms())
            case CommitOffset():
                return commit_offset(state, request, _current_time_ms())
            case RemoveExpiredMember():
                return remove_expired_member(state, request)
            case AllocateProducerId():
                return allocate_producer_id(state, request)
            case BeginTransaction():
                return begin_transaction(state, request, _current_time_ms())
            case AddPartitionsToTxn():
                return add_partitions_to_txn(state, request)
            case AddOffsetsToTxn():
                return add_offsets_to_txn(state, request)
            case TxnOffsetCommit():
                return txn_offset_commit(state, request)
            case EndTransaction():
                return end_transaction(state, request)
            case WriteTxnMarkerComplete():
                return write_txn_marker_complete(
                    state, request, _current_time_ms(), self._publish
                )
            case CreateStreamJob():
                if request.job_name in state.stream_jobs:
                    return Error(f"stream job already exists: {request.job_name}")
                state.stream_jobs[request.job_name] = StreamJobMeta(
                    job_name=request.job_name,
                    input_topic=request.input_topic,
                    input_partition=request.input_partition,
                    output_topic=request.output_topic,
                    output_partition=request.output_partition,
                    operator_chain=list(request.operator_chain),
                    status=StreamJobStatus.CREATED,
                )
                return responses.StreamJobCreated(job_name=request.job_name)
            case DeleteStreamJob(job_name=name):
                if state.stream_jobs.pop(name, None) is None:
                    return Error(f"stream job not found: {name}")
                return Ok()
            case UpdateStreamJobStatus(job_name=name, status=status):
                job = state.stream_jobs.get(name)
                if job is None:
                    return Error(f"stream job not found: {name}")
                job.status = status
                return Ok()
        raise TypeError(f"not a metadata command: {request!r}")

    def _create_topic(self, state: ClusterState, request: CreateTopic) -> MetadataResponse:
        if request.name in state.topics:
            return Error(f"topic already exists: {request.name}")
        live_ids = state.live_broker_ids()
        if not live_ids:
            return Error("no live brokers")
        assignments = [
            PartitionAssignmentMeta(
                partition_id=partition_id,
                leader=replicas[0],
                leader_epoch=1,
                replicas=list(replicas),
                isr=list(replicas),
            )
            for partition_id, replicas in self._assigner(
                request.partition_count, request.replication_factor, live_ids
            )
        ]
        state.topics[request.name] = TopicMetadata(
            name=request.name,
            partition_count=request.partition_count,
            replication_factor=request.replication_factor,
            assignments=assignments,
        )
        self._publish(
            changes.TopicCreated(name=request.name, assignments=copy.deepcopy(assignments))
        )
        return responses.TopicCreated(assignments=copy.deepcopy(assignments))

    def apply(self, entries: Iterable[Entry]) -> list[MetadataResponse]:
        """Apply committed entries in order, returning one response per entry."""
        results: list[MetadataResponse] = []
        with self._lock:
            sm = self._data
            for entry in entries:
                sm.last_applied_log = entry.log_id
                if entry.payload is not None:
                    results.append(self.apply_command(sm, entry.payload))
                else:
                    if entry.membership is not None:
                        sm.membership_log_id = entry.log_id
                        sm.last_membership = dict(entry.membership)
                    results.append(Ok())
        return results

    def applied_state(self) -> tuple[Optional[LogId], dict[int, str]]:
        """The last applied log id and the last applied membership."""
        with self._lock:
            return self._data.last_applied_log, dict(self._data.last_membership)

    def build_snapshot(self) -> Snapshot:
        """Serialize the current data and keep it as the current snapshot."""
        with self._lock:
            sm = self._data
            data = json.dumps(sm.to_dict()).encode()
            self._snapshot_idx += 1
            last = sm.last_applied_log
            if last is not None:
                snapshot_id = f"T{last.term}-N{last.node_id}-{last.index}-{self._snapshot_idx}"
            else:
                snapshot_id = f"--{self._snapshot_idx}"
            meta = SnapshotMeta(
                last_log_id=last,
                membership_log_id=sm.membership_log_id,
                last_membership=dict(sm.last_membership),
                snapshot_id=snapshot_id,
            )
            snapshot = Snapshot(meta=meta, data=data)
            self._current_snapshot = snapshot
        return snapshot

    def install_snapshot(self, meta: SnapshotMeta, data: bytes) -> None:
        """Replace the data with a received snapshot."""
        try:
            new_sm = StateMachineData.from_dict(json.loads(data))
        except ValueError as exc:
            raise ValueError(f"invalid snapshot {meta.snapshot_id}: {exc}") from exc
        with self._lock:
            self._data = new_sm
            self._current_snapshot = Snapshot(meta=meta, data=bytes(data))

    def get_current_snapshot(self) -> Optional[Snapshot]:
        with self._lock:
            return self._current_snapshot


def _find_assignment(
    state: ClusterState, topic: str, partition: int
) -> Optional[PartitionAssignmentMeta]:
    meta = state.topics.get(topic)
    if meta is None:
        return None
    return next((a for a in meta.assignments if a.partition_id == partition), None)