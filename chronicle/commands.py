"""Commands proposed to the controller's replicated log."""

from __future__ import annotations

import enum
from dataclasses import MISSING, dataclass, field, fields
from typing import Any, Callable, Mapping, Optional, Union

from chronicle.cluster import StreamJobStatus


@dataclass
class RegisterBroker:
    id: int
    addr: str


@dataclass
class Heartbeat:
    broker_id: int
    timestamp_ms: int


@dataclass
class CreateTopic:
    name: str
    partition_count: int
    replication_factor: int


@dataclass
class DeleteTopic:
    name: str


@dataclass
class UpdateLeader:
    topic: str
    partition: int
    new_leader: int
    epoch: int


@dataclass
class UpdateISR:
    topic: str
    partition: int
    isr: list[int]


@dataclass
class MarkBrokerDead:
    broker_id: int


@dataclass
class JoinGroup:
    group_id: str
    member_id: str
    topics: list[str]
    session_timeout_ms: int


@dataclass
class LeaveGroup:
    group_id: str
    member_id: str


@dataclass
class ConsumerHeartbeat:
    group_id: str
    member_id: str


@dataclass
class CommitOffset:
    group_id: str
    offsets: list[tuple[str, int, int]]


@dataclass
class RemoveExpiredMember:
    group_id: str
    member_id: str


@dataclass
class AllocateProducerId:
    transactional_id: Optional[str] = None


@dataclass
class BeginTransaction:
    producer_id: int


@dataclass
class AddPartitionsToTxn:
    producer_id: int
    partitions: list[tuple[str, int]]


@dataclass
class AddOffsetsToTxn:
    producer_id: int
    group_id: str


@dataclass
class EndTransaction:
    producer_id: int
    commit: bool


@dataclass
class WriteTxnMarkerComplete:
    producer_id: int


@dataclass
class TxnOffsetCommit:
    producer_id: int
    group_id: str
    offsets: list[tuple[str, int, int]]


@dataclass
class CreateStreamJob:
    job_name: str
    input_topic: str
    input_partition: int
    output_topic: str
    output_partition: int
    operator_chain: list[str] = field(default_factory=list)


@dataclass
class DeleteStreamJob:
    job_name: str


@dataclass
class UpdateStreamJobStatus:
    job_name: str
    status: StreamJobStatus


MetadataRequest = Union[
    RegisterBroker, Heartbeat, CreateTopic, DeleteTopic, UpdateLeader, UpdateISR,
    MarkBrokerDead, JoinGroup, LeaveGroup, ConsumerHeartbeat, CommitOffset,
    RemoveExpiredMember, AllocateProducerId, BeginTransaction, AddPartitionsToTxn,
    AddOffsetsToTxn, EndTransaction, WriteTxnMarkerComplete, TxnOffsetCommit,
    CreateStreamJob, DeleteStreamJob, UpdateStreamJobStatus,
]

_COMMANDS: dict[str, type] = {
    cls.__name__: cls
    for cls in (
        RegisterBroker, Heartbeat, CreateTopic, DeleteTopic, UpdateLeader, UpdateISR,
        MarkBrokerDead, JoinGroup, LeaveGroup, ConsumerHeartbeat, CommitOffset,
        RemoveExpiredMember, AllocateProducerId, BeginTransaction, AddPartitionsToTxn,
        AddOffsetsToTxn, EndTransaction, WriteTxnMarkerComplete, TxnOffsetCommit,
        CreateStreamJob, DeleteStreamJob, UpdateStreamJobStatus,
    )
}

_FIELD_DECODERS: dict[str, Callable[[Any], Any]] = {
    "offsets": lambda v: [(str(t), int(p), int(o)) for t, p, o in v],
    "partitions": lambda v: [(str(t), int(p)) for t, p in v],
    "status": StreamJobStatus,
    "isr": lambda v: [int(i) for i in v],
    "topics": lambda v: [str(t) for t in v],
    "operator_chain": lambda v: [str(op) for op in v],
}


def _encode(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_encode(v) for v in value]
    return value


def command_to_dict(command: MetadataRequest) -> dict[str, Any]:
    """Encode a command as ``{"VariantName": {field: value, ...}}``."""
    name = type(command).__name__
    if _COMMANDS.get(name) is not type(command):
        raise TypeError(f"not a metadata command: {command!r}")
    return {name: {f.name: _encode(getattr(command, f.name)) for f in fields(command)}}


def command_from_dict(data: Mapping[str, Any]) -> MetadataRequest:
    """Decode the output of :func:`command_to_dict`."""
    if not isinstance(data, Mapping) or len(data) != 1:
        raise ValueError("a command is a mapping with exactly one variant name")
    ((name, body),) = data.items()
    cls = _COMMANDS.get(name)
    if cls is None:
        raise ValueError(f"unknown command: {name!r}")
    if not isinstance(body, Mapping):
        raise ValueError(f"command {name} body must be a mapping")
    allowed = {f.name for f in fields(cls)}
    required = {
        f.name for f in fields(cls)
        if f.default is MISSING and f.default_factory is MISSING
    }
    if not required <= set(body) <= allowed:
        raise ValueError(f"command {name} has fields {sorted(body)}, expected {sorted(allowed)}")
    try:
        kwargs = {
            key: _FIELD_DECODERS.get(key, lambda v: v)(value) for key, value in body.items()
        }
    except (TypeError, ValueError) as exc:
        raise ValueError(f"invalid command {name}: {exc}") from exc
    return cls(**kwargs)