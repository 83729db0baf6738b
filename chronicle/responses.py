"""Results of applying commands to the state machine."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Mapping, Union

from chronicle.cluster import PartitionAssignmentMeta


@dataclass(frozen=True)
class Ok:
    pass


@dataclass(frozen=True)
class Error:
    message: str


@dataclass
class TopicCreated:
    assignments: list[PartitionAssignmentMeta] = field(default_factory=list)


@dataclass
class GroupJoined:
    generation_id: int
    member_id: str
    assignments: list[tuple[str, int]] = field(default_factory=list)


@dataclass(frozen=True)
class GroupState:
    generation_id: int


@dataclass(frozen=True)
class ProducerIdAllocated:
    producer_id: int
    producer_epoch: int


@dataclass
class TxnPartitions:
    partitions: list[tuple[str, int]] = field(default_factory=list)


@dataclass(frozen=True)
class StreamJobCreated:
    job_name: str


MetadataResponse = Union[
    Ok, Error, TopicCreated, GroupJoined, GroupState, ProducerIdAllocated,
    TxnPartitions, StreamJobCreated,
]


def response_to_dict(response: MetadataResponse) -> dict[str, Any]:
    """Encode a response as ``{"VariantName": body}``."""
    match response:
        case Ok():
            return {"Ok": None}
        case Error(message=message):
            return {"Error": message}
        case TopicCreated(assignments=assignments):
            return {"TopicCreated": {"assignments": [asdict(a) for a in assignments]}}
        case GroupJoined(generation_id=gen, member_id=member_id, assignments=assignments):
            return {
                "GroupJoined": {
                    "generation_id": gen,
                    "member_id": member_id,
                    "assignments": [list(a) for a in assignments],
                }
            }
        case GroupState(generation_id=gen):
            return {"GroupState": {"generation_id": gen}}
        case ProducerIdAllocated(producer_id=pid, producer_epoch=epoch):
            return {"ProducerIdAllocated": {"producer_id": pid, "producer_epoch": epoch}}
        case TxnPartitions(partitions=partitions):
            return {"TxnPartitions": {"partitions": [list(p) for p in partitions]}}
        case StreamJobCreated(job_name=name):
            return {"StreamJobCreated": {"job_name": name}}
    raise TypeError(f"not a metadata response: {response!r}")


def response_from_dict(data: Any) -> MetadataResponse:
    """Decode the output of :func:`response_to_dict`; a bare ``"Ok"`` is accepted too."""
    if data == "Ok":
        return Ok()
    if not isinstance(data, Mapping) or len(data) != 1:
        raise ValueError("a response is a mapping with exactly one variant name")
    ((name, body),) = data.items()
    try:
        match name:
            case "Ok":
                return Ok()
            case "Error":
                if not isinstance(body, str):
                    raise ValueError("error message must be a string")
                return Error(body)
            case "TopicCreated":
                return TopicCreated(
                    [PartitionAssignmentMeta(**a) for a in body["assignments"]]
                )
            case "GroupJoined":
                return GroupJoined(
                    generation_id=int(body["generation_id"]),
                    member_id=str(body["member_id"]),
                    assignments=[(str(t), int(p)) for t, p in body["assignments"]],
                )
            case "GroupState":
                return GroupState(int(body["generation_id"]))
            case "ProducerIdAllocated":
                return ProducerIdAllocated(
                    int(body["producer_id"]), int(body["producer_epoch"])
                )
            case "TxnPartitions":
                return TxnPartitions([(str(t), int(p)) for t, p in body["partitions"]])
            case "StreamJobCreated":
                return StreamJobCreated(str(body["job_name"]))
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"invalid response {name}: {exc!r}") from exc
    raise ValueError(f"unknown response: {name!r}")