"""Producer id allocation and the transaction lifecycle."""

from __future__ import annotations

from typing import Callable

from chronicle.changes import MetadataChange, TransactionCompleted
from chronicle.cluster import (
    ClusterState,
    CommittedOffset,
    ConsumerGroupState,
    TopicPartitionKey,
    TransactionalIdMapping,
    TransactionState,
    TransactionStatus,
    TxnOffsetCommits,
)
from chronicle.commands import (
    AddOffsetsToTxn,
    AddPartitionsToTxn,
    AllocateProducerId,
    BeginTransaction,
    EndTransaction,
    TxnOffsetCommit,
    WriteTxnMarkerComplete,
)
from chronicle.responses import Error, MetadataResponse, Ok, ProducerIdAllocated, TxnPartitions

_NOT_ONGOING = "transaction not in Ongoing state"


def _not_found(producer_id: int) -> Error:
    return Error(f"transaction not found for producer {producer_id}")


def _next_producer_id(state: ClusterState) -> int:
    producer_id = state.next_producer_id
    state.next_producer_id += 1
    return producer_id


def _sorted_partitions(txn: TransactionState) -> list[tuple[str, int]]:
    return [(tp.topic, tp.partition) for tp in sorted(txn.partitions)]


def allocate_producer_id(state: ClusterState, command: AllocateProducerId) -> MetadataResponse:
    """Hand out a producer id.

    Without a transactional id a fresh id is issued with epoch 0. A known
    transactional id keeps its producer id and has its epoch bumped.
    """
    tid = command.transactional_id
    if tid is None:
        return ProducerIdAllocated(producer_id=_next_producer_id(state), producer_epoch=0)
    mapping = state.transactional_ids.get(tid)
    if mapping is not None:
        mapping.producer_epoch += 1
        return ProducerIdAllocated(mapping.producer_id, mapping.producer_epoch)
    producer_id = _next_producer_id(state)
    state.transactional_ids[tid] = TransactionalIdMapping(producer_id, 0)
    return ProducerIdAllocated(producer_id=producer_id, producer_epoch=0)


def begin_transaction(
    state: ClusterState, command: BeginTransaction, now_ms: int
) -> MetadataResponse:
    """Open a transaction for a producer that has none in progress."""
    pid = command.producer_id
    if pid in state.transactions:
        return Error(f"transaction already ongoing for producer {pid}")
    txn_id, epoch = next(
        (
            (tid, mapping.producer_epoch)
            for tid, mapping in state.transactional_ids.items()
            if mapping.producer_id == pid
        ),
        ("", 0),
    )
    state.transactions[pid] = TransactionState(
        transactional_id=txn_id,
        producer_id=pid,
        producer_epoch=epoch,
        status=TransactionStatus.ONGOING,
        start_time_ms=now_ms,
    )
    return Ok()


def _ongoing(state: ClusterState, producer_id: int) -> TransactionState | Error:
    txn = state.transactions.get(producer_id)
    if txn is None:
        return _not_found(producer_id)
    if txn.status is not TransactionStatus.ONGOING:
        return Error(_NOT_ONGOING)
    return txn


def add_partitions_to_txn(state: ClusterState, command: AddPartitionsToTxn) -> MetadataResponse:
    """Record the partitions a transaction writes to; repeats are harmless."""
    txn = _ongoing(state, command.producer_id)
    if isinstance(txn, Error):
        return txn
    txn.partitions.update(TopicPartitionKey(t, p) for t, p in command.partitions)
    return Ok()


def add_offsets_to_txn(state: ClusterState, command: AddOffsetsToTxn) -> MetadataResponse:
    """Attach a consumer group to a transaction unless one is attached already."""
    txn = _ongoing(state, command.producer_id)
    if isinstance(txn, Error):
        return txn
    if txn.offset_commits is None:
        txn.offset_commits = TxnOffsetCommits(group_id=command.group_id)
    return Ok()


def txn_offset_commit(state: ClusterState, command: TxnOffsetCommit) -> MetadataResponse:
    """Stage offsets to be committed when the transaction commits."""
    txn = _ongoing(state, command.producer_id)
    if isinstance(txn, Error):
        return txn
    txn.offset_commits = TxnOffsetCommits(
        group_id=command.group_id, offsets=list(command.offsets)
    )
    return Ok()


def end_transaction(state: ClusterState, command: EndTransaction) -> MetadataResponse:
    """Move a transaction to prepare-commit or prepare-abort.

    Returns the partitions that need transaction markers written.
    """
    txn = _ongoing(state, command.producer_id)
    if isinstance(txn, Error):
        return txn
    txn.status = (
        TransactionStatus.PREPARE_COMMIT if command.commit else TransactionStatus.PREPARE_ABORT
    )
    return TxnPartitions(partitions=_sorted_partitions(txn))


def write_txn_marker_complete(
    state: ClusterState,
    command: WriteTxnMarkerComplete,
    now_ms: int,
    publish: Callable[[MetadataChange], None],
) -> MetadataResponse:
    """Finish a transaction once its markers are written.

    Staged offsets are applied only if the transaction committed. A
    :class:`TransactionCompleted` change is published either way.
    """
    pid = command.producer_id
    txn = state.transactions.pop(pid, None)
    if txn is None:
        return _not_found(pid)
    committed = txn.status is TransactionStatus.PREPARE_COMMIT
    commits = txn.offset_commits
    if committed and commits is not None:
        group = state.consumer_groups.get(commits.group_id)
        if group is None:
            group = ConsumerGroupState(group_id=commits.group_id)
            state.consumer_groups[commits.group_id] = group
        for topic, partition, offset in commits.offsets:
            group.offsets[TopicPartitionKey(topic, partition)] = CommittedOffset(offset, now_ms)
    publish(
        TransactionCompleted(
            producer_id=pid,
            producer_epoch=txn.producer_epoch,
            committed=committed,
            partitions=_sorted_partitions(txn),
        )
    )
    return Ok()