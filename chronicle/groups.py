"""Consumer group membership, partition assignment and committed offsets."""

from __future__ import annotations

from typing import Mapping

from chronicle.cluster import (
    ClusterState,
    CommittedOffset,
    ConsumerGroupState,
    GroupMember,
    TopicMetadata,
    TopicPartitionKey,
)
from chronicle.commands import (
    CommitOffset,
    ConsumerHeartbeat,
    JoinGroup,
    LeaveGroup,
    RemoveExpiredMember,
)
from chronicle.responses import Error, GroupJoined, GroupState, MetadataResponse, Ok


def compute_group_assignments(
    members: Mapping[str, GroupMember],
    topics: Mapping[str, TopicMetadata],
) -> dict[str, list[TopicPartitionKey]]:
    """Spread every subscribed partition round-robin over the members.

    Topics are taken in name order and members in id order, so the result
    depends only on the inputs.
    """
    subscribed = sorted({name for member in members.values() for name in member.subscriptions})
    all_partitions = [
        TopicPartitionKey(name, partition)
        for name in subscribed
        if name in topics
        for partition in range(topics[name].partition_count)
    ]
    member_ids = sorted(members)
    assignments: dict[str, list[TopicPartitionKey]] = {mid: [] for mid in member_ids}
    if not member_ids:
        return assignments
    for i, tp in enumerate(all_partitions):
        assignments[member_ids[i % len(member_ids)]].append(tp)
    return assignments


def _rebalance(state: ClusterState, group: ConsumerGroupState) -> None:
    group.generation_id += 1
    group.assignments = compute_group_assignments(group.members, state.topics)


def _drop_member(state: ClusterState, group_id: str, member_id: str) -> bool:
    """Remove a member; delete the group if it empties, else rebalance it."""
    group = state.consumer_groups.get(group_id)
    if group is None or group.members.pop(member_id, None) is None:
        return False
    if not group.members:
        del state.consumer_groups[group_id]
    else:
        _rebalance(state, group)
    return True


def join_group(state: ClusterState, command: JoinGroup, now_ms: int) -> MetadataResponse:
    """Add or refresh a member, bump the generation and reassign partitions."""
    group = state.consumer_groups.get(command.group_id)
    if group is None:
        group = ConsumerGroupState(group_id=command.group_id)
        state.consumer_groups[command.group_id] = group
    group.members[command.member_id] = GroupMember(
        member_id=command.member_id,
        subscriptions=list(command.topics),
        session_timeout_ms=command.session_timeout_ms,
        last_heartbeat_ms=now_ms,
    )
    _rebalance(state, group)
    return GroupJoined(
        generation_id=group.generation_id,
        member_id=command.member_id,
        assignments=[(tp.topic, tp.partition) for tp in group.assignments.get(command.member_id, [])],
    )


def leave_group(state: ClusterState, command: LeaveGroup) -> MetadataResponse:
    """Remove a member from its group; leaving an unknown group is not an error."""
    group = state.consumer_groups.get(command.group_id)
    if group is not None:
        group.members.pop(command.member_id, None)
        if not group.members:
            del state.consumer_groups[command.group_id]
        else:
            _rebalance(state, group)
    return Ok()


def consumer_heartbeat(
    state: ClusterState, command: ConsumerHeartbeat, now_ms: int
) -> MetadataResponse:
    """Record a member's heartbeat and report the group's current generation."""
    group = state.consumer_groups.get(command.group_id)
    if group is None:
        return Error(f"consumer group not found: {command.group_id}")
    member = group.members.get(command.member_id)
    if member is None:
        return Error(f"member not found: {command.member_id}")
    member.last_heartbeat_ms = now_ms
    return GroupState(generation_id=group.generation_id)


def commit_offset(state: ClusterState, command: CommitOffset, now_ms: int) -> MetadataResponse:
    """Store committed offsets for an existing group, overwriting earlier ones."""
    group = state.consumer_groups.get(command.group_id)
    if group is None:
        return Error(f"consumer group not found: {command.group_id}")
    for topic, partition, offset in command.offsets:
        group.offsets[TopicPartitionKey(topic, partition)] = CommittedOffset(offset, now_ms)
    return Ok()


def remove_expired_member(state: ClusterState, command: RemoveExpiredMember) -> MetadataResponse:
    """Drop a member whose session ran out; unknown members are ignored."""
    _drop_member(state, command.group_id, command.member_id)
    return Ok()