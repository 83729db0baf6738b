import pytest

from chronicle.cluster import (
    ClusterState,
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
from chronicle.groups import (
    commit_offset,
    compute_group_assignments,
    consumer_heartbeat,
    join_group,
    leave_group,
    remove_expired_member,
)
from chronicle.responses import Error, GroupJoined, GroupState, Ok


def state_with_topic(name="orders", partitions=4):
    state = ClusterState()
    state.topics[name] = TopicMetadata(name=name, partition_count=partitions, replication_factor=1)
    return state


def join(state, member, group="g1", topics=("orders",), now_ms=1000):
    return join_group(state, JoinGroup(group, member, list(topics), 10000), now_ms)


def member(mid, subs):
    return GroupMember(member_id=mid, subscriptions=list(subs), session_timeout_ms=10000, last_heartbeat_ms=0)


def test_join_group_single_member():
    state = state_with_topic(partitions=4)
    resp = join(state, "c1")
    assert isinstance(resp, GroupJoined)
    assert resp.generation_id == 1
    assert resp.member_id == "c1"
    assert len(resp.assignments) == 4
    assert resp.assignments == [("orders", 0), ("orders", 1), ("orders", 2), ("orders", 3)]


def test_join_group_two_members_splits_partitions():
    state = state_with_topic(partitions=4)
    join(state, "c1")
    resp = join(state, "c2")
    assert resp.generation_id == 2
    assert len(resp.assignments) == 2
    group = state.consumer_groups["g1"]
    assert sum(len(v) for v in group.assignments.values()) == 4
    assert len(group.assignments["c1"]) == 2
    assert len(group.assignments["c2"]) == 2


def test_join_records_member_details():
    state = state_with_topic()
    join(state, "c1", now_ms=4242)
    m = state.consumer_groups["g1"].members["c1"]
    assert m.subscriptions == ["orders"]
    assert m.session_timeout_ms == 10000
    assert m.last_heartbeat_ms == 4242


def test_leave_group_reassigns():
    state = state_with_topic(partitions=4)
    join(state, "c1")
    join(state, "c2")
    assert leave_group(state, LeaveGroup("g1", "c2")) == Ok()
    group = state.consumer_groups["g1"]
    assert group.generation_id == 3
    assert len(group.members) == 1
    assert len(group.assignments["c1"]) == 4


def test_leave_group_last_member_removes_group():
    state = state_with_topic(partitions=2)
    join(state, "c1")
    leave_group(state, LeaveGroup("g1", "c1"))
    assert "g1" not in state.consumer_groups


def test_leave_unknown_group_is_ok():
    state = ClusterState()
    assert leave_group(state, LeaveGroup("nope", "c1")) == Ok()
    assert state.consumer_groups == {}


def test_commit_and_overwrite_offsets():
    state = state_with_topic(partitions=2)
    join(state, "c1")
    commit_offset(state, CommitOffset("g1", [("orders", 0, 10), ("orders", 1, 20)]), 1)
    group = state.consumer_groups["g1"]
    key0 = TopicPartitionKey("orders", 0)
    key1 = TopicPartitionKey("orders", 1)
    assert group.offsets[key0].offset == 10
    assert group.offsets[key1].offset == 20

    commit_offset(state, CommitOffset("g1", [("orders", 0, 50)]), 2)
    assert group.offsets[key0].offset == 50
    assert group.offsets[key0].timestamp_ms == 2
    assert group.offsets[key1].offset == 20


def test_commit_offset_unknown_group_errors():
    state = ClusterState()
    resp = commit_offset(state, CommitOffset("g9", [("orders", 0, 1)]), 1)
    assert resp == Error("consumer group not found: g9")


def test_remove_expired_member():
    state = state_with_topic(partitions=4)
    join(state, "c1")
    join(state, "c2")
    assert remove_expired_member(state, RemoveExpiredMember("g1", "c2")) == Ok()
    group = state.consumer_groups["g1"]
    assert group.generation_id == 3
    assert len(group.members) == 1
    assert len(group.assignments["c1"]) == 4


def test_remove_unknown_member_keeps_generation():
    state = state_with_topic()
    join(state, "c1")
    remove_expired_member(state, RemoveExpiredMember("g1", "ghost"))
    assert state.consumer_groups["g1"].generation_id == 1


def test_remove_last_expired_member_removes_group():
    state = state_with_topic()
    join(state, "c1")
    remove_expired_member(state, RemoveExpiredMember("g1", "c1"))
    assert "g1" not in state.consumer_groups


def test_consumer_heartbeat_returns_generation():
    state = state_with_topic(partitions=2)
    join(state, "c1")
    resp = consumer_heartbeat(state, ConsumerHeartbeat("g1", "c1"), 9999)
    assert resp == GroupState(generation_id=1)
    assert state.consumer_groups["g1"].members["c1"].last_heartbeat_ms == 9999


@pytest.mark.parametrize(
    "group, member_id, message",
    [
        ("g1", "ghost", "member not found: ghost"),
        ("g2", "c1", "consumer group not found: g2"),
    ],
)
def test_consumer_heartbeat_errors(group, member_id, message):
    state = state_with_topic()
    join(state, "c1")
    assert consumer_heartbeat(state, ConsumerHeartbeat(group, member_id), 1) == Error(message)


def test_assignment_is_deterministic():
    state = state_with_topic(partitions=4)
    for _ in range(3):
        state.consumer_groups.clear()
        join(state, "c1")
        join(state, "c2")
    group = state.consumer_groups["g1"]
    assert [tp.partition for tp in group.assignments["c1"]] == [0, 2]
    assert [tp.partition for tp in group.assignments["c2"]] == [1, 3]


def test_compute_assignments_orders_topics_and_members():
    topics = {
        "b": TopicMetadata("b", 1, 1),
        "a": TopicMetadata("a", 2, 1),
    }
    members = {"z": member("z", ["b", "a"]), "m": member("m", ["a"])}
    result = compute_group_assignments(members, topics)
    assert result == {
        "m": [TopicPartitionKey("a", 0), TopicPartitionKey("b", 0)],
        "z": [TopicPartitionKey("a", 1)],
    }


def test_compute_assignments_ignores_unknown_topics():
    topics = {"a": TopicMetadata("a", 1, 1)}
    members = {"c1": member("c1", ["missing", "a"])}
    assert compute_group_assignments(members, topics) == {"c1": [TopicPartitionKey("a", 0)]}


def test_compute_assignments_without_members_is_empty():
    assert compute_group_assignments({}, {"a": TopicMetadata("a", 3, 1)}) == {}


def test_member_without_partitions_gets_empty_list():
    state = state_with_topic(partitions=1)
    join(state, "c1")
    resp = join(state, "c2")
    assert resp.assignments == []
    assert state.consumer_groups["g1"].assignments["c2"] == []