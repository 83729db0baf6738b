import dataclasses

import pytest

from chronicle.changes import (
    BrokerDead,
    BrokerRegistered,
    ISRChanged,
    LeaderChanged,
    TopicCreated,
    TopicDeleted,
    TransactionCompleted,
)
from chronicle.cluster import PartitionAssignmentMeta


def test_changes_compare_by_value():
    assert BrokerRegistered(1, "a") == BrokerRegistered(id=1, addr="a")
    assert BrokerRegistered(1, "a") != BrokerRegistered(2, "a")
    assert BrokerDead(1) != BrokerRegistered(1, "a")


def test_changes_are_frozen():
    change = TopicDeleted("orders")
    with pytest.raises(dataclasses.FrozenInstanceError):
        change.name = "other"
    assert change.name == "orders"
    assert change == TopicDeleted(name="orders")


def test_scalar_changes_are_hashable():
    changes = {LeaderChanged("t", 0, 2, 2), LeaderChanged("t", 0, 2, 2), BrokerDead(3)}
    assert len(changes) == 2


def test_pattern_matching_on_fields():
    change = TransactionCompleted(7, 1, True, [("orders", 0)])
    match change:
        case TransactionCompleted(producer_id, epoch, committed, partitions):
            assert (producer_id, epoch, committed) == (7, 1, True)
            assert partitions == [("orders", 0)]
        case _:
            pytest.fail("pattern did not match")


def test_topic_created_carries_assignments():
    meta = PartitionAssignmentMeta(0, 1, 1, [1], [1])
    change = TopicCreated("orders", [meta])
    assert change.assignments[0].leader == 1
    assert ISRChanged("t", 0, [1, 2]).isr == [1, 2]