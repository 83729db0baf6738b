import json

import pytest

from chronicle.cluster import (
    BrokerRegistration,
    BrokerStatus,
    ClusterState,
    CommittedOffset,
    ConsumerGroupState,
    GroupMember,
    PartitionAssignmentMeta,
    StreamJobMeta,
    StreamJobStatus,
    TopicMetadata,
    TopicPartitionKey,
    TransactionalIdMapping,
    TransactionState,
    TransactionStatus,
    TxnOffsetCommits,
)


def _sample_state() -> ClusterState:
    key = TopicPartitionKey("orders", 0)
    return ClusterState(
        brokers={
            1: BrokerRegistration(1, "http://127.0.0.1:9092", 100, BrokerStatus.LIVE),
            2: BrokerRegistration(2, "b", 50, BrokerStatus.DEAD),
        },
        topics={
            "orders": TopicMetadata(
                "orders", 1, 1, [PartitionAssignmentMeta(0, 1, 1, [1], [1])]
            )
        },
        consumer_groups={
            "g1": ConsumerGroupState(
                "g1",
                2,
                members={"c1": GroupMember("c1", ["orders"], 10000, 5)},
                assignments={"c1": [key]},
                offsets={key: CommittedOffset(42, 7)},
            )
        },
        next_producer_id=3,
        transactional_ids={"txn-app": TransactionalIdMapping(0, 1)},
        transactions={
            0: TransactionState(
                "txn-app",
                0,
                1,
                TransactionStatus.PREPARE_COMMIT,
                partitions={key},
                offset_commits=TxnOffsetCommits("g1", [("orders", 0, 42)]),
                start_time_ms=9,
            )
        },
        stream_jobs={
            "filter-job": StreamJobMeta(
                "filter-job", "orders", 0, "large_orders", 0,
                ["filter(amount > 1000)"], StreamJobStatus.RUNNING,
            )
        },
    )


def test_live_broker_ids_sorted_and_filtered():
    state = ClusterState(
        brokers={
            3: BrokerRegistration(3, "c", 0, BrokerStatus.LIVE),
            1: BrokerRegistration(1, "a", 0, BrokerStatus.LIVE),
            2: BrokerRegistration(2, "b", 0, BrokerStatus.DEAD),
        }
    )
    assert state.live_broker_ids() == [1, 3]


def test_empty_state_has_no_live_brokers():
    state = ClusterState()
    assert state.live_broker_ids() == []
    assert state.next_producer_id == 0


def test_round_trip_through_json():
    state = _sample_state()
    restored = ClusterState.from_dict(json.loads(json.dumps(state.to_dict())))
    assert restored == state


def test_status_values_serialised_by_name():
    data = _sample_state().to_dict()
    assert data["brokers"]["1"]["status"] == "Live"
    assert data["brokers"]["2"]["status"] == "Dead"
    assert data["transactions"]["0"]["status"] == "PrepareCommit"
    assert data["stream_jobs"]["filter-job"]["status"] == "Running"


def test_to_dict_is_independent_copy():
    state = _sample_state()
    data = state.to_dict()
    data["topics"]["orders"]["assignments"][0]["isr"].append(9)
    assert state.topics["orders"].assignments[0].isr == [1]


def test_restored_offsets_keyed_by_partition():
    restored = ClusterState.from_dict(_sample_state().to_dict())
    group = restored.consumer_groups["g1"]
    assert group.offsets[TopicPartitionKey("orders", 0)].offset == 42
    assert restored.transactions[0].offset_commits.offsets == [("orders", 0, 42)]


def test_from_dict_rejects_missing_fields():
    with pytest.raises(ValueError):
        ClusterState.from_dict({"brokers": {}})


def test_from_dict_rejects_unknown_status():
    data = _sample_state().to_dict()
    data["brokers"]["1"]["status"] = "Sleeping"
    with pytest.raises(ValueError):
        ClusterState.from_dict(data)


def test_topic_partition_key_hash_and_order():
    keys = {TopicPartitionKey("b", 1), TopicPartitionKey("a", 2), TopicPartitionKey("a", 2)}
    assert sorted(keys) == [TopicPartitionKey("a", 2), TopicPartitionKey("b", 1)]