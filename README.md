# chronicle

The metadata side of a partitioned, replicated log cluster. The cluster
state is kept as a deterministic state machine: commands are applied in
order and each one returns a response, so every node that applies the same
log ends up with the same state.

The state covers:

- **Brokers**: registration, heartbeats, marking brokers dead.
- **Topics**: creation with partition-to-broker assignments, deletion,
  leader and ISR updates.
- **Consumer groups**: join, leave, heartbeats, committed offsets, and
  removal of expired members. Each membership change bumps the group's
  generation and reassigns partitions round-robin over the members sorted
  by id, with topics taken in name order. A group is deleted when its last
  member leaves.
- **Producers and transactions**: producer id allocation (a known
  transactional id keeps its producer id and has its epoch raised) and the
  transaction lifecycle: begin, add partitions, add offsets, offset commit,
  end, marker completion. Offsets staged in a transaction reach the group
  only if the transaction commits.
- **Stream jobs**: create, delete and status updates.

## Installing

```
pip install .
```

For the tests:

```
pip install ".[test]"
pytest
```

## Modules

| Module                    | Contents |
|---------------------------|----------|
| `chronicle.cluster`       | `ClusterState` and the records it holds (`BrokerRegistration`, `TopicMetadata`, `ConsumerGroupState`, `TransactionState`, `StreamJobMeta`, ...), the status enums, `ClusterState.live_broker_ids()`, `to_dict()` / `from_dict()` |
| `chronicle.commands`      | One dataclass per command (`RegisterBroker`, `CreateTopic`, `JoinGroup`, `BeginTransaction`, ...), `command_to_dict()` / `command_from_dict()` |
| `chronicle.responses`     | Results: `Ok`, `Error`, `TopicCreated`, `GroupJoined`, `GroupState`, `ProducerIdAllocated`, `TxnPartitions`, `StreamJobCreated`, `response_to_dict()` / `response_from_dict()` |
| `chronicle.changes`       | Notifications: `BrokerRegistered`, `BrokerDead`, `TopicCreated`, `TopicDeleted`, `LeaderChanged`, `ISRChanged`, `TransactionCompleted` |
| `chronicle.log_store`     | `LogStore`: in-memory log entries (`Entry`, `LogId`), the vote, the committed id, `truncate()` and `purge()` |
| `chronicle.groups`        | Consumer group operations and `compute_group_assignments()` |
| `chronicle.transactions`  | Producer id allocation and transaction operations |
| `chronicle.state_machine` | `StateMachineStore`: `apply_command()`, `apply()`, `subscribe()`, `build_snapshot()`, `install_snapshot()` |
| `chronicle.controller`    | `Controller`: `propose()`, `is_leader()`, `check_heartbeats()`, `check_consumer_heartbeats()`; `ProposalError` |

## Example

`StateMachineStore` takes an assigner: a callable that receives the
partition count, the replication factor and the sorted ids of live brokers,
and yields `(partition_id, replicas)` pairs. The first replica becomes the
partition's leader and the replicas form its initial ISR.

```python
from chronicle.commands import CreateTopic, JoinGroup, RegisterBroker
from chronicle.responses import GroupJoined
from chronicle.state_machine import StateMachineData, StateMachineStore


def assign(partition_count, replication_factor, brokers):
    width = min(replication_factor, len(brokers))
    for p in range(partition_count):
        yield p, [brokers[(p + i) % len(brokers)] for i in range(width)]


store = StateMachineStore(assign)
sm = StateMachineData()

store.apply_command(sm, RegisterBroker(id=1, addr="http://127.0.0.1:9092"))
store.apply_command(sm, CreateTopic(name="orders", partition_count=4, replication_factor=1))

resp = store.apply_command(
    sm,
    JoinGroup(group_id="g1", member_id="c1", topics=["orders"], session_timeout_ms=10000),
)
assert isinstance(resp, GroupJoined)
print(resp.generation_id, resp.assignments)
# 1 [('orders', 0), ('orders', 1), ('orders', 2), ('orders', 3)]
```

`apply_command()` works on the `StateMachineData` it is given. `apply()`
takes committed `Entry` objects from the log and applies them to the
store's own data, recording the last applied log id and membership;
`cluster_state()` returns a copy of that state.

Errors in a command (a duplicate topic, an unknown group or transaction,
no live brokers) come back as an `Error` response rather than an
exception, so that applying a log never fails part way.

### Change notifications

`store.subscribe()` returns a `queue.Queue` that receives every change
published from then on. Each queue holds up to 256 changes; when a
subscriber falls behind, its oldest changes are dropped.

### Snapshots

`build_snapshot()` serialises the data as JSON and keeps it as the current
snapshot; `install_snapshot(meta, data)` replaces the data with a received
one. `StateMachineData.to_dict()` and `ClusterState.to_dict()` give the
same plain-dictionary form.

### Controller

`Controller(raft, store, broker_id)` proposes commands through a consensus
node supplied by the caller: any object with `client_write(request)`,
returning the applied response, and `current_leader()`, returning the
leader's id. Either may be a plain function or a coroutine function.
A failed write raises `ProposalError`.

`check_heartbeats(timeout_ms)` marks brokers dead whose last heartbeat is
older than the timeout (never the controller's own broker) and moves each
partition they lead to the first other broker in its ISR, with the leader
epoch raised by one. `check_consumer_heartbeats(default_timeout_ms)`
removes group members whose session has expired, using each member's own
session timeout when it has one.

## What this package does not do

- It has no consensus implementation: elections, replication between
  nodes and commit tracking belong to the node passed to `Controller`,
  which is expected to apply committed entries through
  `StateMachineStore.apply()`.
- It has no network layer, RPC service or command-line client.
- It does not choose replica placement for new topics; that is the
  assigner given to `StateMachineStore`.
- `LogStore` keeps everything in memory; nothing is written to disk.
- It does not store or serve the records of the topics themselves, only
  the metadata about them.