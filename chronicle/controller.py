"""Cluster controller: proposes metadata changes and drives failover."""

from __future__ import annotations

import inspect
import logging
import queue
import time
from typing import Any, Optional, Protocol

from chronicle.changes import MetadataChange
from chronicle.cluster import BrokerStatus, ClusterState
from chronicle.commands import (
    MarkBrokerDead,
    MetadataRequest,
    RemoveExpiredMember,
    UpdateLeader,
)
from chronicle.responses import MetadataResponse
from chronicle.state_machine import StateMachineStore

logger = logging.getLogger(__name__)


class ProposalError(Exception):
    """A command could not be committed through the replicated log."""


class RaftNode(Protocol):
    """The consensus node a controller proposes through.

    Either method may be a coroutine function or a plain function.
    """

    def client_write(self, request: MetadataRequest) -> Any: ...

    def current_leader(self) -> Any: ...


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class Controller:
    """Front end to the replicated metadata state for one broker."""

    def __init__(self, raft: RaftNode, store: StateMachineStore, broker_id: int) -> None:
        self.raft = raft
        self._store = store
        self.broker_id = broker_id

    async def propose(self, request: MetadataRequest) -> MetadataResponse:
        """Commit a command through the log and return its applied result."""
        try:
            return await _resolve(self.raft.client_write(request))
        except Exception as exc:
            raise ProposalError(str(exc)) from exc

    def cluster_state(self) -> ClusterState:
        return self._store.cluster_state()

    def subscribe(self) -> queue.Queue[MetadataChange]:
        return self._store.subscribe()

    async def is_leader(self) -> bool:
        leader: Optional[int] = await _resolve(self.raft.current_leader())
        return leader == self.broker_id

    async def check_heartbeats(self, timeout_ms: int) -> None:
        """Mark silent brokers dead and move their partitions to new leaders.

        Meant to be called on the consensus leader only.
        """
        now_ms = _now_ms()
        state = self._store.cluster_state()
        for broker_id, broker in state.brokers.items():
            if broker_id == self.broker_id or broker.status is BrokerStatus.DEAD:
                continue
            elapsed = max(0, now_ms - broker.last_heartbeat_ms)
            if elapsed <= timeout_ms:
                continue
            logger.warning(
                "broker %s heartbeat timeout after %d ms, marking dead", broker_id, elapsed
            )
            try:
                await self.propose(MarkBrokerDead(broker_id=broker_id))
            except ProposalError as exc:
                logger.warning("failed to mark broker %s dead: %s", broker_id, exc)
                continue
            await self._failover_broker(broker_id, state)

    async def check_consumer_heartbeats(self, default_timeout_ms: int) -> None:
        """Remove group members whose session has expired.

        A member with no session timeout of its own uses ``default_timeout_ms``.
        Meant to be called on the consensus leader only.
        """
        now_ms = _now_ms()
        state = self._store.cluster_state()
        for group in state.consumer_groups.values():
            for member in group.members.values():
                timeout = (
                    member.session_timeout_ms
                    if member.session_timeout_ms > 0
                    else default_timeout_ms
                )
                if max(0, now_ms - member.last_heartbeat_ms) <= timeout:
                    continue
                logger.warning(
                    "consumer session expired in group %s, removing member %s",
                    group.group_id,
                    member.member_id,
                )
                try:
                    await self.propose(
                        RemoveExpiredMember(group_id=group.group_id, member_id=member.member_id)
                    )
                except ProposalError as exc:
                    logger.warning(
                        "failed to remove expired member %s from group %s: %s",
                        member.member_id,
                        group.group_id,
                        exc,
                    )

    async def _failover_broker(self, failed_broker: int, state: ClusterState) -> None:
        for topic in state.topics.values():
            for assignment in topic.assignments:
                if assignment.leader != failed_broker:
                    continue
                new_leader = next((i for i in assignment.isr if i != failed_broker), None)
                if new_leader is None:
                    logger.warning(
                        "no ISR candidate for failover of %s/%d",
                        topic.name,
                        assignment.partition_id,
                    )
                    continue
                new_epoch = assignment.leader_epoch + 1
                logger.info(
                    "failing over %s/%d to broker %d at epoch %d",
                    topic.name,
                    assignment.partition_id,
                    new_leader,
                    new_epoch,
                )
                try:
                    await self.propose(
                        UpdateLeader(
                            topic=topic.name,
                            partition=assignment.partition_id,
                            new_leader=new_leader,
                            epoch=new_epoch,
                        )
                    )
                except ProposalError as exc:
                    logger.warning(
                        "failed to propose leader update for %s/%d: %s",
                        topic.name,
                        assignment.partition_id,
                        exc,
                    )