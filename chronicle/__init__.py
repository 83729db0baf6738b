"""Cluster metadata as a replicated state machine: brokers, topics, consumer groups, transactions and stream jobs."""

__version__ = "0.1.0"

__all__ = [
    "changes",
    "cluster",
    "commands",
    "controller",
    "groups",
    "log_store",
    "responses",
    "state_machine",
    "transactions",
]