"""In-memory storage for the controller's replicated log."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional

from chronicle.commands import MetadataRequest, command_from_dict, command_to_dict


@dataclass(frozen=True, order=True)
class LogId:
    """Position of an entry: the term and node of its leader, then its index."""

    term: int
    node_id: int
    index: int


@dataclass(frozen=True)
class Vote:
    term: int
    node_id: int
    committed: bool = False


@dataclass
class Entry:
    """A log entry: blank, a metadata command, or a membership change."""

    log_id: LogId
    payload: Optional[MetadataRequest] = None
    membership: Optional[dict[int, str]] = None

    def __post_init__(self) -> None:
        if self.payload is not None and self.membership is not None:
            raise ValueError("an entry carries either a command or a membership, not both")

    def to_dict(self) -> dict[str, Any]:
        """A JSON-compatible representation of the entry."""
        if self.payload is not None:
            payload: Any = {"Normal": command_to_dict(self.payload)}
        elif self.membership is not None:
            payload = {"Membership": {str(k): v for k, v in self.membership.items()}}
        else:
            payload = "Blank"
        return {
            "log_id": {
                "term": self.log_id.term,
                "node_id": self.log_id.node_id,
                "index": self.log_id.index,
            },
            "payload": payload,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Entry:
        """Rebuild an entry from the output of :meth:`to_dict`."""
        try:
            raw_id = data["log_id"]
            log_id = LogId(int(raw_id["term"]), int(raw_id["node_id"]), int(raw_id["index"]))
            payload = data["payload"]
            if payload == "Blank":
                return cls(log_id)
            if isinstance(payload, Mapping) and set(payload) == {"Normal"}:
                return cls(log_id, payload=command_from_dict(payload["Normal"]))
            if isinstance(payload, Mapping) and set(payload) == {"Membership"}:
                members = {int(k): str(v) for k, v in payload["Membership"].items()}
                return cls(log_id, membership=members)
        except (KeyError, TypeError, AttributeError) as exc:
            raise ValueError(f"invalid log entry: {exc!r}") from exc
        raise ValueError(f"invalid log entry payload: {payload!r}")


@dataclass(frozen=True)
class LogState:
    last_purged_log_id: Optional[LogId]
    last_log_id: Optional[LogId]


class LogStore:
    """Keeps serialized entries by index, along with the vote and commit point."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._log: dict[int, str] = {}
        self._last_purged: Optional[LogId] = None
        self._committed: Optional[LogId] = None
        self._vote: Optional[Vote] = None

    def get_log_entries(self, start: int = 0, stop: Optional[int] = None) -> list[Entry]:
        """Entries with ``start <= index < stop``; no ``stop`` means to the end."""
        with self._lock:
            selected = [
                self._log[i] for i in sorted(self._log)
                if i >= start and (stop is None or i < stop)
            ]
        return [Entry.from_dict(json.loads(raw)) for raw in selected]

    def get_log_state(self) -> LogState:
        with self._lock:
            last_purged = self._last_purged
            last_raw = self._log[max(self._log)] if self._log else None
        last = Entry.from_dict(json.loads(last_raw)).log_id if last_raw is not None else None
        return LogState(last_purged_log_id=last_purged, last_log_id=last or last_purged)

    def save_vote(self, vote: Vote) -> None:
        with self._lock:
            self._vote = vote

    def read_vote(self) -> Optional[Vote]:
        with self._lock:
            return self._vote

    def save_committed(self, committed: Optional[LogId]) -> None:
        with self._lock:
            self._committed = committed

    def read_committed(self) -> Optional[LogId]:
        with self._lock:
            return self._committed

    def append(self, entries: Iterable[Entry]) -> None:
        """Store entries by index, replacing any already at the same index."""
        serialized = [(e.log_id.index, json.dumps(e.to_dict())) for e in entries]
        with self._lock:
            self._log.update(serialized)

    def truncate(self, log_id: LogId) -> None:
        """Remove every entry at or after ``log_id``'s index."""
        with self._lock:
            for index in [i for i in self._log if i >= log_id.index]:
                del self._log[index]

    def purge(self, log_id: LogId) -> None:
        """Remove every entry up to and including ``log_id``'s index."""
        with self._lock:
            self._last_purged = log_id
            for index in [i for i in self._log if i <= log_id.index]:
                del self._log[index]