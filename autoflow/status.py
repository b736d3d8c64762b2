"""
Run status tracking - the rolling log buffer and the snapshot stream.

The log keeps a fixed number of entries in memory (oldest evicted first) so a
long or looping run never grows without bound. Observers subscribe to
snapshots; they are informational only and cannot influence a run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 100

_LEVEL_TO_LOGGING = {
    "INFO": logging.INFO,
    "SUCCESS": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


class RunState(Enum):
    """States of a workflow run."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def is_active(self) -> bool:
        return self in (RunState.RUNNING, RunState.PAUSED)


@dataclass
class LogEntry:
    """A single line of a run log."""
    timestamp: datetime
    message: str
    level: str = "INFO"
    ref_id: Optional[str] = None

    def __str__(self) -> str:
        time_str = self.timestamp.strftime("%H:%M:%S")
        return f"[{time_str}] {self.level}: {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level,
            "message": self.message,
            "ref_id": self.ref_id,
        }


class RunLog:
    """
    Keeps the most recent log entries of a run.

    Args:
        max_entries: Maximum number of entries kept in memory
    """

    def __init__(self, max_entries: int = MAX_LOG_ENTRIES):
        self._log_entries: List[LogEntry] = []
        self._max_entries = max_entries

    def add(self, message: str, level: str = "INFO", ref_id: Optional[str] = None) -> LogEntry:
        """
        Add a log entry, evicting the oldest one past ``max_entries``.

        Args:
            message: Log message
            level: INFO, SUCCESS, WARNING or ERROR
            ref_id: Step or node the entry belongs to

        Returns:
            The stored entry
        """
        entry = LogEntry(
            timestamp=datetime.now(),
            message=message,
            level=level,
            ref_id=ref_id,
        )

        self._log_entries.append(entry)

        if len(self._log_entries) > self._max_entries:
            self._log_entries = self._log_entries[-self._max_entries:]

        logger.log(_LEVEL_TO_LOGGING.get(level, logging.INFO), message)
        return entry

    def get_all_logs(self) -> List[LogEntry]:
        """
        Get all log entries, oldest first.

        Returns:
            Copy of the list of log entries
        """
        return self._log_entries.copy()

    def clear(self) -> None:
        """Clear all log entries."""
        self._log_entries.clear()

    def __len__(self) -> int:
        return len(self._log_entries)


@dataclass
class StatusSnapshot:
    """Full picture of a run at one moment."""
    run_id: str
    workflow_id: str
    state: RunState
    current_id: Optional[str] = None
    progress: int = 0
    error: Optional[str] = None
    logs: List[LogEntry] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "runId": self.run_id,
            "workflowId": self.workflow_id,
            "status": self.state.value,
            "currentId": self.current_id,
            "progress": self.progress,
            "error": self.error,
            "logs": [entry.to_dict() for entry in self.logs],
        }


@dataclass
class NodeEvent:
    """Emitted by the graph runner around every node execution."""
    kind: str  # node.started | node.finished
    run_id: str
    workflow_id: str
    node_id: str
    node_type: str
    result: Optional[str] = None
    timestamp: float = field(default_factory=time.time)


T = TypeVar("T")


class Subscribers(Generic[T]):
    """Explicit subscribe/unsubscribe list; callback errors never reach the publisher."""

    def __init__(self) -> None:
        self._callbacks: List[Callable[[T], None]] = []

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """
        Register a callback for every published payload.

        Args:
            callback: Called with each payload, in publish order

        Returns:
            A callable that removes ``callback`` again
        """
        self._callbacks.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Callable[[T], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def publish(self, payload: T) -> None:
        for callback in list(self._callbacks):
            try:
                callback(payload)
            except Exception:
                logger.exception("Status subscriber raised")

    def __len__(self) -> int:
        return len(self._callbacks)
