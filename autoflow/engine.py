"""
Shared run machinery of the linear executor and the graph runner.

A runner executes one workflow at a time, either blocking (``run``) or on a
daemon worker thread (``start``). Pause, resume and stop only flip
``threading.Event`` flags; the running workflow observes them at its next
safe point.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Any, Callable, Optional

from .config import AutomationConfig
from .desktop import ActionPort
from .errors import UsageError
from .mapping import MappingRegistry
from .status import LogEntry, RunLog, RunState, StatusSnapshot, Subscribers

logger = logging.getLogger(__name__)

PAUSE_POLL_SECONDS = 0.1


class RunnerBase:
    """
    State machine, run guard, log buffer and status stream.

    Subclasses implement ``_validate`` (may raise ``ValidationError``) and
    ``_execute_body``.

    Args:
        port: Input and capture backend
        registry: Mapping points and templates
        config: Delays, retries and find defaults
        sleep: Called for every deliberate delay, in seconds. Defaults to a
            sleep that ends early when a stop is requested.
    """

    RUN_ID_PREFIX = "run"

    def __init__(
        self,
        port: ActionPort,
        registry: MappingRegistry,
        config: Optional[AutomationConfig] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.port = port
        self.registry = registry
        self.config = config or AutomationConfig()
        self._sleep = sleep or self._interruptible_sleep

        self._lock = threading.Lock()
        self._state = RunState.IDLE
        self._stop = threading.Event()
        self._pause = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._log = RunLog()
        self._status_subscribers: Subscribers[StatusSnapshot] = Subscribers()

        self._run_id = ""
        self._workflow_id = ""
        self._current_id: Optional[str] = None
        self._progress = 0
        self._error: Optional[str] = None

    # ---- public control ----
    def run(self, workflow: Any) -> RunState:
        """Execute ``workflow`` on the calling thread and return the final state."""
        prepared = self._prepare(workflow)
        self._execute(prepared)
        return self._state

    def start(self, workflow: Any) -> None:
        """
        Validate ``workflow`` now, then execute it on a daemon worker thread.

        Raises the same errors as ``run`` for a rejected workflow; nothing is
        started in that case.
        """
        prepared = self._prepare(workflow)
        self._thread = threading.Thread(target=self._execute, args=(prepared,), daemon=True)
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> RunState:
        """
        Wait for a run started with ``start``.

        Args:
            timeout: Seconds to wait, or None to wait until the worker ends

        Returns:
            The state at the time the wait ended
        """
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        return self._state

    def pause(self) -> bool:
        """
        Hold the run at its next safe point.

        Returns:
            True if a running workflow was paused, False otherwise
        """
        with self._lock:
            if self._state != RunState.RUNNING:
                return False
            self._pause.set()
            self._state = RunState.PAUSED
        self._add_log("Paused", "INFO")
        return True

    def resume(self) -> bool:
        """
        Continue a paused run.

        Returns:
            True if a paused workflow was resumed, False otherwise
        """
        with self._lock:
            if self._state != RunState.PAUSED:
                return False
            self._pause.clear()
            self._state = RunState.RUNNING
        self._add_log("Resumed", "INFO")
        return True

    def stop(self) -> bool:
        """
        Request the run to end; a paused run is released so it can observe it.

        Returns:
            True if the request reached an active run, False if nothing was running
        """
        with self._lock:
            if not self._state.is_active:
                return False
            self._stop.set()
            self._pause.clear()
        self._add_log("Stop requested", "WARNING")
        return True

    def get_state(self) -> RunState:
        """
        Get current run state.

        Returns:
            Current RunState
        """
        return self._state

    def is_running(self) -> bool:
        """
        Check if a run is in progress (running or paused).

        Returns:
            True if a workflow is active
        """
        return self._state.is_active

    def get_status(self) -> StatusSnapshot:
        """
        Snapshot of the current or most recent run.

        Returns:
            StatusSnapshot with a copy of the log buffer
        """
        return StatusSnapshot(
            run_id=self._run_id,
            workflow_id=self._workflow_id,
            state=self._state,
            current_id=self._current_id,
            progress=self._progress,
            error=self._error,
            logs=self._log.get_all_logs(),
        )

    def subscribe(self, callback: Callable[[StatusSnapshot], None]) -> Callable[[], None]:
        """Register a status observer; returns a callable that unregisters it."""
        return self._status_subscribers.subscribe(callback)

    def unsubscribe(self, callback: Callable[[StatusSnapshot], None]) -> None:
        self._status_subscribers.unsubscribe(callback)

    # ---- subclass hooks ----
    def _validate(self, workflow: Any) -> Any:
        """Check ``workflow`` before anything runs; return what ``_execute_body`` needs."""
        return workflow

    def _execute_body(self, prepared: Any) -> None:
        raise NotImplementedError

    # ---- run lifecycle ----
    def _prepare(self, workflow: Any) -> Any:
        with self._lock:
            if self._state.is_active:
                raise UsageError("A workflow is already running")
            self._reset_run(str(getattr(workflow, "id", "") or ""))
            self._state = RunState.RUNNING

        self._add_log(f"Starting workflow: {getattr(workflow, 'name', '')} (runId: {self._run_id})")
        try:
            return self._validate(workflow)
        except Exception as e:
            self._fail(e)
            raise

    def _reset_run(self, workflow_id: str) -> None:
        self._stop.clear()
        self._pause.clear()
        self._log.clear()
        self._run_id = self._new_run_id()
        self._workflow_id = workflow_id
        self._current_id = None
        self._progress = 0
        self._error = None

    def _new_run_id(self) -> str:
        return f"{self.RUN_ID_PREFIX}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:5]}"

    def _execute(self, prepared: Any) -> None:
        try:
            self._execute_body(prepared)
        except Exception as e:
            logger.debug("Run %s failed", self._run_id, exc_info=True)
            self._fail(e)
            return

        if self._stop.is_set():
            self._finish(RunState.STOPPED, "Workflow stopped")
        else:
            self._finish(RunState.COMPLETED, "Workflow completed")

    def _fail(self, error: Exception) -> None:
        self._error = str(error)
        self._finish(RunState.ERROR, f"Workflow failed: {error}", level="ERROR")

    def _finish(self, state: RunState, message: str, level: str = "SUCCESS") -> None:
        with self._lock:
            self._state = state
            self._pause.clear()
        if state != RunState.ERROR:
            self._current_id = None
        self._add_log(message, "WARNING" if state == RunState.STOPPED else level)

    # ---- helpers for subclasses ----
    def _should_stop(self) -> bool:
        return self._stop.is_set()

    def _wait_while_paused(self) -> None:
        while self._pause.is_set() and not self._stop.is_set():
            self._stop.wait(PAUSE_POLL_SECONDS)

    def _delay_ms(self, ms: float) -> None:
        if ms and ms > 0:
            self._sleep(ms / 1000.0)

    def _interruptible_sleep(self, seconds: float) -> None:
        self._stop.wait(seconds)

    def _add_log(self, message: str, level: str = "INFO") -> LogEntry:
        entry = self._log.add(message, level, self._current_id)
        self._publish_status()
        return entry

    def _publish_status(self) -> None:
        self._status_subscribers.publish(self.get_status())
