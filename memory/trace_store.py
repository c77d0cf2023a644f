"""
Trace Store

In-memory registry of live traces, keyed by run id.

DESIGN RULES:
- No persistence: traces live only for the process lifetime
- No sharing between runs: each run owns its own TraceContext
- Idle finished runs are cleared automatically
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from threading import Lock
from typing import Dict, List, Optional

from observability.context import TraceContext


@dataclass
class TraceRun:
    """
    One traced run: its context plus the consumer currently feeding it.
    """
    run_id: str
    context: TraceContext
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)

    @property
    def is_consuming(self) -> bool:
        """Check whether a consumer task is still reading."""
        return self.task is not None and not self.task.done()

    def cancel(self) -> None:
        """Ask the current consumer to stop reading."""
        self.cancel_event.set()

    def detach(self) -> None:
        """Stop the current consumer and prepare a fresh cancel signal."""
        self.cancel_event.set()
        if self.is_consuming:
            self.task.cancel()
        self.cancel_event = asyncio.Event()
        self.task = None
        self.last_error = None


class TraceStore:
    """
    In-memory trace store.

    Thread-safe for concurrent access.
    """

    # Finished runs are cleared after this much inactivity
    RUN_TIMEOUT_MINUTES = 30

    def __init__(
        self,
        timeout_minutes: int = RUN_TIMEOUT_MINUTES,
        default_max_iterations: Optional[int] = None,
        default_max_depth: Optional[int] = None,
    ):
        """
        Initialize trace store.

        Args:
            timeout_minutes: Idle time after which finished runs are dropped
            default_max_iterations: Iteration ceiling for new contexts
            default_max_depth: Depth ceiling for new contexts
        """
        self._runs: Dict[str, TraceRun] = {}
        self._last_access: Dict[str, datetime] = {}
        self._timeout = timedelta(minutes=timeout_minutes)
        self._context_defaults = {
            key: value
            for key, value in (
                ("default_max_iterations", default_max_iterations),
                ("default_max_depth", default_max_depth),
            )
            if value is not None
        }
        self._lock = Lock()

    def create(self, run_id: Optional[str] = None) -> TraceRun:
        """
        Register a new run with an empty context.

        Args:
            run_id: Optional explicit id; generated when omitted

        Returns:
            The new TraceRun
        """
        with self._lock:
            self._cleanup_expired()

            run_id = run_id or f"run_{uuid.uuid4().hex[:12]}"
            run = TraceRun(run_id=run_id, context=TraceContext(**self._context_defaults))
            self._runs[run_id] = run
            self._last_access[run_id] = datetime.now()
            return run

    def get(self, run_id: str) -> Optional[TraceRun]:
        """
        Look up a run.

        Args:
            run_id: Run identifier

        Returns:
            The TraceRun, or None if unknown or expired
        """
        with self._lock:
            self._cleanup_expired()

            run = self._runs.get(run_id)
            if run is not None:
                self._last_access[run_id] = datetime.now()
            return run

    def remove(self, run_id: str) -> Optional[TraceRun]:
        """
        Detach, dispose and forget a run.

        Args:
            run_id: Run to remove
        """
        with self._lock:
            run = self._runs.pop(run_id, None)
            self._last_access.pop(run_id, None)

        if run is not None:
            run.detach()
            run.context.dispose()
        return run

    def runs(self) -> List[TraceRun]:
        """All live runs, oldest first."""
        with self._lock:
            self._cleanup_expired()
            return sorted(self._runs.values(), key=lambda run: run.created_at)

    def shutdown(self) -> None:
        """Detach every consumer (process shutdown)."""
        with self._lock:
            runs = list(self._runs.values())
        for run in runs:
            run.detach()

    def _cleanup_expired(self) -> None:
        """Remove idle runs that are no longer being consumed (internal)."""
        cutoff = datetime.now() - self._timeout
        expired = [
            run_id for run_id, last in self._last_access.items()
            if last < cutoff and not self._runs[run_id].is_consuming
        ]
        for run_id in expired:
            run = self._runs.pop(run_id)
            del self._last_access[run_id]
            run.context.dispose()

    def run_count(self) -> int:
        """Get count of live runs."""
        with self._lock:
            self._cleanup_expired()
            return len(self._runs)

