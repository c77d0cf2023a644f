"""
Trace Context

Owns the single mutable Execution of one live trace. Every change goes
through `dispatch()` (events) or the explicit caller actions below, which
delegate to the reducer.

Consumers are bound to a generation token. `begin()`, `reset()` and
`dispose()` advance the generation, so a consumer still delivering events
for a previous run can no longer touch the new trace.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from observability.reducer import apply, new_execution, terminate
from observability.status import is_terminal
from observability.trace import (
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_ITERATIONS,
    Execution,
    ExecutionStatus,
)
from schemas.events import EventType, TraceEvent


logger = logging.getLogger(__name__)


class TraceContext:
    """
    Explicit holder for one trace.

    Not thread-safe: a single consumer feeds it from one event loop.
    """

    def __init__(
        self,
        default_max_iterations: int = DEFAULT_MAX_ITERATIONS,
        default_max_depth: int = DEFAULT_MAX_DEPTH,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            default_max_iterations: Iteration ceiling for `begin()` when not given
            default_max_depth: Depth ceiling for `begin()` when not given
            clock: Source of apply-time timestamps (defaults to datetime.now)
        """
        self._default_max_iterations = default_max_iterations
        self._default_max_depth = default_max_depth
        self._clock = clock or datetime.now
        self._execution: Optional[Execution] = None
        self._generation = 0
        self._version = 0
        self._is_running = False
        self._disposed = False

    @property
    def execution(self) -> Optional[Execution]:
        """Current snapshot. Immutable; safe to hand to readers."""
        return self._execution

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def version(self) -> int:
        """Incremented on every effective change, for cheap change detection."""
        return self._version

    @property
    def is_running(self) -> bool:
        return self._is_running

    @property
    def disposed(self) -> bool:
        return self._disposed

    def begin(
        self,
        query: str,
        context: str = "",
        max_iterations: Optional[int] = None,
        max_depth: Optional[int] = None,
        environment_type: str = "local",
        language: str = "python",
    ) -> int:
        """
        Start a fresh pending execution, detaching any previous consumer.

        Returns:
            Generation token for the consumer that will feed this run.
        """
        self._generation += 1
        self._disposed = False
        self._replace(new_execution(
            query=query,
            context=context,
            max_iterations=max_iterations if max_iterations is not None else self._default_max_iterations,
            max_depth=max_depth if max_depth is not None else self._default_max_depth,
            environment_type=environment_type,
            language=language,
            now=self._clock(),
        ))
        self._is_running = True
        logger.info("Began execution %s (generation %d)", self._execution.id, self._generation)
        return self._generation

    def attach(self) -> int:
        """Token binding a consumer to the current run."""
        return self._generation

    def is_current(self, generation: Optional[int]) -> bool:
        """Check whether a consumer token still owns this context."""
        if self._disposed:
            return False
        return generation is None or generation == self._generation

    def dispatch(self, event: TraceEvent, generation: Optional[int] = None) -> bool:
        """
        Apply one event.

        Args:
            event: Decoded lifecycle event
            generation: Consumer token; events from stale consumers are dropped

        Returns:
            True if the trace changed.
        """
        if not self.is_current(generation):
            logger.debug("Dropping %s from detached consumer (generation %s)", event.type, generation)
            return False

        updated = apply(self._execution, event, now=self._clock())
        if updated is self._execution:
            return False

        self._replace(updated)
        if event.type == EventType.EXECUTION_START.value:
            self._is_running = True
        elif is_terminal(updated.status):
            self._is_running = False
        return True

    def mark_failed(self, message: str, generation: Optional[int] = None) -> bool:
        """Caller-initiated failure (e.g. transport error). No-op once terminal."""
        return self._terminate(ExecutionStatus.FAILED, message, generation)

    def mark_timeout(self, message: str, generation: Optional[int] = None) -> bool:
        """Caller-initiated timeout. No-op once terminal."""
        return self._terminate(ExecutionStatus.TIMEOUT, message, generation)

    def reset(self) -> None:
        """Discard the current execution and detach its consumer."""
        self._generation += 1
        self._replace(None)
        self._is_running = False

    def dispose(self) -> None:
        """Reset and refuse any further events until the next `begin()`."""
        self.reset()
        self._disposed = True

    def _terminate(self, status: ExecutionStatus, message: str, generation: Optional[int]) -> bool:
        if self._execution is None or not self.is_current(generation):
            return False
        updated = terminate(self._execution, status, message, now=self._clock())
        if updated is self._execution:
            return False
        self._replace(updated)
        self._is_running = False
        logger.info("Execution %s marked %s: %s", updated.id, status.value, message)
        return True

    def _replace(self, execution: Optional[Execution]) -> None:
        self._execution = execution
        self._version += 1
