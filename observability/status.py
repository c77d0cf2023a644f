"""
Status State Machine

Valid transitions for an Execution, and the derived status of an Iteration.

    pending -> running -> {completed, failed, timeout}

A pending execution may also fail or time out before the producer ever
announces it (e.g. the stream could not be opened). Terminal states have
no way out; only a caller-initiated reset starts over.
"""

from typing import Dict, FrozenSet

from observability.trace import ExecutionStatus, Iteration, IterationStatus


TERMINAL_STATUSES: FrozenSet[ExecutionStatus] = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.TIMEOUT,
})

# running -> running is a producer restarting the run before it finished.
_TRANSITIONS: Dict[ExecutionStatus, FrozenSet[ExecutionStatus]] = {
    ExecutionStatus.PENDING: frozenset({
        ExecutionStatus.RUNNING,
        ExecutionStatus.FAILED,
        ExecutionStatus.TIMEOUT,
    }),
    ExecutionStatus.RUNNING: frozenset({
        ExecutionStatus.RUNNING,
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
        ExecutionStatus.TIMEOUT,
    }),
    ExecutionStatus.COMPLETED: frozenset(),
    ExecutionStatus.FAILED: frozenset(),
    ExecutionStatus.TIMEOUT: frozenset(),
}


def is_terminal(status: ExecutionStatus) -> bool:
    """Check whether no further transition is possible."""
    return status in TERMINAL_STATUSES


def can_transition(current: ExecutionStatus, target: ExecutionStatus) -> bool:
    """Check whether `current -> target` is a valid execution transition."""
    return target in _TRANSITIONS[current]


def iteration_status(iteration: Iteration) -> IterationStatus:
    """
    Derive the display status of an iteration.

    Precedence: final, error (failed REPL result), completed, running, pending.
    """
    if iteration.is_final:
        return IterationStatus.FINAL
    if iteration.repl_result is not None and not iteration.repl_result.success:
        return IterationStatus.ERROR
    if iteration.completed_at is not None:
        return IterationStatus.COMPLETED
    if iteration.started_at is not None:
        return IterationStatus.RUNNING
    return IterationStatus.PENDING
