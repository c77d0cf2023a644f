"""
Trace Reducer

Folds lifecycle events into the current Execution:

    apply(execution, event) -> execution'

DESIGN RULES:
- Never throw on anomalies (unknown ids, late or duplicate events)
- Copy-on-write: untouched nodes are returned as the same objects
- Unchanged input is returned as-is, so `result is execution` means no-op
- Timestamps are taken at apply time, never from the producer
"""

import logging
import time
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional

from observability.status import can_transition, is_terminal
from observability.trace import (
    DEFAULT_MAX_DEPTH,
    DEFAULT_MAX_ITERATIONS,
    Execution,
    ExecutionStatus,
    Iteration,
)
from schemas.events import (
    CodeExtractedEvent,
    ErrorEvent,
    EventType,
    ExecutionCompleteEvent,
    ExecutionStartEvent,
    FinalDetectedEvent,
    IterationCompleteEvent,
    IterationStartEvent,
    ReplExecutingEvent,
    ReplResultEvent,
    TraceEvent,
)


logger = logging.getLogger(__name__)

IterationUpdater = Callable[[Iteration], Iteration]


def generate_execution_id(prefix: str = "exec") -> str:
    """Generate an opaque id: <prefix>_<epoch ms>_<6 random chars>."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


def new_execution(
    query: str,
    context: str = "",
    max_iterations: int = DEFAULT_MAX_ITERATIONS,
    max_depth: int = DEFAULT_MAX_DEPTH,
    environment_type: str = "local",
    language: str = "python",
    now: Optional[datetime] = None,
) -> Execution:
    """Create a fresh pending Execution (the caller-side 'begin' action)."""
    return Execution(
        id=generate_execution_id(),
        query=query,
        context=context,
        status=ExecutionStatus.PENDING,
        max_iterations=max_iterations,
        max_depth=max_depth,
        started_at=now or datetime.now(),
        environment_type=environment_type,
        language=language,
    )


# ============================================================
# TREE HELPERS
# ============================================================

def find_iteration(iterations: List[Iteration], target_id: str) -> Optional[Iteration]:
    """Depth-first lookup of an iteration by id anywhere in the forest."""
    for iteration in iterations:
        if iteration.id == target_id:
            return iteration
        found = find_iteration(iteration.nested_queries, target_id)
        if found is not None:
            return found
    return None


def find_and_update_iteration(
    iterations: List[Iteration],
    target_id: str,
    updater: IterationUpdater,
) -> List[Iteration]:
    """
    Replace the iteration with `target_id` by `updater(iteration)`.

    Only the path from the root to the match is copied; every other node is
    returned by reference. When nothing matches, the very same list is
    returned.
    """
    for index, iteration in enumerate(iterations):
        if iteration.id == target_id:
            replacement = updater(iteration)
        elif iteration.nested_queries:
            children = find_and_update_iteration(iteration.nested_queries, target_id, updater)
            if children is iteration.nested_queries:
                continue
            replacement = iteration.model_copy(update={"nested_queries": children})
        else:
            continue

        updated = list(iterations)
        updated[index] = replacement
        return updated

    return iterations


def _update_iteration(
    execution: Execution,
    target_id: str,
    updater: IterationUpdater,
    **execution_fields,
) -> Execution:
    """Apply `updater` to one iteration; no-op (same object) if the id is unknown."""
    iterations = find_and_update_iteration(execution.iterations, target_id, updater)
    if iterations is execution.iterations:
        logger.debug("Ignoring event for unknown iteration %s", target_id)
        return execution
    return execution.model_copy(update={"iterations": iterations, **execution_fields})


# ============================================================
# EVENT HANDLERS
# ============================================================

def _on_execution_start(
    execution: Optional[Execution], event: ExecutionStartEvent, now: datetime
) -> Optional[Execution]:
    if execution is not None and not can_transition(execution.status, ExecutionStatus.RUNNING):
        logger.debug("Ignoring execution_start: execution %s is %s", execution.id, execution.status.value)
        return execution

    info = event.execution

    def pick(name: str, default):
        value = getattr(info, name)
        if value is not None:
            return value
        return getattr(execution, name) if execution is not None else default

    return Execution(
        id=pick("id", None) or generate_execution_id(),
        query=pick("query", ""),
        context=pick("context", ""),
        status=ExecutionStatus.RUNNING,
        max_iterations=pick("max_iterations", DEFAULT_MAX_ITERATIONS),
        max_depth=pick("max_depth", DEFAULT_MAX_DEPTH),
        environment_type=pick("environment_type", "local"),
        language=pick("language", "python"),
        started_at=now,
    )


def _on_execution_complete(
    execution: Optional[Execution], event: ExecutionCompleteEvent, now: datetime
) -> Optional[Execution]:
    if execution is None:
        return execution
    if not can_transition(execution.status, ExecutionStatus.COMPLETED):
        logger.debug("Ignoring execution_complete: execution %s is %s", execution.id, execution.status.value)
        return execution
    return execution.model_copy(update={
        "status": ExecutionStatus.COMPLETED,
        "completed_at": now,
    })


def _on_error(
    execution: Optional[Execution], event: ErrorEvent, now: datetime
) -> Optional[Execution]:
    if execution is None:
        return execution
    return terminate(execution, ExecutionStatus.FAILED, event.message, now=now)


def _on_iteration_start(
    execution: Optional[Execution], event: IterationStartEvent, now: datetime
) -> Optional[Execution]:
    if execution is None:
        return execution

    info = event.iteration
    if find_iteration(execution.iterations, info.id) is not None:
        logger.debug("Ignoring duplicate iteration_start for %s", info.id)
        return execution

    llm_calls = execution.total_llm_calls + 1

    if not info.parent_id:
        iteration = Iteration(
            id=info.id,
            number=info.number,
            input=info.input,
            depth=0,
            started_at=now,
        )
        return execution.model_copy(update={
            "iterations": [*execution.iterations, iteration],
            "total_llm_calls": llm_calls,
        })

    parent = find_iteration(execution.iterations, info.parent_id)
    if parent is None:
        logger.debug("Dropping iteration %s: unknown parent %s", info.id, info.parent_id)
        return execution.model_copy(update={"total_llm_calls": llm_calls})

    depth = parent.depth + 1
    if info.depth != depth:
        logger.debug("Iteration %s announced depth %d, placed at %d", info.id, info.depth, depth)

    iteration = Iteration(
        id=info.id,
        number=info.number,
        input=info.input,
        parent_id=parent.id,
        depth=depth,
        started_at=now,
    )
    iterations = find_and_update_iteration(
        execution.iterations,
        parent.id,
        lambda node: node.model_copy(update={"nested_queries": [*node.nested_queries, iteration]}),
    )
    return execution.model_copy(update={
        "iterations": iterations,
        "current_depth": max(execution.current_depth, depth),
        "total_llm_calls": llm_calls,
    })


def _on_iteration_complete(
    execution: Optional[Execution], event: IterationCompleteEvent, now: datetime
) -> Optional[Execution]:
    if execution is None:
        return execution
    fields = event.iteration.carried_fields()
    return _update_iteration(
        execution,
        event.iteration.id,
        # first completion wins the timestamp so replays stay idempotent
        lambda node: node.model_copy(update={**fields, "completed_at": node.completed_at or now}),
    )


def _on_code_extracted(
    execution: Optional[Execution], event: CodeExtractedEvent, now: datetime
) -> Optional[Execution]:
    if execution is None:
        return execution
    return _update_iteration(
        execution,
        event.iteration_id,
        lambda node: node.model_copy(update={"extracted_code": event.code}),
    )


def _on_repl_executing(
    execution: Optional[Execution], event: ReplExecutingEvent, now: datetime
) -> Optional[Execution]:
    if execution is None:
        return execution
    return execution.model_copy(update={
        "total_code_executions": execution.total_code_executions + 1,
    })


def _on_repl_result(
    execution: Optional[Execution], event: ReplResultEvent, now: datetime
) -> Optional[Execution]:
    if execution is None:
        return execution
    return _update_iteration(
        execution,
        event.iteration_id,
        lambda node: node.model_copy(update={"repl_result": event.result}),
    )


def _on_final_detected(
    execution: Optional[Execution], event: FinalDetectedEvent, now: datetime
) -> Optional[Execution]:
    if execution is None:
        return execution
    answer = event.response.answer
    return _update_iteration(
        execution,
        event.iteration_id,
        lambda node: node.model_copy(update={"is_final": True, "final_answer": answer}),
        final_answer=answer,
    )


_HANDLERS: Dict[EventType, Callable] = {
    EventType.EXECUTION_START: _on_execution_start,
    EventType.EXECUTION_COMPLETE: _on_execution_complete,
    EventType.ITERATION_START: _on_iteration_start,
    EventType.ITERATION_COMPLETE: _on_iteration_complete,
    EventType.CODE_EXTRACTED: _on_code_extracted,
    EventType.REPL_EXECUTING: _on_repl_executing,
    EventType.REPL_RESULT: _on_repl_result,
    EventType.FINAL_DETECTED: _on_final_detected,
    EventType.ERROR: _on_error,
}


# ============================================================
# PUBLIC API
# ============================================================

def apply(
    execution: Optional[Execution],
    event: TraceEvent,
    now: Optional[datetime] = None,
) -> Optional[Execution]:
    """
    Fold one event into the trace.

    Args:
        execution: Current trace, or None before anything started
        event: A decoded lifecycle event
        now: Apply-time timestamp (defaults to the local clock)

    Returns:
        The next trace. Identical object when the event was a no-op.
    """
    handler = _HANDLERS.get(EventType(event.type))
    if handler is None:
        return execution
    return handler(execution, event, now or datetime.now())


def terminate(
    execution: Execution,
    status: ExecutionStatus,
    message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Execution:
    """
    Move a non-terminal execution to a terminal `status`.

    Used for `error` events and for caller-initiated failure/timeout.
    Terminal executions are returned unchanged.
    """
    if is_terminal(execution.status) or not can_transition(execution.status, status):
        logger.debug("Ignoring %s: execution %s is %s", status.value, execution.id, execution.status.value)
        return execution
    return execution.model_copy(update={
        "status": status,
        "error": message,
        "completed_at": now or datetime.now(),
    })
