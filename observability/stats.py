"""
Stats Aggregator

Derived, read-only metrics over the current trace. Recomputed from the
trace alone on every call; holds no counters of its own.
"""

from typing import List, Optional

from pydantic import Field

from observability.trace import Execution, Iteration, TraceModel


class ExecutionStats(TraceModel):
    """
    Flattened view of one execution.

    `total_llm_calls` / `total_code_executions` are the event-driven counters
    carried on the Execution; the other fields are structural and may differ.
    """
    total_iterations: int = 0
    top_level_iterations: int = 0
    code_executions: int = 0
    sub_computations: int = 0
    total_duration_ms: int = 0
    max_depth_reached: int = 0
    avg_iteration_ms: float = 0.0
    total_llm_calls: int = Field(default=0, alias="totalLLMCalls")
    total_code_executions: int = 0


def flatten_iterations(iterations: List[Iteration]) -> List[Iteration]:
    """Depth-first, pre-order linearization of the iteration forest."""
    flat: List[Iteration] = []
    for iteration in iterations:
        flat.append(iteration)
        if iteration.nested_queries:
            flat.extend(flatten_iterations(iteration.nested_queries))
    return flat


def compute_stats(execution: Optional[Execution]) -> ExecutionStats:
    """Aggregate counts and durations for `execution` (all zero when None)."""
    if execution is None:
        return ExecutionStats()

    flat = flatten_iterations(execution.iterations)
    durations = [i.duration_ms for i in flat if i.duration_ms is not None]

    return ExecutionStats(
        total_iterations=len(flat),
        top_level_iterations=len(execution.iterations),
        code_executions=sum(1 for i in flat if i.extracted_code or i.repl_result is not None),
        sub_computations=sum(1 for i in flat if i.depth > 0),
        total_duration_ms=execution.latency_ms,
        max_depth_reached=max((i.depth for i in flat), default=0),
        avg_iteration_ms=sum(durations) / len(durations) if durations else 0.0,
        total_llm_calls=execution.total_llm_calls,
        total_code_executions=execution.total_code_executions,
    )
