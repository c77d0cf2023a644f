"""
Trace Sink Interface

Abstract sink for finished trace snapshots.
Storage-agnostic - implementations can write to console, file, cloud, etc.

DESIGN RULES:
- Side-effect only
- Never throw exceptions
- Storage-agnostic interface
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from observability.stats import compute_stats
from observability.status import iteration_status
from observability.trace import Execution, Iteration


logger = logging.getLogger(__name__)


class TraceSink(ABC):
    """
    Abstract base for trace output destinations.

    Implementations:
    - ConsoleTraceSink (default)
    - JsonTraceSink
    """

    @abstractmethod
    def emit(self, execution: Execution) -> None:
        """
        Emit an execution snapshot to the sink.

        Must not throw - failures should be logged and ignored.
        """
        pass


class ConsoleTraceSink(TraceSink):
    """
    Default sink that prints traces to console.

    Format: structured but human-readable, one line per iteration.
    """

    def __init__(self, verbose: bool = True):
        """
        Initialize console sink.

        Args:
            verbose: If True, print the iteration tree. If False, summary only.
        """
        self._verbose = verbose

    def emit(self, execution: Execution) -> None:
        """Print trace to console."""
        try:
            stats = compute_stats(execution)

            print(f"\n{'='*60}")
            print(f"[TRACE] {execution.status.value} {execution.id}")
            print(f"{'='*60}")
            print(f"  Query:      {self._truncate(execution.query)}")
            print(f"  Iterations: {stats.total_iterations} ({stats.sub_computations} nested)")
            print(f"  Code runs:  {stats.code_executions}")
            print(f"  LLM calls:  {execution.total_llm_calls}")
            print(f"  Duration:   {stats.total_duration_ms}ms")

            if execution.final_answer:
                print(f"  Answer:     {self._truncate(execution.final_answer)}")
            if execution.error:
                print(f"  Error:      {execution.error}")

            if self._verbose and execution.iterations:
                print(f"\n  Iterations:")
                self._print_iterations(execution.iterations, indent=4)

            print(f"{'='*60}\n")

        except Exception as e:
            # Never throw - just log failure
            logger.warning(f"[TRACE ERROR] Failed to emit trace: {e}")

    def _print_iterations(self, iterations: List[Iteration], indent: int = 0) -> None:
        """Recursively print the iteration tree with indentation."""
        prefix = " " * indent
        for iteration in iterations:
            status = iteration_status(iteration).value
            print(f"{prefix}#{iteration.number} [{status}] {self._truncate(iteration.input)}")
            if iteration.nested_queries:
                self._print_iterations(iteration.nested_queries, indent + 2)

    @staticmethod
    def _truncate(value: Optional[str], limit: int = 60) -> str:
        str_val = value or ""
        if len(str_val) > limit:
            str_val = str_val[:limit - 3] + "..."
        return str_val


class JsonTraceSink(TraceSink):
    """
    Sink that outputs traces as JSON lines.

    Useful for log aggregation systems.
    """

    def emit(self, execution: Execution) -> None:
        """Print trace as JSON line."""
        try:
            print(json.dumps(execution.to_dict()))

        except Exception as e:
            logger.warning(f"[TRACE ERROR] Failed to emit JSON trace: {e}")


def build_sink(kind: str) -> Optional[TraceSink]:
    """Sink for a configured kind: 'console', 'json' or 'none'."""
    if kind == "console":
        return ConsoleTraceSink(verbose=True)
    if kind == "json":
        return JsonTraceSink()
    return None
