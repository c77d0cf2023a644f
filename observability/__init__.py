# Observability Package
# Reducer, context and collector import schemas.events, which imports this
# package; import them from their modules directly.
from observability.trace import Execution, ExecutionStatus, Iteration, IterationStatus, REPLResult
from observability.stats import ExecutionStats, compute_stats, flatten_iterations
from observability.sink import TraceSink, ConsoleTraceSink, JsonTraceSink

__all__ = [
    "Execution",
    "ExecutionStatus",
    "Iteration",
    "IterationStatus",
    "REPLResult",
    "ExecutionStats",
    "compute_stats",
    "flatten_iterations",
    "TraceSink",
    "ConsoleTraceSink",
    "JsonTraceSink",
]
