from datetime import datetime
from typing import List, Optional
from pydantic import Field

from observability.status import iteration_status
from observability.trace import Execution, Iteration, IterationStatus, TraceModel


class TraceSnapshot(TraceModel):
    """
    API response model for a traced run.

    This is the external contract: clients poll this.
    """
    run_id: str = Field(..., description="Run identifier")
    is_running: bool = Field(..., description="Whether the execution is still in progress")
    is_consuming: bool = Field(..., description="Whether a stream consumer is attached")
    version: int = Field(..., description="Changes whenever the trace changes")
    last_error: Optional[str] = Field(default=None, description="Last transport error, if any")
    execution: Optional[Execution] = Field(default=None, description="The execution tree")

    @classmethod
    def from_run(cls, run: "TraceRun") -> "TraceSnapshot":
        """Capture the current state of a run."""
        return cls(
            run_id=run.run_id,
            is_running=run.context.is_running,
            is_consuming=run.is_consuming,
            version=run.context.version,
            last_error=run.last_error,
            execution=run.context.execution,
        )


class RunSummary(TraceModel):
    """One entry of GET /traces."""
    run_id: str
    execution_id: Optional[str] = None
    status: Optional[str] = None
    is_running: bool = False


class RunListResponse(TraceModel):
    runs: List[RunSummary] = Field(default_factory=list)


class IterationSummary(TraceModel):
    """Flattened iteration with its derived status (no nested children)."""
    id: str
    number: int
    parent_id: Optional[str] = None
    depth: int
    status: IterationStatus
    input: str = ""
    has_code: bool = False
    repl_success: Optional[bool] = None
    is_final: bool = False
    final_answer: Optional[str] = None
    nested_count: int = 0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None

    @classmethod
    def from_iteration(cls, iteration: Iteration) -> "IterationSummary":
        return cls(
            id=iteration.id,
            number=iteration.number,
            parent_id=iteration.parent_id,
            depth=iteration.depth,
            status=iteration_status(iteration),
            input=iteration.input,
            has_code=bool(iteration.extracted_code),
            repl_success=iteration.repl_result.success if iteration.repl_result else None,
            is_final=iteration.is_final,
            final_answer=iteration.final_answer,
            nested_count=len(iteration.nested_queries),
            started_at=iteration.started_at,
            completed_at=iteration.completed_at,
            duration_ms=iteration.duration_ms,
        )


class IterationDetail(TraceModel):
    """A full iteration subtree plus its derived status."""
    status: IterationStatus
    iteration: Iteration


class EventAck(TraceModel):
    """Result of pushing one event."""
    applied: bool = Field(..., description="Whether the trace changed")
    version: int = Field(..., description="Trace version after the event")


# Import hints for type checking (avoid circular imports at runtime)
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from memory.trace_store import TraceRun
