"""
Execution Trace Model

Tree-shaped model of one recursive LLM run: an Execution owning an ordered
forest of Iterations, each of which may own nested Iterations.

DESIGN RULES:
- Pure data containers, no business logic
- Frozen: only the reducer produces new versions (via model_copy)
- Wire names are camelCase, Python attributes snake_case
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


DEFAULT_MAX_ITERATIONS = 10
DEFAULT_MAX_DEPTH = 3


class TraceModel(BaseModel):
    """Base for all trace models: camelCase on the wire, immutable in memory."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging/export."""
        return self.model_dump(mode="json", by_alias=True)


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


class IterationStatus(str, Enum):
    """Per-iteration status. Derived from fields, never stored."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    FINAL = "final"


class REPLError(TraceModel):
    """Structured error raised by generated code."""
    kind: str = Field(default="Error", alias="type")
    message: str = ""
    stack: Optional[str] = None
    line: Optional[int] = None


class REPLResult(TraceModel):
    """Outcome of one code execution inside an Iteration."""
    success: bool = False
    stdout: str = ""
    stderr: str = ""
    return_value: Optional[Any] = None
    duration_ms: float = 0.0
    error: Optional[REPLError] = None


class Iteration(TraceModel):
    """
    One node of the recursive execution tree.

    `number` is scoped to the sibling list. `depth` is 0 for top-level
    iterations and parent.depth + 1 for nested ones.
    """

    id: str
    number: int = 0
    input: str = ""
    llm_response: str = ""
    extracted_code: Optional[str] = None
    repl_result: Optional[REPLResult] = None
    nested_queries: List["Iteration"] = Field(default_factory=list)
    is_final: bool = False
    final_answer: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    parent_id: Optional[str] = None
    depth: int = 0

    @property
    def duration_ms(self) -> Optional[int]:
        """Wall-clock duration, once both timestamps are known."""
        if self.started_at is None or self.completed_at is None:
            return None
        delta = self.completed_at - self.started_at
        return int(delta.total_seconds() * 1000)


Iteration.model_rebuild()


class Execution(TraceModel):
    """
    Root of one traced run.

    `iterations` keeps arrival order of the events that introduced each
    entry. `total_llm_calls` and `total_code_executions` count events, not
    tree nodes, so they can diverge from the structural stats.
    """

    id: str
    query: str = ""
    context: str = ""
    iterations: List[Iteration] = Field(default_factory=list)
    status: ExecutionStatus = ExecutionStatus.PENDING
    final_answer: Optional[str] = None
    error: Optional[str] = None
    max_iterations: int = DEFAULT_MAX_ITERATIONS
    current_depth: int = 0
    max_depth: int = DEFAULT_MAX_DEPTH
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    environment_type: str = "local"
    language: str = "python"
    total_llm_calls: int = Field(default=0, alias="totalLLMCalls")
    total_code_executions: int = 0

    @property
    def latency_ms(self) -> int:
        """Elapsed time between start and completion, 0 while unknown."""
        if self.started_at is None or self.completed_at is None:
            return 0
        delta = self.completed_at - self.started_at
        return int(delta.total_seconds() * 1000)
