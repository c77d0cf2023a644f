from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import Field, TypeAdapter

from observability.trace import REPLResult, TraceModel


# --- Taxonomy ---

class EventType(str, Enum):
    """
    Lifecycle events emitted by a live recursive execution.
    """
    EXECUTION_START = "execution_start"
    EXECUTION_COMPLETE = "execution_complete"
    ITERATION_START = "iteration_start"
    ITERATION_COMPLETE = "iteration_complete"
    CODE_EXTRACTED = "code_extracted"
    REPL_EXECUTING = "repl_executing"
    REPL_RESULT = "repl_result"
    FINAL_DETECTED = "final_detected"
    ERROR = "error"


EVENT_TYPES = frozenset(member.value for member in EventType)


# --- Payload Schemas ---

class ExecutionInfo(TraceModel):
    """Execution attributes announced by the producer. Absent fields keep local values."""
    id: Optional[str] = None
    query: Optional[str] = None
    context: Optional[str] = None
    max_iterations: Optional[int] = None
    max_depth: Optional[int] = None
    environment_type: Optional[str] = None
    language: Optional[str] = None


class IterationInfo(TraceModel):
    """Fields needed to create a new Iteration node."""
    id: str
    number: int = 0
    input: str = ""
    parent_id: Optional[str] = None
    depth: int = 0


class IterationUpdate(TraceModel):
    """Fields merged into an existing Iteration on completion. None means 'not carried'."""
    id: str
    number: Optional[int] = None
    input: Optional[str] = None
    llm_response: Optional[str] = None
    extracted_code: Optional[str] = None
    is_final: Optional[bool] = None
    final_answer: Optional[str] = None

    def carried_fields(self) -> Dict[str, Any]:
        """Fields present in the update, excluding identity."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name != "id" and getattr(self, name) is not None
        }


class FinalResponse(TraceModel):
    """Parsed FINAL marker: a direct answer or the name of a variable holding it."""
    kind: str = Field(default="final", alias="type")
    answer: Optional[str] = None
    variable_name: Optional[str] = None


# --- Event Variants ---

class ExecutionStartEvent(TraceModel):
    type: Literal["execution_start"] = "execution_start"
    execution: ExecutionInfo = Field(default_factory=ExecutionInfo)


class ExecutionCompleteEvent(TraceModel):
    type: Literal["execution_complete"] = "execution_complete"
    execution: Optional[ExecutionInfo] = None


class IterationStartEvent(TraceModel):
    type: Literal["iteration_start"] = "iteration_start"
    iteration: IterationInfo


class IterationCompleteEvent(TraceModel):
    type: Literal["iteration_complete"] = "iteration_complete"
    iteration: IterationUpdate


class CodeExtractedEvent(TraceModel):
    type: Literal["code_extracted"] = "code_extracted"
    iteration_id: str
    code: str


class ReplExecutingEvent(TraceModel):
    type: Literal["repl_executing"] = "repl_executing"
    iteration_id: Optional[str] = None
    code: str = ""


class ReplResultEvent(TraceModel):
    type: Literal["repl_result"] = "repl_result"
    iteration_id: str
    result: REPLResult


class FinalDetectedEvent(TraceModel):
    type: Literal["final_detected"] = "final_detected"
    iteration_id: str
    response: FinalResponse = Field(default_factory=FinalResponse)


class ErrorEvent(TraceModel):
    type: Literal["error"] = "error"
    message: str


TraceEvent = Annotated[
    Union[
        ExecutionStartEvent,
        ExecutionCompleteEvent,
        IterationStartEvent,
        IterationCompleteEvent,
        CodeExtractedEvent,
        ReplExecutingEvent,
        ReplResultEvent,
        FinalDetectedEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

_event_adapter: TypeAdapter = TypeAdapter(TraceEvent)


def validate_event(data: Dict[str, Any]) -> TraceEvent:
    """
    Validate a normalized event dict into its typed variant.

    Raises:
        pydantic.ValidationError: If the dict matches no variant.
    """
    return _event_adapter.validate_python(data)
