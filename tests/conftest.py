import json
from datetime import datetime, timedelta
from typing import List, Optional

import pytest

from observability.context import TraceContext
from observability.reducer import apply
from observability.trace import Execution, REPLResult
from schemas.events import (
    CodeExtractedEvent,
    ErrorEvent,
    ExecutionCompleteEvent,
    ExecutionInfo,
    ExecutionStartEvent,
    FinalDetectedEvent,
    FinalResponse,
    IterationCompleteEvent,
    IterationInfo,
    IterationStartEvent,
    IterationUpdate,
    ReplExecutingEvent,
    ReplResultEvent,
)


class FakeClock:
    """Deterministic clock: every call advances by `step`."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0), step_ms: int = 100):
        self.now = start
        self.step = timedelta(milliseconds=step_ms)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + self.step
        return current


class EventFactory:
    """Short constructors for the nine event variants."""

    @staticmethod
    def execution_start(id: str = "e1", query: str = "Q", **fields) -> ExecutionStartEvent:
        return ExecutionStartEvent(execution=ExecutionInfo(id=id, query=query, **fields))

    @staticmethod
    def execution_complete() -> ExecutionCompleteEvent:
        return ExecutionCompleteEvent()

    @staticmethod
    def iteration_start(id: str, parent_id: Optional[str] = None, depth: int = 0, number: int = 0,
                        input: str = "") -> IterationStartEvent:
        return IterationStartEvent(iteration=IterationInfo(
            id=id, parent_id=parent_id, depth=depth, number=number, input=input,
        ))

    @staticmethod
    def iteration_complete(id: str, **fields) -> IterationCompleteEvent:
        return IterationCompleteEvent(iteration=IterationUpdate(id=id, **fields))

    @staticmethod
    def code_extracted(iteration_id: str, code: str = "print(1)") -> CodeExtractedEvent:
        return CodeExtractedEvent(iteration_id=iteration_id, code=code)

    @staticmethod
    def repl_executing(iteration_id: str, code: str = "print(1)") -> ReplExecutingEvent:
        return ReplExecutingEvent(iteration_id=iteration_id, code=code)

    @staticmethod
    def repl_result(iteration_id: str, success: bool = True, stdout: str = "", **fields) -> ReplResultEvent:
        return ReplResultEvent(
            iteration_id=iteration_id,
            result=REPLResult(success=success, stdout=stdout, **fields),
        )

    @staticmethod
    def final_detected(iteration_id: str, answer: Optional[str] = None) -> FinalDetectedEvent:
        return FinalDetectedEvent(iteration_id=iteration_id, response=FinalResponse(answer=answer))

    @staticmethod
    def error(message: str) -> ErrorEvent:
        return ErrorEvent(message=message)


def fold(events: List, execution: Optional[Execution] = None, clock: Optional[FakeClock] = None) -> Optional[Execution]:
    """Apply events in order starting from `execution`."""
    clock = clock or FakeClock()
    for event in events:
        execution = apply(execution, event, now=clock())
    return execution


@pytest.fixture
def events() -> EventFactory:
    return EventFactory()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def context(clock) -> TraceContext:
    return TraceContext(clock=clock)


@pytest.fixture
def nested_execution(events, clock) -> Execution:
    """
    e1 running with:
        i1 (depth 0)
          i2 (depth 1)
            i3 (depth 2)
        i4 (depth 0)
    """
    return fold([
        events.execution_start(),
        events.iteration_start("i1", number=1),
        events.iteration_start("i2", parent_id="i1", depth=1),
        events.iteration_start("i3", parent_id="i2", depth=2),
        events.iteration_start("i4", number=2),
    ], clock=clock)


def sse(event_type: Optional[str], data: str) -> str:
    """Frame one record the way the live stream does."""
    head = f"event: {event_type}\n" if event_type else ""
    return f"{head}data: {data}\n\n"


async def chunked(*parts):
    """Async iterable over the given chunks."""
    for part in parts:
        yield part


# One complete run as the producer streams it: e1 with i1 > i2, answered by i1.
RECORDED_RUN = [
    sse("execution-start", json.dumps({"execution": {"id": "e1", "query": "Q"}})),
    sse("iteration-start", json.dumps({"iteration": {"id": "i1", "number": 1, "depth": 0}})),
    sse("iteration-start", json.dumps({"iteration": {"id": "i2", "number": 1, "parentId": "i1", "depth": 1}})),
    sse("code-extracted", json.dumps({"iterationId": "i2", "code": "print(129)"})),
    sse("repl-executing", json.dumps({"iterationId": "i2", "code": "print(129)"})),
    sse("repl-result", json.dumps({"iterationId": "i2", "result": {"success": True, "stdout": "129"}})),
    sse("final-detected", json.dumps({"iterationId": "i1", "response": {"type": "FINAL", "answer": "129"}})),
    sse("execution-complete", "{}"),
]
