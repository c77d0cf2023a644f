import json

import pytest
from conftest import sse

from observability.reducer import apply
from observability.trace import ExecutionStatus
from schemas.events import (
    CodeExtractedEvent,
    ErrorEvent,
    ExecutionStartEvent,
    FinalDetectedEvent,
    IterationStartEvent,
    ReplResultEvent,
)
from streaming.parser import decode_payload, decode_record, resolve_event_type, split_record


# --- Framing ---

def test_split_record_reads_designator_and_data():
    record = split_record('event: iteration-start\ndata: {"a": 1}')

    assert record.event_type == "iteration-start"
    assert record.data == '{"a": 1}'


def test_split_record_defaults_designator_and_joins_data_lines():
    record = split_record(": keepalive\nid: 7\ndata: {\"a\":\ndata: 1}")

    assert record.event_type == "message"
    assert record.data == '{"a":\n1}'


def test_record_without_data_line_is_dropped():
    assert decode_record("event: execution-start") is None


# --- Scenario E ---

def test_malformed_json_is_dropped_and_stream_goes_on():
    records = [
        "event: execution-start\ndata: not-json",
        sse("execution-start", json.dumps({"execution": {"id": "e1", "query": "Q"}})).strip(),
    ]

    decoded = [decode_record(text) for text in records]

    assert decoded[0] is None
    assert isinstance(decoded[1], ExecutionStartEvent)

    execution = None
    for event in decoded:
        if event is not None:
            execution = apply(execution, event)
    assert execution.id == "e1"
    assert execution.status == ExecutionStatus.RUNNING


# --- Designators ---

@pytest.mark.parametrize("designator", ["repl-result", "repl_result", " repl-result "])
def test_designator_spellings_are_equivalent(designator):
    assert resolve_event_type(designator, {}) == "repl_result"


def test_default_designator_uses_payload_type():
    assert resolve_event_type("message", {"type": "final-detected"}) == "final_detected"


def test_unknown_event_types_are_ignored():
    assert decode_payload("llm-query-start", {"iterationId": "i1"}) is None
    assert decode_payload("message", {"type": "heartbeat"}) is None
    assert decode_payload("message", {}) is None


def test_non_object_payload_is_dropped():
    assert decode_payload("error", ["boom"]) is None
    assert decode_payload("error", "boom") is None


def test_missing_required_field_is_dropped():
    assert decode_payload("code-extracted", {"code": "x = 1"}) is None
    assert decode_payload("iteration-start", {"iteration": {"number": 1}}) is None


# --- Payload shapes ---

def test_nested_producer_shape():
    payload = {
        "type": "iteration_start",
        "iteration": {"id": "i2", "number": 1, "input": "sub", "parentId": "i1", "depth": 1},
    }

    event = decode_payload("message", payload)

    assert isinstance(event, IterationStartEvent)
    assert event.iteration.id == "i2"
    assert event.iteration.parent_id == "i1"
    assert event.iteration.depth == 1


def test_flat_iteration_shape():
    event = decode_payload("iteration-start", {"id": "i1", "number": 1, "parentId": None, "depth": 0})

    assert isinstance(event, IterationStartEvent)
    assert event.iteration.id == "i1"
    assert event.iteration.parent_id is None


def test_iteration_id_from_nested_iteration_object():
    event = decode_payload("code-extracted", {"iteration": {"id": "i3"}, "code": "print(1)"})

    assert isinstance(event, CodeExtractedEvent)
    assert event.iteration_id == "i3"
    assert event.code == "print(1)"


def test_flat_repl_result():
    event = decode_payload("repl-result", {"iterationId": "i2", "success": True, "stdout": "129"})

    assert isinstance(event, ReplResultEvent)
    assert event.result.success is True
    assert event.result.stdout == "129"


def test_nested_repl_result_with_error():
    payload = {
        "iteration": {"id": "i2"},
        "result": {
            "success": False,
            "stderr": "Traceback",
            "durationMs": 12,
            "error": {"type": "NameError", "message": "x is not defined", "line": 3},
        },
    }

    event = decode_payload("repl_result", payload)

    assert event.result.duration_ms == 12
    assert event.result.error.kind == "NameError"
    assert event.result.error.line == 3


def test_final_detected_flat_and_nested():
    flat = decode_payload("final-detected", {"iterationId": "i1", "answer": "42"})
    nested = decode_payload("final-detected", {
        "iteration": {"id": "i1"},
        "response": {"type": "FINAL_VAR", "answer": "42", "variableName": "result"},
    })

    assert isinstance(flat, FinalDetectedEvent)
    assert flat.response.answer == "42"
    assert nested.response.kind == "FINAL_VAR"
    assert nested.response.variable_name == "result"


@pytest.mark.parametrize("payload, message", [
    ({"message": "boom"}, "boom"),
    ({"error": "boom"}, "boom"),
    ({"error": {"message": "boom", "type": "Error"}}, "boom"),
    ({}, "Unknown error"),
])
def test_error_message_shapes(payload, message):
    event = decode_payload("error", payload)

    assert isinstance(event, ErrorEvent)
    assert event.message == message


def test_execution_complete_without_payload_fields():
    event = decode_record(sse("execution-complete", "{}"))
    assert event is not None
    assert event.type == "execution_complete"
