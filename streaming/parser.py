"""
Event Envelope Parser

Decodes one framed record into a typed event:

    event: <type>          (optional, defaults to "message")
    data: <json-object>

DESIGN RULES:
- Pure mapping, no side effects besides debug logging
- Never raise: anything undecodable becomes None and the stream goes on
- Accepts both the nested producer shape ({"iteration": {...}}) and the
  flat shape ({"iterationId": ...})
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import ValidationError

from schemas.events import EVENT_TYPES, EventType, TraceEvent, validate_event


logger = logging.getLogger(__name__)

DEFAULT_EVENT_TYPE = "message"

_ROUTING_KEYS = ("type", "iterationId", "iteration_id", "iteration")


@dataclass(frozen=True)
class Record:
    """A framed record split into designator and raw data."""
    event_type: str
    data: Optional[str]


def split_record(text: str) -> Record:
    """
    Split a record into its designator and data lines.

    Multiple `data:` lines are joined with newlines; comment lines (leading
    ':') and other fields (id, retry) are ignored.
    """
    event_type = DEFAULT_EVENT_TYPE
    data_lines = []

    for line in text.replace("\r\n", "\n").split("\n"):
        if not line or line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if name == "event":
            event_type = value.strip() or DEFAULT_EVENT_TYPE
        elif name == "data":
            data_lines.append(value)

    return Record(event_type=event_type, data="\n".join(data_lines) if data_lines else None)


def resolve_event_type(designator: str, payload: Dict[str, Any]) -> Optional[str]:
    """
    Map a designator (plus payload) to a known event type name.

    The default designator defers to the payload's own `type` field.
    """
    name = designator.strip().replace("-", "_")
    if name == DEFAULT_EVENT_TYPE:
        name = str(payload.get("type", "")).strip().replace("-", "_")
    return name if name in EVENT_TYPES else None


def _iteration_id(payload: Dict[str, Any]) -> Optional[str]:
    for key in ("iterationId", "iteration_id"):
        if payload.get(key) is not None:
            return payload[key]
    iteration = payload.get("iteration")
    if isinstance(iteration, dict):
        return iteration.get("id")
    return None


def _section(payload: Dict[str, Any], key: str) -> Dict[str, Any]:
    """Nested object under `key`, or the flat payload minus routing keys."""
    nested = payload.get(key)
    if isinstance(nested, dict):
        return nested
    return {k: v for k, v in payload.items() if k not in _ROUTING_KEYS}


def _error_message(payload: Dict[str, Any]) -> Optional[str]:
    error = payload.get("error")
    if isinstance(error, dict):
        return error.get("message")
    if isinstance(error, str):
        return error
    return payload.get("message")


def normalize_payload(event_type: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    """Reshape a wire payload into the dict form of its event variant."""
    kind = EventType(event_type)

    if kind in (EventType.EXECUTION_START, EventType.EXECUTION_COMPLETE):
        return {"type": kind.value, "execution": _section(payload, "execution")}

    if kind in (EventType.ITERATION_START, EventType.ITERATION_COMPLETE):
        return {"type": kind.value, "iteration": _section(payload, "iteration")}

    if kind in (EventType.CODE_EXTRACTED, EventType.REPL_EXECUTING):
        return {"type": kind.value, "iterationId": _iteration_id(payload), "code": payload.get("code", "")}

    if kind == EventType.REPL_RESULT:
        return {"type": kind.value, "iterationId": _iteration_id(payload), "result": _section(payload, "result")}

    if kind == EventType.FINAL_DETECTED:
        response = payload.get("response")
        if not isinstance(response, dict):
            response = {
                "type": payload.get("responseType", "final"),
                "answer": payload.get("answer"),
            }
        return {"type": kind.value, "iterationId": _iteration_id(payload), "response": response}

    return {"type": kind.value, "message": _error_message(payload) or "Unknown error"}


def decode_payload(designator: str, payload: Any) -> Optional[TraceEvent]:
    """
    Decode an already-parsed JSON payload.

    Returns:
        The typed event, or None if the payload is not a recognized event.
    """
    if not isinstance(payload, dict):
        logger.debug("Dropping record: payload is not a JSON object")
        return None

    event_type = resolve_event_type(designator, payload)
    if event_type is None:
        logger.debug("Ignoring unrecognized event type %r", designator)
        return None

    try:
        return validate_event(normalize_payload(event_type, payload))
    except ValidationError as e:
        logger.debug("Dropping %s record with unexpected fields: %s", event_type, e)
        return None


def decode_record(text: str) -> Optional[TraceEvent]:
    """Decode one framed record. Records without data or with bad JSON yield None."""
    record = split_record(text)
    if record.data is None:
        logger.debug("Dropping record without data line")
        return None

    try:
        payload = json.loads(record.data)
    except json.JSONDecodeError:
        logger.debug("Dropping %s record with malformed JSON", record.event_type)
        return None

    return decode_payload(record.event_type, payload)
