from typing import Any, Dict, Optional
from pydantic import ConfigDict, Field

from observability.trace import TraceModel


class CreateTraceRequest(TraceModel):
    """
    API request model for POST /traces.

    Without `streamUrl` the run only receives events pushed to /events.
    """
    query: str = Field(..., description="Query the traced execution answers")
    context: str = Field(default="", description="Optional context handed to the execution")
    stream_url: Optional[str] = Field(default=None, description="Live event stream to consume")
    method: str = Field(default="GET", description="HTTP method used to open the stream")
    payload: Optional[Dict[str, Any]] = Field(default=None, description="JSON body sent when opening the stream")
    max_iterations: Optional[int] = Field(default=None, ge=1, description="Iteration ceiling")
    max_depth: Optional[int] = Field(default=None, ge=0, description="Recursion depth ceiling")
    environment_type: str = Field(default="local", description="Execution environment tag")
    language: str = Field(default="python", description="REPL language tag")


class PushEventRequest(TraceModel):
    """
    A single event pushed by the producer, in wire form.

    `type` selects the event; every other key is the event payload.
    """
    model_config = ConfigDict(extra="allow")

    type: str = Field(..., description="Event type, e.g. iteration_start")

    def payload(self) -> Dict[str, Any]:
        """The full wire payload, including `type`."""
        return {"type": self.type, **(self.model_extra or {})}
