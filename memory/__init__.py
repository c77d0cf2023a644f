# Memory Package
from memory.trace_store import TraceRun, TraceStore

__all__ = ["TraceRun", "TraceStore"]
