# Streaming Package
from streaming.parser import decode_payload, decode_record
from streaming.transport import (
    RecordBuffer,
    StreamOpenError,
    StreamReadError,
    TransportConsumer,
    TransportError,
    iter_records,
)

__all__ = [
    "decode_payload",
    "decode_record",
    "RecordBuffer",
    "StreamOpenError",
    "StreamReadError",
    "TransportConsumer",
    "TransportError",
    "iter_records",
]
