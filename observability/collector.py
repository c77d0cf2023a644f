"""
Trace Collector

Wires one live stream into one TraceContext:

    TransportConsumer -> parser -> TraceContext.dispatch -> sink

DESIGN RULES:
- Only transport failures surface to the caller, exactly once
- Decode failures and reducer no-ops are absorbed
- Cancellation is not an error: the trace stays as last observed
- The partial trace is always left intact for inspection
"""

import asyncio
import logging
from contextlib import aclosing
from typing import Any, AsyncIterable, Dict, Optional, Union

from observability.context import TraceContext
from observability.sink import ConsoleTraceSink, TraceSink
from observability.trace import Execution
from streaming.parser import decode_record
from streaming.transport import TransportConsumer, TransportError, iter_records


logger = logging.getLogger(__name__)


class TraceCollector:
    """
    Coordinates the consumer side of one trace.

    Responsibilities:
    - Pull records from the stream and decode them
    - Apply events in arrival order, bound to the context's generation
    - Enforce the optional total timeout
    - Forward the final snapshot to the configured sink (never throws)
    """

    def __init__(
        self,
        context: TraceContext,
        consumer: Optional[TransportConsumer] = None,
        sink: Optional[TraceSink] = None,
        total_timeout_seconds: Optional[float] = None,
        enabled: bool = True,
    ):
        """
        Initialize trace collector.

        Args:
            context: The TraceContext this collector feeds.
            consumer: Transport for HTTP streams. Defaults to a fresh TransportConsumer.
            sink: Destination for final snapshots. Defaults to ConsoleTraceSink.
            total_timeout_seconds: Overall budget for one stream; None means unbounded.
            enabled: Whether snapshots are emitted to the sink.
        """
        self._context = context
        self._consumer = consumer or TransportConsumer()
        self._sink = sink if sink is not None else ConsoleTraceSink()
        self._total_timeout_seconds = total_timeout_seconds
        self._enabled = enabled
        self._events_applied = 0
        self._records_dropped = 0

    @property
    def enabled(self) -> bool:
        """Check if snapshot emission is enabled."""
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = value

    @property
    def events_applied(self) -> int:
        return self._events_applied

    @property
    def records_dropped(self) -> int:
        return self._records_dropped

    async def follow(
        self,
        url: str,
        *,
        method: str = "GET",
        payload: Optional[Dict[str, Any]] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Optional[Execution]:
        """
        Consume a live HTTP event stream into the context.

        Returns:
            The trace as left by the stream.

        Raises:
            TransportError: If the stream could not be opened or broke mid-read.
                The execution is marked failed first.
        """
        records = self._consumer.records(url, method=method, json=payload, cancel=cancel)
        return await self._run(records)

    async def follow_chunks(
        self,
        chunks: AsyncIterable[Union[str, bytes]],
        cancel: Optional[asyncio.Event] = None,
    ) -> Optional[Execution]:
        """Consume an already-open chunked body (any async iterable of text or bytes)."""
        return await self._run(iter_records(chunks, cancel))

    async def _run(self, records: AsyncIterable[str]) -> Optional[Execution]:
        generation = self._context.attach()

        try:
            if self._total_timeout_seconds is None:
                await self._pump(records, generation)
            else:
                await asyncio.wait_for(self._pump(records, generation), self._total_timeout_seconds)

        except asyncio.TimeoutError:
            timeout_ms = int(self._total_timeout_seconds * 1000)
            logger.warning("Stream exceeded total timeout of %dms", timeout_ms)
            self._context.mark_timeout(
                f"Total execution timeout exceeded ({timeout_ms}ms)",
                generation=generation,
            )

        except TransportError as e:
            logger.error(f"Transport failure: {e}")
            self._context.mark_failed(str(e), generation=generation)
            self._emit(generation)
            raise

        self._emit(generation)
        return self._context.execution

    async def _pump(self, records: AsyncIterable[str], generation: int) -> None:
        async with aclosing(records) as stream:
            await self._apply_records(stream, generation)

    async def _apply_records(self, records: AsyncIterable[str], generation: int) -> None:
        async for record in records:
            if not self._context.is_current(generation):
                logger.info("Consumer detached (generation %d), stopping", generation)
                break

            event = decode_record(record)
            if event is None:
                self._records_dropped += 1
                continue

            self._context.dispatch(event, generation=generation)
            self._events_applied += 1

    def _emit(self, generation: int) -> None:
        """
        Forward the final snapshot to the sink.

        Never throws - failures are logged and ignored.
        """
        execution = self._context.execution
        if not self._enabled or self._sink is None or execution is None:
            return
        if not self._context.is_current(generation):
            return

        try:
            self._sink.emit(execution)
        except Exception as e:
            logger.warning(f"[TRACE COLLECTOR ERROR] Failed to emit trace: {e}")
