"""Transport Consumer for live event streams.

Reads a possibly chunked response body, buffers partial records across read
boundaries and yields complete framed records (blank-line terminated).
Holds no knowledge of what the records mean; decoding is the parser's job.

Example:
    ```python
    consumer = TransportConsumer()
    cancel = asyncio.Event()
    async for record in consumer.records("http://localhost:3001/rlm/stream", cancel=cancel):
        event = decode_record(record)
    ```
"""

from __future__ import annotations

import asyncio
import codecs
import logging
from typing import Any, AsyncIterable, AsyncIterator, Dict, List, Optional, Union

import httpx


logger = logging.getLogger(__name__)

RECORD_TERMINATOR = "\n\n"


class TransportError(Exception):
    """Base exception for stream transport failures."""


class StreamOpenError(TransportError):
    """Raised when the stream could not be established."""


class StreamReadError(TransportError):
    """Raised when the stream fails after it was opened."""


class _Cancelled(Exception):
    """Internal signal: the cancel event fired while waiting for a chunk."""


class RecordBuffer:
    """Accumulates text chunks and splits off complete records."""

    def __init__(self) -> None:
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Trailing fragment not yet terminated."""
        return self._buffer

    def feed(self, chunk: str) -> List[str]:
        """Append a chunk; return every record it completed, in order."""
        self._buffer = (self._buffer + chunk).replace("\r\n", "\n")
        *records, self._buffer = self._buffer.split(RECORD_TERMINATOR)
        return [record for record in records if record.strip()]

    def close(self) -> str:
        """Discard and return whatever incomplete fragment is left."""
        leftover, self._buffer = self._buffer, ""
        return leftover


async def _next_chunk(iterator: AsyncIterator, cancel: Optional[asyncio.Event]):
    """Await the next chunk, giving up as soon as `cancel` is set."""
    if cancel is None:
        return await iterator.__anext__()

    read = asyncio.ensure_future(iterator.__anext__())
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        done, _ = await asyncio.wait({read, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        read.cancel()
        raise
    finally:
        waiter.cancel()

    if read in done:
        return read.result()
    # let the source unwind before the caller closes it
    read.cancel()
    await asyncio.wait({read})
    raise _Cancelled()


async def iter_records(
    chunks: AsyncIterable[Union[str, bytes]],
    cancel: Optional[asyncio.Event] = None,
) -> AsyncIterator[str]:
    """
    Turn a stream of text/byte chunks into complete records.

    Records already received before cancellation are still yielded; no read
    happens after `cancel` is set. A trailing fragment left at end of stream
    is incomplete and is dropped.
    """
    buffer = RecordBuffer()
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    iterator = chunks.__aiter__()

    while True:
        if cancel is not None and cancel.is_set():
            logger.debug("Stream cancelled, stopping reads")
            return
        try:
            chunk = await _next_chunk(iterator, cancel)
        except StopAsyncIteration:
            break
        except _Cancelled:
            logger.debug("Stream cancelled while waiting for data")
            return

        if isinstance(chunk, bytes):
            chunk = decoder.decode(chunk)
        for record in buffer.feed(chunk):
            yield record

    leftover = buffer.close() + decoder.decode(b"", final=True)
    if leftover.strip():
        logger.debug("Discarding incomplete trailing record (%d chars)", len(leftover))


class TransportConsumer:
    """Opens a live event stream over HTTP and yields framed records.

    Uses a shared httpx.AsyncClient when one is injected, otherwise a
    short-lived client per stream. The configured timeouts apply either way.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        connect_timeout_seconds: float = 10.0,
        read_timeout_seconds: Optional[float] = None,
    ) -> None:
        self._client = client
        self._timeout = httpx.Timeout(
            connect_timeout_seconds,
            connect=connect_timeout_seconds,
            read=read_timeout_seconds,
        )

    async def records(
        self,
        url: str,
        *,
        method: str = "GET",
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> AsyncIterator[str]:
        """Yield complete records from `url` until end of stream or cancellation.

        Raises:
            StreamOpenError: If the stream could not be opened (network error or non-2xx).
            StreamReadError: If the stream broke after it was opened.
        """
        owned = self._client is None
        client = self._client or httpx.AsyncClient(timeout=self._timeout)
        request_headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        request_headers.update(headers or {})
        opened = False

        try:
            async with client.stream(method, url, json=json, headers=request_headers, timeout=self._timeout) as response:
                if response.is_error:
                    raise StreamOpenError(f"Stream request to {url} failed with HTTP {response.status_code}")
                opened = True
                logger.debug("Stream opened: %s %s", method, url)
                async for record in iter_records(response.aiter_text(), cancel):
                    yield record
        except httpx.HTTPError as exc:
            if opened:
                raise StreamReadError(f"Stream from {url} failed mid-read: {exc}") from exc
            raise StreamOpenError(f"Could not open stream {url}: {exc}") from exc
        finally:
            if owned:
                await client.aclose()
