import asyncio
from typing import List

import httpx
import pytest
from conftest import RECORDED_RUN as RUN
from conftest import chunked

from observability.collector import TraceCollector
from observability.sink import TraceSink
from observability.trace import Execution, ExecutionStatus
from streaming.transport import StreamOpenError, StreamReadError, TransportConsumer


class RecordingSink(TraceSink):
    def __init__(self):
        self.emitted: List[Execution] = []

    def emit(self, execution: Execution) -> None:
        self.emitted.append(execution)


class BrokenSink(TraceSink):
    def emit(self, execution: Execution) -> None:
        raise RuntimeError("sink down")


def _http_consumer(handler) -> TransportConsumer:
    return TransportConsumer(client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))


@pytest.mark.asyncio
async def test_follow_chunks_builds_the_whole_tree(context):
    sink = RecordingSink()
    collector = TraceCollector(context, sink=sink)
    context.begin("Q")

    body = "".join(RUN)
    execution = await collector.follow_chunks(chunked(body[:40], body[40:300], body[300:]))

    assert execution.status == ExecutionStatus.COMPLETED
    assert execution.final_answer == "129"
    i2 = execution.iterations[0].nested_queries[0]
    assert i2.repl_result.stdout == "129"
    assert execution.total_llm_calls == 2
    assert execution.total_code_executions == 1
    assert collector.events_applied == len(RUN)
    assert sink.emitted == [execution]


@pytest.mark.asyncio
async def test_malformed_record_is_skipped(context):
    collector = TraceCollector(context, enabled=False)

    execution = await collector.follow_chunks(chunked(
        "event: execution-start\ndata: not-json\n\n",
        RUN[0],
        "event: llm-query-start\ndata: {}\n\n",
        RUN[-1],
    ))

    assert execution.id == "e1"
    assert execution.status == ExecutionStatus.COMPLETED
    assert collector.records_dropped == 2
    assert collector.events_applied == 2


@pytest.mark.asyncio
async def test_open_failure_marks_failed_and_raises(context):
    sink = RecordingSink()
    collector = TraceCollector(
        context,
        consumer=_http_consumer(lambda request: httpx.Response(503)),
        sink=sink,
    )
    context.begin("Q")

    with pytest.raises(StreamOpenError):
        await collector.follow("http://rlm.test/stream")

    assert context.execution.status == ExecutionStatus.FAILED
    assert "503" in context.execution.error
    assert len(sink.emitted) == 1


@pytest.mark.asyncio
async def test_read_failure_keeps_partial_trace(context):
    async def body():
        for record in RUN[:3]:
            yield record.encode()
        raise httpx.ReadError("connection reset")

    collector = TraceCollector(
        context,
        consumer=_http_consumer(lambda request: httpx.Response(200, content=body())),
        enabled=False,
    )
    context.begin("Q")

    with pytest.raises(StreamReadError):
        await collector.follow("http://rlm.test/stream")

    execution = context.execution
    assert execution.status == ExecutionStatus.FAILED
    assert execution.iterations[0].nested_queries[0].id == "i2"


@pytest.mark.asyncio
async def test_total_timeout_marks_timeout(context):
    never = asyncio.Event()

    async def stalled():
        yield RUN[0]
        yield RUN[1]
        await never.wait()

    collector = TraceCollector(context, total_timeout_seconds=0.05, enabled=False)
    context.begin("Q")

    execution = await collector.follow_chunks(stalled())

    assert execution.status == ExecutionStatus.TIMEOUT
    assert execution.error == "Total execution timeout exceeded (50ms)"
    assert [i.id for i in execution.iterations] == ["i1"]


@pytest.mark.asyncio
async def test_cancel_leaves_trace_as_observed(context):
    cancel = asyncio.Event()
    never = asyncio.Event()

    async def source():
        yield RUN[0]
        cancel.set()
        await never.wait()
        yield RUN[1]
        yield RUN[-1]

    collector = TraceCollector(context, enabled=False)
    context.begin("Q")

    execution = await collector.follow_chunks(source(), cancel=cancel)

    assert execution.status == ExecutionStatus.RUNNING
    assert execution.iterations == []
    assert context.is_running is True


@pytest.mark.asyncio
async def test_detached_consumer_stops_applying(context):
    started = asyncio.Event()
    proceed = asyncio.Event()

    async def source():
        yield RUN[0]
        started.set()
        await proceed.wait()
        yield RUN[1]

    collector = TraceCollector(context, enabled=False)
    context.begin("first")

    task = asyncio.create_task(collector.follow_chunks(source()))
    await started.wait()
    await asyncio.sleep(0)
    context.begin("second")
    proceed.set()
    await task

    assert context.execution.query == "second"
    assert context.execution.status == ExecutionStatus.PENDING
    assert context.execution.iterations == []


@pytest.mark.asyncio
async def test_broken_sink_never_raises(context):
    collector = TraceCollector(context, sink=BrokenSink())

    execution = await collector.follow_chunks(chunked(RUN[0], RUN[-1]))

    assert execution.status == ExecutionStatus.COMPLETED


@pytest.mark.asyncio
async def test_disabled_collector_emits_nothing(context):
    sink = RecordingSink()
    collector = TraceCollector(context, sink=sink, enabled=False)

    await collector.follow_chunks(chunked(*RUN))

    assert collector.enabled is False
    assert sink.emitted == []
