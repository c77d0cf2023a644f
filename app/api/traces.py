"""
Traces API Route

Thin delegation layer over the trace store and collectors.
Contains NO reducer logic: every change goes through TraceContext.
"""

import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from app.dependencies import CollectorFactory, get_collector_factory, get_trace_store
from memory.trace_store import TraceRun, TraceStore
from observability.reducer import find_iteration
from observability.stats import ExecutionStats, compute_stats, flatten_iterations
from observability.status import iteration_status
from schemas.request import CreateTraceRequest, PushEventRequest
from schemas.response import (
    EventAck,
    IterationDetail,
    IterationSummary,
    RunListResponse,
    RunSummary,
    TraceSnapshot,
)
from streaming.parser import decode_payload
from streaming.transport import TransportError


logger = logging.getLogger(__name__)

router = APIRouter()


def _get_run(run_id: str, store: TraceStore) -> TraceRun:
    run = store.get(run_id)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown run: {run_id}")
    return run


async def _consume(run: TraceRun, factory: CollectorFactory, request: CreateTraceRequest) -> None:
    """Background task: follow the stream until it ends, fails or is cancelled."""
    collector = factory(run.context)
    generation = run.context.attach()
    try:
        await collector.follow(
            request.stream_url,
            method=request.method,
            payload=request.payload,
            cancel=run.cancel_event,
        )
        logger.info(
            "Run %s: stream finished (%d events applied, %d records dropped)",
            run.run_id, collector.events_applied, collector.records_dropped,
        )
    except TransportError as e:
        run.last_error = str(e)
    except Exception as e:
        logger.exception("Run %s: consumer crashed", run.run_id)
        run.last_error = str(e)
        run.context.mark_failed(str(e), generation=generation)


def _begin(run: TraceRun, request: CreateTraceRequest, factory: CollectorFactory) -> None:
    run.context.begin(
        request.query,
        request.context,
        max_iterations=request.max_iterations,
        max_depth=request.max_depth,
        environment_type=request.environment_type,
        language=request.language,
    )
    if request.stream_url:
        run.task = asyncio.create_task(_consume(run, factory, request))


@router.post("/traces", response_model=TraceSnapshot, status_code=status.HTTP_201_CREATED)
async def create_trace(
    request: CreateTraceRequest,
    store: TraceStore = Depends(get_trace_store),
    factory: CollectorFactory = Depends(get_collector_factory),
) -> TraceSnapshot:
    """
    Start tracing a new execution.

    With `streamUrl`, a background consumer follows the stream; otherwise
    the producer pushes events to /traces/{run_id}/events.
    """
    run = store.create()
    _begin(run, request, factory)
    return TraceSnapshot.from_run(run)


@router.get("/traces", response_model=RunListResponse)
async def list_traces(store: TraceStore = Depends(get_trace_store)) -> RunListResponse:
    summaries = []
    for run in store.runs():
        execution = run.context.execution
        summaries.append(RunSummary(
            run_id=run.run_id,
            execution_id=execution.id if execution else None,
            status=execution.status.value if execution else None,
            is_running=run.context.is_running,
        ))
    return RunListResponse(runs=summaries)


@router.get("/traces/{run_id}", response_model=TraceSnapshot)
async def get_trace(run_id: str, store: TraceStore = Depends(get_trace_store)) -> TraceSnapshot:
    return TraceSnapshot.from_run(_get_run(run_id, store))


@router.get("/traces/{run_id}/stats", response_model=ExecutionStats)
async def get_trace_stats(run_id: str, store: TraceStore = Depends(get_trace_store)) -> ExecutionStats:
    return compute_stats(_get_run(run_id, store).context.execution)


@router.get("/traces/{run_id}/iterations", response_model=List[IterationSummary])
async def list_iterations(run_id: str, store: TraceStore = Depends(get_trace_store)) -> List[IterationSummary]:
    """All iterations at any depth, depth-first."""
    execution = _get_run(run_id, store).context.execution
    if execution is None:
        return []
    return [IterationSummary.from_iteration(i) for i in flatten_iterations(execution.iterations)]


@router.get("/traces/{run_id}/iterations/{iteration_id}", response_model=IterationDetail)
async def get_iteration(
    run_id: str,
    iteration_id: str,
    store: TraceStore = Depends(get_trace_store),
) -> IterationDetail:
    execution = _get_run(run_id, store).context.execution
    iteration = find_iteration(execution.iterations, iteration_id) if execution else None
    if iteration is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown iteration: {iteration_id}")
    return IterationDetail(status=iteration_status(iteration), iteration=iteration)


@router.post("/traces/{run_id}/events", response_model=EventAck)
async def push_event(
    run_id: str,
    request: PushEventRequest,
    store: TraceStore = Depends(get_trace_store),
) -> EventAck:
    """
    Apply one event pushed by the producer.

    Rejected while a stream consumer feeds the same run (single writer).
    """
    run = _get_run(run_id, store)
    if run.is_consuming:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Run is fed by a stream consumer")

    event = decode_payload(request.type, request.payload())
    if event is None:
        raise HTTPException(
            status_code=422,
            detail=f"Not a recognized event: {request.type}",
        )

    applied = run.context.dispatch(event)
    return EventAck(applied=applied, version=run.context.version)


@router.post("/traces/{run_id}/cancel", response_model=TraceSnapshot)
async def cancel_trace(run_id: str, store: TraceStore = Depends(get_trace_store)) -> TraceSnapshot:
    """Stop reading the stream. The trace stays as last observed."""
    run = _get_run(run_id, store)
    run.cancel()
    return TraceSnapshot.from_run(run)


@router.post("/traces/{run_id}/reset", response_model=TraceSnapshot)
async def reset_trace(
    run_id: str,
    request: Optional[CreateTraceRequest] = Body(default=None),
    store: TraceStore = Depends(get_trace_store),
    factory: CollectorFactory = Depends(get_collector_factory),
) -> TraceSnapshot:
    """
    Detach the current consumer and begin a fresh execution.

    Without a body, the previous query and context are reused and no stream
    is opened.
    """
    run = _get_run(run_id, store)
    previous = run.context.execution
    run.detach()
    run.context.reset()

    if request is None:
        request = CreateTraceRequest(
            query=previous.query if previous else "",
            context=previous.context if previous else "",
        )
    _begin(run, request, factory)
    return TraceSnapshot.from_run(run)


@router.delete("/traces/{run_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_trace(run_id: str, store: TraceStore = Depends(get_trace_store)) -> None:
    if store.remove(run_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Unknown run: {run_id}")
