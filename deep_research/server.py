"""FastAPI application for the deep research orchestrator."""

import asyncio
from typing import AsyncIterator

import structlog
from fastapi import FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, ValidationError

from deep_research import __version__
from deep_research.config import ServiceConfig, get_config
from deep_research.demo import generate_demo_sse_stream, get_demo_research_result, is_demo_mode_allowed
from deep_research.events import HeartbeatEvent, RunFailedEvent, SSEEvent
from deep_research.exceptions import InvalidRequestError, ResearchPipelineError
from deep_research.models import ResearchRequest, ResearchRunResult
from deep_research.workflow import run_research, run_research_workflow

log = structlog.get_logger("deep_research.server")

MAX_QUEUE_SIZE = 100  # Bounded queue to prevent memory leaks

_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",  # Disable proxy buffering
    "Connection": "keep-alive",
}


# --- Response schemas ---


class ErrorResponse(BaseModel):
    """Structured error response."""

    error: str = Field(
        description="Error type (InvalidRequestError, ValidationError, InternalServerError)",
        examples=["InvalidRequestError"],
    )
    detail: str = Field(
        description="User-friendly error message explaining what went wrong",
        examples=["Invalid research request: topic must not be blank"],
    )


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service health status", examples=["ok"])
    version: str = Field(default="", description="Service version (only included in /health endpoint)")


# --- Exception handlers ---

_GENERIC_ERROR_MESSAGE = "An error occurred processing your request."


def _safe_message(error_type: str, detail: str) -> str:
    # Validation messages describe the caller's own input; everything else stays generic
    if error_type == InvalidRequestError.__name__:
        return detail
    return _GENERIC_ERROR_MESSAGE


async def _handle_pipeline_error(request: Request, exc: ResearchPipelineError) -> JSONResponse:
    error_type = type(exc).__name__
    log.warning("request.pipeline_error", error_type=error_type, detail=str(exc))
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(error=error_type, detail=_safe_message(error_type, str(exc))).model_dump(),
    )


async def _handle_validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    log.warning("request.validation_error", detail=str(exc))
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(error="ValidationError", detail=str(exc)).model_dump(),
    )


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    log.exception("request.unexpected_error", error=str(exc))
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error="InternalServerError", detail="An unexpected error occurred.").model_dump(),
    )


def _sanitize(event: SSEEvent) -> SSEEvent:
    if not isinstance(event, RunFailedEvent):
        return event
    error_type = str(event.data.get("error_type", ""))
    return RunFailedEvent(
        data={"reason": _safe_message(error_type, str(event.data.get("reason", ""))), "error_type": error_type}
    )


# --- SSE streaming ---

POLL_INTERVAL_SECONDS = 0.1
CANCEL_GRACE_SECONDS = 10.0
STREAM_TIMEOUT_REASON = "Research run exceeded the maximum stream duration"


async def _cancel_run(task: "asyncio.Task[None]") -> None:
    if task.done():
        return
    task.cancel()
    try:
        await asyncio.wait_for(task, timeout=CANCEL_GRACE_SECONDS)
    except asyncio.CancelledError:
        log.info("stream.run_cancelled")
    except TimeoutError:
        log.error("stream.run_cancellation_timeout", grace_s=CANCEL_GRACE_SECONDS)


async def stream_frames(request: Request, body: ResearchRequest, config: ServiceConfig) -> AsyncIterator[str]:
    """SSE frames for one run.

    The run is pumped into a bounded queue by a background task. Between
    events the loop sends heartbeat comments, enforces the stream deadline
    and stops when the client goes away; the run is cancelled on every exit.
    """
    events: asyncio.Queue[SSEEvent] = asyncio.Queue(maxsize=MAX_QUEUE_SIZE)
    finished = asyncio.Event()

    async def pump() -> None:
        try:
            async for event in run_research(body.topic, body.settings, config=config):
                await events.put(_sanitize(event))
        except Exception as e:
            log.error("stream.run_error", error=str(e), exc_info=True)
            await events.put(RunFailedEvent(data={"reason": _GENERIC_ERROR_MESSAGE, "error_type": type(e).__name__}))
        finally:
            finished.set()

    loop = asyncio.get_running_loop()
    started = loop.time()
    deadline = started + config.stream_max_duration_seconds
    next_heartbeat = started + config.stream_heartbeat_seconds
    task = asyncio.create_task(pump())

    try:
        while not (finished.is_set() and events.empty()):
            now = loop.time()
            if now > deadline:
                log.warning("stream.deadline_exceeded", max_s=config.stream_max_duration_seconds)
                yield RunFailedEvent(data={"reason": STREAM_TIMEOUT_REASON, "error_type": "TimeoutError"}).format()
                return
            if await request.is_disconnected():
                log.info("stream.client_disconnected", elapsed_s=round(now - started, 1))
                return
            if now >= next_heartbeat:
                next_heartbeat = now + config.stream_heartbeat_seconds
                yield HeartbeatEvent().format()

            try:
                event = await asyncio.wait_for(events.get(), timeout=POLL_INTERVAL_SECONDS)
            except TimeoutError:
                continue
            yield event.format()
    finally:
        await _cancel_run(task)


# --- App factory ---


def get_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Deep Research Orchestrator",
        description="""
Large-scale automated research with web-grounded generation.

## Pipeline

1. **Decomposition** - Splits the topic into N non-overlapping sub-queries
2. **Gathering** - Runs sub-queries in concurrent batches with pacing between batches
3. **Synthesis** - Writes the report in sequential parts, each verified with a completion marker

Failed sub-queries and incomplete parts degrade the report instead of failing the run.
        """,
        version=__version__,
    )

    application.add_exception_handler(ResearchPipelineError, _handle_pipeline_error)  # type: ignore[arg-type]
    application.add_exception_handler(ValidationError, _handle_validation_error)  # type: ignore[arg-type]
    application.add_exception_handler(Exception, _handle_unexpected_error)

    def _check_demo_allowed() -> None:
        if not is_demo_mode_allowed():
            raise HTTPException(
                status_code=403,
                detail="Demo mode not available in this environment",
            )

    @application.post(
        "/research",
        response_model=ResearchRunResult,
        status_code=status.HTTP_200_OK,
        summary="Execute Research Run",
        description="""
Runs the full pipeline and returns the final report, every sub-query result and
the deduplicated references. Long reports can take many minutes; prefer
`/research/stream` for interactive clients.
        """,
        tags=["Research"],
        responses={
            422: {"description": "Invalid topic or settings", "model": ErrorResponse},
            500: {"description": "Internal server error", "model": ErrorResponse},
        },
    )
    async def research(
        body: ResearchRequest,
        demo: bool = Query(default=False, description="Return a canned result for frontend testing"),
    ) -> ResearchRunResult:
        if demo:
            _check_demo_allowed()
            log.warning("demo_mode_active", topic=body.topic, endpoint="/research")
            return get_demo_research_result().model_copy(update={"topic": body.topic})

        return await run_research_workflow(body.topic, body.settings)

    @application.post(
        "/research/stream",
        response_class=StreamingResponse,
        responses={
            200: {
                "description": "Server-Sent Events stream of research progress",
                "content": {"text/event-stream": {"example": "event: batch_progress\ndata: {...}\n\n"}},
            },
            422: {"model": ErrorResponse},
        },
        summary="Execute research with streaming progress updates",
        description="""
**Event Types:**
- `phase_start` / `phase_complete` / `phase_warning`: decomposition, gathering, synthesis
- `sub_query_progress`: one sub-query reached completed or error
- `batch_progress`: completed sub-queries out of the total after each batch
- `part_generated`: a report part was accepted (with its completion flag)
- `run_progress`: overall percent complete (decomposition 5, gathering up to 75, synthesis up to 95, done 100)
- `run_complete`: final report and references
- `run_failed`: the request was rejected
- `: keepalive` comments keep proxies from buffering
        """,
        tags=["Research"],
    )
    async def research_stream(
        request: Request,
        body: ResearchRequest,
        demo: bool = Query(default=False, description="Stream canned events for frontend testing"),
    ) -> StreamingResponse:
        if demo:
            _check_demo_allowed()
            log.warning("demo_mode_active", topic=body.topic, endpoint="/research/stream")
            return StreamingResponse(
                generate_demo_sse_stream(body.topic),
                media_type="text/event-stream",
                headers=_STREAM_HEADERS,
            )

        return StreamingResponse(
            stream_frames(request, body, get_config()),
            media_type="text/event-stream",
            headers=_STREAM_HEADERS,
        )

    @application.get(
        "/health",
        response_model=HealthResponse,
        status_code=status.HTTP_200_OK,
        summary="Health Check",
        tags=["Health"],
    )
    async def health() -> HealthResponse:
        return HealthResponse(status="ok", version=__version__)

    @application.get(
        "/health/liveness",
        response_model=HealthResponse,
        status_code=status.HTTP_200_OK,
        summary="Liveness Probe",
        tags=["Health"],
    )
    async def liveness() -> HealthResponse:
        return HealthResponse(status="alive")

    @application.get(
        "/health/readiness",
        response_model=HealthResponse,
        status_code=status.HTTP_200_OK,
        summary="Readiness Probe",
        description="Ready when at least one generation credential is configured.",
        tags=["Health"],
    )
    async def readiness() -> HealthResponse:
        if not get_config().api_key_pool:
            raise HTTPException(status_code=503, detail="No generation credentials configured")
        return HealthResponse(status="ready")

    return application


app = get_app()
