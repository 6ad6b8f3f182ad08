"""Typed progress events emitted by the research pipeline.

Every event can be rendered as a Server-Sent Events frame with ``format()``;
in-process observers consume the models directly.
"""

import json
from enum import Enum
from typing import Any, Awaitable, Callable

from pydantic import BaseModel, Field


class SSEEventType(str, Enum):
    """Event types for the research pipeline."""

    PHASE_START = "phase_start"
    PHASE_COMPLETE = "phase_complete"
    PHASE_WARNING = "phase_warning"
    SUB_QUERY_PROGRESS = "sub_query_progress"
    BATCH_PROGRESS = "batch_progress"
    PART_GENERATED = "part_generated"
    RUN_PROGRESS = "run_progress"
    RUN_COMPLETE = "run_complete"
    RUN_FAILED = "run_failed"
    HEARTBEAT = "heartbeat"


class SSEEvent(BaseModel):
    """Base event model."""

    event: SSEEventType = Field(description="Event type identifier")
    data: dict[str, Any] = Field(description="Event payload data")

    def format(self) -> str:
        """Format as SSE message: 'event: type\\ndata: json\\n\\n'."""
        return f"event: {self.event.value}\ndata: {json.dumps(self.data, default=str)}\n\n"


EventCallback = Callable[[SSEEvent], Awaitable[None]]


class PhaseStartEvent(SSEEvent):
    """Emitted when decomposition, gathering or synthesis begins."""

    event: SSEEventType = SSEEventType.PHASE_START
    data: dict[str, Any] = Field(
        description="Phase identifier",
        examples=[{"phase": "gathering"}],
    )


class PhaseCompleteEvent(SSEEvent):
    """Emitted when a phase finishes."""

    event: SSEEventType = SSEEventType.PHASE_COMPLETE
    data: dict[str, Any] = Field(
        description="Phase completion details with duration and summary",
        examples=[
            {
                "phase": "gathering",
                "duration_ms": 42000,
                "output_summary": {"completed": 18, "failed": 2, "references": 64},
            }
        ],
    )


class PhaseWarningEvent(SSEEvent):
    """Emitted when a phase degrades without failing the run."""

    event: SSEEventType = SSEEventType.PHASE_WARNING
    data: dict[str, Any] = Field(
        description="Warning details",
        examples=[
            {
                "phase": "decomposition",
                "warning": "Topic decomposition failed, using generated fallback sub-queries",
            }
        ],
    )


class SubQueryProgressEvent(SSEEvent):
    """Emitted when a single sub-query reaches a terminal status."""

    event: SSEEventType = SSEEventType.SUB_QUERY_PROGRESS
    data: dict[str, Any] = Field(
        description="Sub-query id and its status",
        examples=[{"id": 3, "status": "completed", "references": 4}],
    )


class BatchProgressEvent(SSEEvent):
    """Emitted after each batch has fully settled."""

    event: SSEEventType = SSEEventType.BATCH_PROGRESS
    data: dict[str, Any] = Field(
        description="Completed sub-queries so far out of the total",
        examples=[{"completed": 10, "total": 20, "batch": 2, "total_batches": 4, "percent": 50.0}],
    )


class PartGeneratedEvent(SSEEvent):
    """Emitted when a report part has been accepted."""

    event: SSEEventType = SSEEventType.PART_GENERATED
    data: dict[str, Any] = Field(
        description="Accepted part position and completion flag",
        examples=[{"index": 1, "total_parts": 3, "is_complete": True, "retry_count": 0}],
    )


class RunProgressEvent(SSEEvent):
    """Emitted whenever overall run progress advances."""

    event: SSEEventType = SSEEventType.RUN_PROGRESS
    data: dict[str, Any] = Field(
        description="Overall percent complete and the phase that advanced it",
        examples=[{"percent": 40.0, "phase": "gathering"}],
    )


class RunCompleteEvent(SSEEvent):
    """Emitted once with the final report and references."""

    event: SSEEventType = SSEEventType.RUN_COMPLETE
    data: dict[str, Any] = Field(
        description="Full ResearchRunResult serialized",
        examples=[{"topic": "renewable energy", "report": "# ...", "references": []}],
    )


class RunFailedEvent(SSEEvent):
    """Emitted when the run is rejected or aborted."""

    event: SSEEventType = SSEEventType.RUN_FAILED
    data: dict[str, Any] = Field(
        description="Failure reason",
        examples=[{"reason": "Invalid research request: topic must not be blank", "error_type": "InvalidRequestError"}],
    )


class HeartbeatEvent(SSEEvent):
    """Heartbeat event to prevent proxy buffering.

    Formatted as SSE comment (': keepalive\\n\\n') instead of
    named event to avoid requiring client-side handling.
    """

    event: SSEEventType = SSEEventType.HEARTBEAT
    data: dict[str, Any] = Field(default_factory=dict)

    def format(self) -> str:
        return ": keepalive\n\n"


async def discard_event(event: SSEEvent) -> None:
    """Default observer for components run without one."""
