"""Research orchestration: decompose, gather in batches, synthesize."""

import asyncio
import contextlib
from collections.abc import Mapping
from time import perf_counter
from typing import Any, AsyncIterator, Callable

from pydantic import ValidationError

from deep_research.config import ServiceConfig, get_config
from deep_research.credentials import CredentialSelector
from deep_research.events import (
    EventCallback,
    PhaseCompleteEvent,
    PhaseStartEvent,
    PhaseWarningEvent,
    RunCompleteEvent,
    RunFailedEvent,
    RunProgressEvent,
    SSEEvent,
    discard_event,
)
from deep_research.exceptions import InvalidRequestError
from deep_research.logging import get_logger, run_context, set_phase
from deep_research.models import (
    DECOMPOSED_PERCENT,
    GATHERED_PERCENT,
    SYNTHESIZED_PERCENT,
    ResearchRequest,
    ResearchRunResult,
    ResearchSettings,
    RunState,
    RunTimings,
)
from deep_research.research.client import GenerationClient
from deep_research.research.decomposer import TopicDecomposer
from deep_research.research.references import custom_url_references
from deep_research.research.scheduler import BatchScheduler
from deep_research.research.synthesizer import ReportSynthesizer, assemble_report

log = get_logger("deep_research.workflow")

ClientFactory = Callable[[CredentialSelector, ResearchSettings, ServiceConfig], GenerationClient]
SettingsInput = ResearchSettings | Mapping[str, Any] | None

MAX_QUEUE_SIZE = 100


def _describe_validation_error(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'request'}: {err['msg']}" for err in error.errors()
    )


def validate_request(topic: str, settings: SettingsInput = None) -> ResearchRequest:
    """Build a validated request or raise ``InvalidRequestError``."""
    try:
        if settings is None:
            resolved = ResearchSettings()
        elif isinstance(settings, ResearchSettings):
            resolved = settings
        else:
            resolved = ResearchSettings.model_validate(dict(settings))
        return ResearchRequest(topic=topic, settings=resolved)
    except ValidationError as e:
        raise InvalidRequestError(_describe_validation_error(e)) from e


def _ms_since(start: float) -> int:
    return int((perf_counter() - start) * 1000)


class ResearchOrchestrator:
    """Runs one research request end to end and owns its ``RunState``.

    Only input validation can stop a run. Decomposition falls back locally,
    failed sub-queries are recorded and skipped, incomplete report parts are
    kept and flagged.
    """

    def __init__(
        self,
        config: ServiceConfig | None = None,
        *,
        client_factory: ClientFactory = GenerationClient,
        event_callback: EventCallback | None = None,
    ) -> None:
        self._config = config or get_config()
        self._client_factory = client_factory
        self._callback = event_callback or discard_event
        self.state: RunState | None = None
        self.run_id: str | None = None

    async def _emit(self, event: SSEEvent) -> None:
        log.debug("workflow.event", event_type=event.event.value)
        await self._callback(event)

    async def _progress(self, percent: float, phase: str) -> None:
        if self.state is None:
            return
        self.state.set_progress(percent)
        await self._emit(RunProgressEvent(data={"percent": round(self.state.progress_percent, 1), "phase": phase}))

    async def _start_phase(self, phase: str) -> float:
        set_phase(phase)
        await self._emit(PhaseStartEvent(data={"phase": phase}))
        return perf_counter()

    async def run(self, request: ResearchRequest) -> ResearchRunResult:
        """Execute the pipeline for an already validated request.

        Raises:
            InvalidRequestError: When no API credential is available.
        """
        with run_context(request.topic) as run_id:
            self.run_id = run_id
            return await self._execute(request)

    async def _execute(self, request: ResearchRequest) -> ResearchRunResult:
        topic, settings, config = request.topic, request.settings, self._config
        selector = CredentialSelector(settings.credentials or config.api_key_pool)
        client = self._client_factory(selector, settings, config)

        run_start = perf_counter()
        log.info("workflow.started", subtopics=settings.subtopic_count, batch_size=settings.batch_size)

        # Phase 1: Decomposition (never fatal)
        phase_start = await self._start_phase("decomposition")
        decomposition = await TopicDecomposer(
            client, max_output_tokens=config.decomposition_max_output_tokens
        ).decompose(topic, settings.subtopic_count)
        decomposition_ms = _ms_since(phase_start)
        if decomposition.used_fallback:
            await self._emit(
                PhaseWarningEvent(
                    data={
                        "phase": "decomposition",
                        "warning": "Topic decomposition failed, using generated fallback sub-queries",
                        "reason": decomposition.reason or "",
                    }
                )
            )
        await self._emit(
            PhaseCompleteEvent(
                data={
                    "phase": "decomposition",
                    "duration_ms": decomposition_ms,
                    "output_summary": {
                        "sub_queries": len(decomposition.sub_queries),
                        "used_fallback": decomposition.used_fallback,
                    },
                }
            )
        )

        synthesizer = ReportSynthesizer(
            client,
            words_per_part=config.words_per_part,
            retry_policy=config.part_retry_policy(),
            pause_seconds=config.part_pause_seconds,
            part_timeout_seconds=config.part_timeout_seconds,
            corpus_char_budget=config.corpus_char_budget,
            max_output_tokens=config.part_max_output_tokens,
            event_callback=self._emit,
        )
        state = RunState.start(
            topic, settings, decomposition.sub_queries, synthesizer.total_parts(settings.target_word_count)
        )
        self.state = state
        await self._progress(DECOMPOSED_PERCENT, "decomposition")

        # Phase 2: Gathering (per-query failures are recorded, not raised)
        phase_start = await self._start_phase("gathering")
        scheduler = BatchScheduler(
            client,
            batch_size=settings.batch_size,
            pause_seconds=config.batch_pause_seconds,
            event_callback=self._emit,
        )
        total = len(state.sub_queries)
        async for batch in scheduler.run(state.sub_queries):
            for result in batch:
                state.record_result(result)
                state.add_references(result.references)
            await self._progress(
                DECOMPOSED_PERCENT + (GATHERED_PERCENT - DECOMPOSED_PERCENT) * scheduler.completed / total, "gathering"
            )

        if state.pending_count:
            raise RuntimeError(f"{state.pending_count} sub-queries left pending after scheduling")
        state.add_references(custom_url_references(settings.custom_urls))

        completed = len(state.completed_results)
        failed = total - completed
        gathering_ms = _ms_since(phase_start)
        log.info("workflow.gathering.completed", duration_ms=gathering_ms, succeeded=completed, failed=failed)
        if failed:
            await self._emit(
                PhaseWarningEvent(
                    data={
                        "phase": "gathering",
                        "warning": f"{failed} of {total} sub-queries failed, continuing with partial results",
                    }
                )
            )
        await self._emit(
            PhaseCompleteEvent(
                data={
                    "phase": "gathering",
                    "duration_ms": gathering_ms,
                    "output_summary": {
                        "completed": completed,
                        "failed": failed,
                        "references": len(state.references),
                    },
                }
            )
        )

        # Phase 3: Synthesis (parts strictly sequential)
        phase_start = await self._start_phase("synthesis")
        async for part in synthesizer.generate_parts(topic, state.completed_results, settings):
            state.add_part(part)
            await self._progress(
                GATHERED_PERCENT
                + (SYNTHESIZED_PERCENT - GATHERED_PERCENT) * len(state.report_parts) / state.total_parts,
                "synthesis",
            )
        state.report = assemble_report(state.report_parts, state.references)
        synthesis_ms = _ms_since(phase_start)
        incomplete = sum(1 for part in state.report_parts if not part.is_complete)
        await self._emit(
            PhaseCompleteEvent(
                data={
                    "phase": "synthesis",
                    "duration_ms": synthesis_ms,
                    "output_summary": {
                        "parts": len(state.report_parts),
                        "incomplete_parts": incomplete,
                        "report_chars": len(state.report),
                    },
                }
            )
        )

        await self._progress(100.0, "synthesis")
        total_ms = _ms_since(run_start)
        log.info("workflow.completed", total_ms=total_ms, parts=len(state.report_parts), incomplete_parts=incomplete)

        result = ResearchRunResult.from_state(
            state,
            used_fallback=decomposition.used_fallback,
            timings=RunTimings(
                decomposition_ms=decomposition_ms,
                gathering_ms=gathering_ms,
                synthesis_ms=synthesis_ms,
                total_ms=total_ms,
            ),
        )
        await self._emit(RunCompleteEvent(data=result.model_dump(mode="json")))
        return result


async def run_research_workflow(
    topic: str,
    settings: SettingsInput = None,
    *,
    config: ServiceConfig | None = None,
    client_factory: ClientFactory = GenerationClient,
    event_callback: EventCallback | None = None,
) -> ResearchRunResult:
    """Run the full pipeline and return the final result.

    Raises:
        InvalidRequestError: When the topic or settings are invalid or no
            credential is configured. Nothing else escapes a run.
    """
    request = validate_request(topic, settings)
    orchestrator = ResearchOrchestrator(config, client_factory=client_factory, event_callback=event_callback)
    return await orchestrator.run(request)


def _failure_event(error: Exception) -> RunFailedEvent:
    return RunFailedEvent(data={"reason": str(error), "error_type": type(error).__name__})


async def run_research(
    topic: str,
    settings: SettingsInput = None,
    *,
    config: ServiceConfig | None = None,
    client_factory: ClientFactory = GenerationClient,
) -> AsyncIterator[SSEEvent]:
    """Run the pipeline and stream its events.

    The last event is always ``run_complete`` or ``run_failed``. Invalid
    input produces a single ``run_failed`` event without touching the network.
    """
    try:
        request = validate_request(topic, settings)
    except InvalidRequestError as e:
        log.warning("workflow.rejected", reason=e.reason)
        yield _failure_event(e)
        return

    queue: asyncio.Queue[SSEEvent | None] = asyncio.Queue(maxsize=MAX_QUEUE_SIZE)
    orchestrator = ResearchOrchestrator(config, client_factory=client_factory, event_callback=queue.put)

    async def _run() -> None:
        try:
            await orchestrator.run(request)
        except InvalidRequestError as e:
            log.warning("workflow.rejected", reason=e.reason)
            await queue.put(_failure_event(e))
        except Exception as e:
            log.exception("workflow.failed", error=str(e))
            await queue.put(_failure_event(e))
        finally:
            await queue.put(None)

    task = asyncio.create_task(_run())
    try:
        while (event := await queue.get()) is not None:
            yield event
    finally:
        if not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
