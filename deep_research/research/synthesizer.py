"""Multi-part report synthesis with completion-marker verification."""

import asyncio
import math
from typing import AsyncIterator, Sequence
from uuid import uuid4

from pydantic import BaseModel

from deep_research.events import EventCallback, PartGeneratedEvent, discard_event
from deep_research.logging import get_logger
from deep_research.models import QueryResult, QueryStatus, Reference, ReportPart, ResearchSettings
from deep_research.research.agents import AgentKind
from deep_research.research.client import GenerationClient, GenerationResponse
from deep_research.research.prompts import build_part_prompt
from deep_research.research.references import deduplicate_references, format_reference
from deep_research.retry import RetryPolicy, retry_until

log = get_logger("deep_research.research.synthesizer")

WORDS_PER_PART = 10_000
NO_MATERIAL_NOTICE = (
    "No web research material could be collected. Rely on well-established knowledge "
    "and state this limitation explicitly."
)
TRUNCATION_NOTICE = "\n\n[Research material truncated]"


def new_sentinel() -> str:
    """Completion marker unique to one synthesizer instance."""
    return f"<<<END-OF-PART-{uuid4().hex}>>>"


def plan_parts(target_word_count: int, words_per_part: int = WORDS_PER_PART) -> list[int]:
    """Word target per part; the last part takes the remainder."""
    if target_word_count < 1 or words_per_part < 1:
        raise ValueError("word counts must be positive")
    total_parts = math.ceil(target_word_count / words_per_part)
    return [words_per_part] * (total_parts - 1) + [target_word_count - words_per_part * (total_parts - 1)]


def build_corpus(results: Sequence[QueryResult], char_budget: int) -> str:
    """Concatenate completed results, each under its sub-query heading."""
    sections = [
        f"### {result.sub_query_id}. {result.query}\n\n{result.raw_text}"
        for result in results
        if result.status is QueryStatus.COMPLETED and result.raw_text
    ]
    if not sections:
        return NO_MATERIAL_NOTICE
    corpus = "\n\n".join(sections)
    if len(corpus) > char_budget:
        log.warning("synthesizer.corpus.truncated", chars=len(corpus), budget=char_budget)
        corpus = corpus[:char_budget] + TRUNCATION_NOTICE
    return corpus


def strip_sentinel(text: str, sentinel: str) -> str:
    return text.replace(sentinel, "").rstrip()


def assemble_report(parts: Sequence[ReportPart], references: Sequence[Reference]) -> str:
    """Parts in index order followed by the deduplicated source list."""
    body = "\n\n".join(part.content for part in sorted(parts, key=lambda p: p.index) if part.content)
    unique = deduplicate_references(references)
    if unique:
        sources = "\n".join(format_reference(ref, number) for number, ref in enumerate(unique, 1))
    else:
        sources = "No sources were collected."
    return f"{body}\n\n## Sources\n\n{sources}\n"


class SynthesisResult(BaseModel):
    """Accepted report parts and the assembled report."""

    parts: list[ReportPart]
    report: str


class ReportSynthesizer:
    """Folds research results into sequential, size-bounded report parts.

    Each part's prompt carries all previously accepted parts. A part counts
    as complete only when the response contains the completion marker; the
    same prompt is retried up to the policy's attempt limit, after which the
    last response is kept and flagged incomplete.
    """

    def __init__(
        self,
        client: GenerationClient,
        *,
        words_per_part: int = WORDS_PER_PART,
        retry_policy: RetryPolicy | None = None,
        pause_seconds: float = 2.0,
        part_timeout_seconds: float = 900.0,
        corpus_char_budget: int = 600_000,
        max_output_tokens: int | None = None,
        sentinel: str | None = None,
        event_callback: EventCallback | None = None,
    ) -> None:
        self._client = client
        self._words_per_part = words_per_part
        self._policy = retry_policy or RetryPolicy()
        self._pause_seconds = pause_seconds
        self._part_timeout = part_timeout_seconds
        self._corpus_char_budget = corpus_char_budget
        self._max_output_tokens = max_output_tokens
        self._emit = event_callback or discard_event
        self.sentinel = sentinel or new_sentinel()

    def total_parts(self, target_word_count: int) -> int:
        return len(plan_parts(target_word_count, self._words_per_part))

    async def _generate_part(self, prompt: str, index: int, total_parts: int) -> ReportPart:
        responses: list[GenerationResponse] = []

        async def _attempt(attempt: int) -> GenerationResponse:
            if attempt > 1:
                log.info("synthesizer.part.retry", index=index, attempt=attempt)
            response = await self._client.complete(
                prompt,
                label=f"report_part:{index}",
                kind=AgentKind.REPORT,
                max_tokens=self._max_output_tokens,
            )
            responses.append(response)
            return response

        complete = False
        try:
            async with asyncio.timeout(self._part_timeout):
                outcome = await retry_until(
                    _attempt,
                    lambda response: response.ok and self.sentinel in response.text,
                    self._policy,
                    label=f"report_part:{index}",
                )
            complete = outcome.succeeded
        except TimeoutError:
            log.warning("synthesizer.part.timeout", index=index, budget_s=self._part_timeout, attempts=len(responses))

        successful = [response for response in responses if response.ok]
        content = strip_sentinel(successful[-1].text, self.sentinel) if successful else ""
        if not complete:
            log.warning(
                "synthesizer.part.incomplete",
                index=index,
                attempts=len(responses),
                has_content=bool(content),
            )

        return ReportPart(
            index=index,
            total_parts=total_parts,
            content=content,
            is_complete=complete,
            retry_count=max(len(responses) - 1, 0),
        )

    async def generate_parts(
        self,
        topic: str,
        results: Sequence[QueryResult],
        settings: ResearchSettings,
    ) -> AsyncIterator[ReportPart]:
        """Yield parts 1..N strictly in order, each after it has been accepted."""
        targets = plan_parts(settings.target_word_count, self._words_per_part)
        total_parts = len(targets)
        corpus = build_corpus(results, self._corpus_char_budget)
        accepted: list[str] = []
        log.info("synthesizer.started", total_parts=total_parts, corpus_chars=len(corpus))

        for index, target_words in enumerate(targets, 1):
            prompt = build_part_prompt(
                topic=topic,
                corpus=corpus,
                previous_parts=accepted,
                settings=settings,
                index=index,
                total_parts=total_parts,
                target_words=target_words,
                sentinel=self.sentinel,
            )
            part = await self._generate_part(prompt, index, total_parts)
            if part.content:
                accepted.append(part.content)

            log.info("synthesizer.part.accepted", index=index, is_complete=part.is_complete, retries=part.retry_count)
            await self._emit(
                PartGeneratedEvent(
                    data={
                        "index": part.index,
                        "total_parts": total_parts,
                        "is_complete": part.is_complete,
                        "retry_count": part.retry_count,
                    }
                )
            )
            yield part

            if index < total_parts and self._pause_seconds > 0:
                await asyncio.sleep(self._pause_seconds)

    async def synthesize(
        self,
        topic: str,
        results: Sequence[QueryResult],
        references: Sequence[Reference],
        settings: ResearchSettings,
    ) -> SynthesisResult:
        parts = [part async for part in self.generate_parts(topic, results, settings)]
        return SynthesisResult(parts=parts, report=assemble_report(parts, references))
