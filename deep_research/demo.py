"""Demo mode fixtures for API testing without burning API keys."""

import os
from functools import lru_cache
from typing import AsyncIterator

from deep_research.events import (
    BatchProgressEvent,
    PartGeneratedEvent,
    PhaseCompleteEvent,
    PhaseStartEvent,
    RunCompleteEvent,
    RunProgressEvent,
    SubQueryProgressEvent,
)
from deep_research.models import (
    DECOMPOSED_PERCENT,
    GATHERED_PERCENT,
    SYNTHESIZED_PERCENT,
    QueryResult,
    Reference,
    ReportPart,
    ResearchRunResult,
    RunTimings,
    SubQuery,
)
from deep_research.research.synthesizer import assemble_report

DEMO_TOPIC = "renewable energy"

_DEMO_SUB_QUERIES = (
    "renewable energy grid integration and storage technologies",
    "renewable energy investment costs and levelized cost of electricity",
    "social acceptance and employment effects of renewable energy projects",
    "renewable energy subsidies, auctions and regulatory frameworks",
)

_DEMO_REFERENCES = (
    Reference(
        url="https://www.iea.org/reports/renewables-2024",
        title="Renewables 2024",
        domain="iea.org",
        author="International Energy Agency",
        publish_date="2024-10",
        description="Cited source",
    ),
    Reference(
        url="https://www.irena.org/Publications/2024/Sep/Renewable-Power-Generation-Costs-in-2023",
        title="Renewable Power Generation Costs in 2023",
        domain="irena.org",
        author="IRENA",
        publish_date="2024-09",
        description="Cited source",
    ),
    Reference(
        url="https://ember-energy.org/latest-insights/global-electricity-review-2024/",
        title="Global Electricity Review 2024",
        domain="ember-energy.org",
        author="Ember",
        publish_date="2024-05",
        description="Cited source",
    ),
)


def is_demo_mode_allowed() -> bool:
    """Check if demo mode is allowed in current environment.

    Demo mode is only allowed in development and staging environments
    for security and resource reasons.
    """
    environment = os.getenv("ENVIRONMENT", "development")
    return environment in ("development", "staging")


@lru_cache(maxsize=1)
def get_demo_research_result() -> ResearchRunResult:
    """Canned renewable-energy run.

    Cached to avoid repeated Pydantic object construction. Callers override
    the topic with ``model_copy``.
    """
    sub_queries = [SubQuery(id=i, text=text) for i, text in enumerate(_DEMO_SUB_QUERIES, 1)]
    results = [
        QueryResult.pending(sq, "gemini-2.5-flash").resolve_completed(
            f"Findings for '{sq.text}'. [Source: {ref.title} | {ref.author} | {ref.publish_date} | {ref.url}]",
            [ref],
            "gemini-2.5-flash",
        )
        for sq, ref in zip(sub_queries, (*_DEMO_REFERENCES, _DEMO_REFERENCES[0]))
    ]
    parts = [
        ReportPart(
            index=1,
            total_parts=1,
            content=(
                "# Renewable Energy: State of the Transition\n\n"
                "## Executive Summary\n\n"
                "Renewable capacity additions reached a record in 2023, led by solar PV. "
                "Costs for utility-scale solar and onshore wind continued to fall, while grid "
                "integration and storage became the main bottlenecks.\n\n"
                "## Conclusions and Recommendations\n\n"
                "Policy should shift from capacity subsidies toward grid expansion, storage "
                "procurement and faster permitting."
            ),
            is_complete=True,
            retry_count=0,
        )
    ]
    references = list(_DEMO_REFERENCES)
    return ResearchRunResult(
        topic=DEMO_TOPIC,
        sub_queries=sub_queries,
        query_results=results,
        references=references,
        report_parts=parts,
        report=assemble_report(parts, references),
        timings=RunTimings(decomposition_ms=100, gathering_ms=200, synthesis_ms=150, total_ms=450),
    )


async def generate_demo_sse_stream(topic: str = DEMO_TOPIC) -> AsyncIterator[str]:
    """Generate the demo run as SSE frames, instantly."""
    result = get_demo_research_result().model_copy(update={"topic": topic})
    total = len(result.sub_queries)

    yield PhaseStartEvent(data={"phase": "decomposition"}).format()
    yield PhaseCompleteEvent(
        data={
            "phase": "decomposition",
            "duration_ms": result.timings.decomposition_ms,
            "output_summary": {"sub_queries": total, "used_fallback": False},
        }
    ).format()
    yield RunProgressEvent(data={"percent": DECOMPOSED_PERCENT, "phase": "decomposition"}).format()

    yield PhaseStartEvent(data={"phase": "gathering"}).format()
    for batch_number, start in enumerate(range(0, total, 2), 1):
        batch = result.query_results[start : start + 2]
        for query_result in batch:
            yield SubQueryProgressEvent(
                data={
                    "id": query_result.sub_query_id,
                    "status": query_result.status.value,
                    "references": len(query_result.references),
                    "error": "",
                }
            ).format()
        completed = start + len(batch)
        yield BatchProgressEvent(
            data={
                "completed": completed,
                "total": total,
                "batch": batch_number,
                "total_batches": (total + 1) // 2,
                "percent": round(100.0 * completed / total, 1),
            }
        ).format()
        gathered = DECOMPOSED_PERCENT + (GATHERED_PERCENT - DECOMPOSED_PERCENT) * completed / total
        yield RunProgressEvent(data={"percent": round(gathered, 1), "phase": "gathering"}).format()
    yield PhaseCompleteEvent(
        data={
            "phase": "gathering",
            "duration_ms": result.timings.gathering_ms,
            "output_summary": {"completed": total, "failed": 0, "references": len(result.references)},
        }
    ).format()

    yield PhaseStartEvent(data={"phase": "synthesis"}).format()
    for part in result.report_parts:
        yield PartGeneratedEvent(
            data={
                "index": part.index,
                "total_parts": part.total_parts,
                "is_complete": part.is_complete,
                "retry_count": part.retry_count,
            }
        ).format()
        synthesized = GATHERED_PERCENT + (SYNTHESIZED_PERCENT - GATHERED_PERCENT) * part.index / part.total_parts
        yield RunProgressEvent(data={"percent": round(synthesized, 1), "phase": "synthesis"}).format()
    yield PhaseCompleteEvent(
        data={
            "phase": "synthesis",
            "duration_ms": result.timings.synthesis_ms,
            "output_summary": {"parts": len(result.report_parts), "incomplete_parts": 0},
        }
    ).format()
    yield RunProgressEvent(data={"percent": 100.0, "phase": "synthesis"}).format()

    yield RunCompleteEvent(data=result.model_dump(mode="json")).format()
