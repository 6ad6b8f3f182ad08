"""Research pipeline components: client, decomposer, scheduler, synthesizer."""

from deep_research.research.agents import (
    AgentKind,
    build_model,
    clear_agent_cache,
    create_plan_agent,
    create_query_agent,
    create_report_agent,
    get_agent,
    get_plan_agent,
    get_query_agent,
    get_report_agent,
)
from deep_research.research.client import GenerationClient, GenerationResponse
from deep_research.research.decomposer import DecompositionResult, TopicDecomposer, fallback_sub_queries
from deep_research.research.references import deduplicate_references, extract_references
from deep_research.research.scheduler import BatchScheduler, partition
from deep_research.research.synthesizer import (
    ReportSynthesizer,
    SynthesisResult,
    assemble_report,
    plan_parts,
)

__all__ = [
    # Agents
    "AgentKind",
    "build_model",
    "create_query_agent",
    "create_plan_agent",
    "create_report_agent",
    "get_agent",
    "get_query_agent",
    "get_plan_agent",
    "get_report_agent",
    "clear_agent_cache",
    # Client
    "GenerationClient",
    "GenerationResponse",
    # References
    "extract_references",
    "deduplicate_references",
    # Decomposition
    "TopicDecomposer",
    "DecompositionResult",
    "fallback_sub_queries",
    # Scheduling
    "BatchScheduler",
    "partition",
    # Synthesis
    "ReportSynthesizer",
    "SynthesisResult",
    "assemble_report",
    "plan_parts",
]
