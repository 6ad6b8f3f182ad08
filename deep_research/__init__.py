"""Deep Research Orchestrator - large-scale research with web-grounded generation"""

__version__ = "0.1.0"

from deep_research.config import ServiceConfig, get_config
from deep_research.exceptions import (
    DecompositionError,
    GenerationError,
    InvalidRequestError,
    ResearchPipelineError,
)
from deep_research.models import (
    QueryResult,
    QueryStatus,
    Reference,
    ReportPart,
    ResearchRequest,
    ResearchRunResult,
    ResearchSettings,
    RunState,
    RunTimings,
    SearchDepth,
    SubQuery,
    Tone,
)
from deep_research.workflow import ResearchOrchestrator, run_research, run_research_workflow

__all__ = [
    # Models
    "Tone",
    "SearchDepth",
    "QueryStatus",
    "ResearchSettings",
    "ResearchRequest",
    "SubQuery",
    "Reference",
    "QueryResult",
    "ReportPart",
    "RunState",
    "RunTimings",
    "ResearchRunResult",
    # Configuration
    "ServiceConfig",
    "get_config",
    # Exceptions
    "ResearchPipelineError",
    "InvalidRequestError",
    "DecompositionError",
    "GenerationError",
    # Workflow
    "ResearchOrchestrator",
    "run_research",
    "run_research_workflow",
]
