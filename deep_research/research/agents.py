"""PydanticAI agents for the research pipeline.

Agents are created without a bound model: the generation client supplies a
model per call so every request can use the next credential of the pool.
"""

from enum import Enum
from functools import lru_cache
from typing import Any, Callable

from pydantic_ai import Agent, WebSearchTool
from pydantic_ai.models import Model
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.providers.google import GoogleProvider

from deep_research.research.prompts import CITATION_FORMAT

ModelFactory = Callable[[str, str], Model]


class AgentKind(str, Enum):
    """Which pipeline step a generation call serves."""

    QUERY = "query"
    PLAN = "plan"
    REPORT = "report"


def build_model(model_name: str, api_key: str) -> Model:
    """Gemini model bound to a single credential."""
    return GoogleModel(model_name, provider=GoogleProvider(api_key=api_key))


def create_query_agent(model: Any = None, *, grounding: bool = True) -> Agent[None, str]:
    """Uncached factory - use with FunctionModel for tests."""
    return Agent(
        model,
        instructions=f"""You are a professional researcher. Investigate the request
        thoroughly and report what you find.
        Your answer should:
        - Start with key definitions
        - Present the main analysis in logical subsections
        - Include statistics, figures and concrete examples
        - End with conclusions
        Cite sources inline as {CITATION_FORMAT}.
        Do not invent sources.""",
        builtin_tools=[WebSearchTool()] if grounding else [],
        output_type=str,
        instrument=True,
        name="query_agent",
    )


@lru_cache(maxsize=2)
def get_query_agent(grounding: bool = True) -> Agent[None, str]:
    """Cached getter for production."""
    return create_query_agent(grounding=grounding)


def create_plan_agent(model: Any = None) -> Agent[None, str]:
    """Uncached factory - use with FunctionModel for tests."""
    return Agent(
        model,
        instructions="""You are a research planning expert. You break broad topics
        into precise, non-overlapping web research sub-queries.
        Reply with plain text only, one sub-query per line.""",
        output_type=str,
        instrument=True,
        name="plan_agent",
    )


@lru_cache(maxsize=1)
def get_plan_agent() -> Agent[None, str]:
    """Cached getter for production."""
    return create_plan_agent()


def create_report_agent(model: Any = None) -> Agent[None, str]:
    """Uncached factory - use with FunctionModel for tests."""
    return Agent(
        model,
        instructions="""You are a research writer producing one part of a long
        report at a time.
        Your writing should:
        - Stay grounded in the supplied research material
        - Continue seamlessly from the parts already written
        - Never repeat earlier sections
        - Follow the requested tone, focus and length
        Do not invent information.""",
        output_type=str,
        instrument=True,
        name="report_agent",
    )


@lru_cache(maxsize=1)
def get_report_agent() -> Agent[None, str]:
    """Cached getter for production."""
    return create_report_agent()


def get_agent(kind: AgentKind, *, grounding: bool = False) -> Agent[None, str]:
    if kind is AgentKind.QUERY:
        return get_query_agent(grounding)
    if kind is AgentKind.PLAN:
        return get_plan_agent()
    return get_report_agent()


def clear_agent_cache() -> None:
    """Clear all agent caches."""
    get_query_agent.cache_clear()
    get_plan_agent.cache_clear()
    get_report_agent.cache_clear()
