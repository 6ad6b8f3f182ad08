"""Topic decomposition into a fixed number of sub-queries."""

import re

from pydantic import BaseModel, Field

from deep_research.exceptions import DecompositionError
from deep_research.logging import get_logger
from deep_research.models import SubQuery
from deep_research.research.agents import AgentKind
from deep_research.research.client import GenerationClient
from deep_research.research.prompts import build_decomposition_prompt

log = get_logger("deep_research.research.decomposer")

MAX_SUB_QUERIES = 1000

# "1.", "2)", "-", "*", "•" left over despite the no-numbering instruction
_LIST_MARKER = re.compile(r"^\s*(?:\d+[.)]|[-*•])\s+")


class DecompositionResult(BaseModel):
    """Sub-queries for a topic and whether the local fallback produced them."""

    sub_queries: list[SubQuery]
    used_fallback: bool = False
    reason: str | None = Field(default=None, description="Why the fallback was used")


def fallback_query(topic: str, index: int) -> str:
    return f"{topic} — aspect {index}"


def fallback_sub_queries(topic: str, count: int) -> list[str]:
    """Deterministic sub-queries used when the model cannot decompose the topic."""
    return [fallback_query(topic, i) for i in range(1, count + 1)]


def parse_sub_queries(text: str) -> list[str]:
    """One sub-query per non-empty line, list markers and duplicates removed."""
    queries: list[str] = []
    seen: set[str] = set()
    for line in text.splitlines():
        query = _LIST_MARKER.sub("", line).strip().strip('"').strip()
        if not query:
            continue
        key = query.casefold()
        if key in seen:
            continue
        seen.add(key)
        queries.append(query)
    return queries


def fit_to_count(topic: str, queries: list[str], count: int) -> list[str]:
    """Truncate to ``count`` or pad with fallback queries for the missing positions."""
    fitted = queries[:count]
    for index in range(len(fitted) + 1, count + 1):
        fitted.append(fallback_query(topic, index))
    return fitted


class TopicDecomposer:
    """Expands a topic into N sub-queries with a single generation call."""

    def __init__(self, client: GenerationClient, *, max_output_tokens: int = 8192) -> None:
        self._client = client
        self._max_output_tokens = max_output_tokens

    async def _generate(self, topic: str, count: int) -> list[str]:
        response = await self._client.complete(
            build_decomposition_prompt(topic, count),
            label="decomposition",
            kind=AgentKind.PLAN,
            max_tokens=self._max_output_tokens,
        )
        if not response.ok:
            raise DecompositionError(topic=topic, reason=response.error or "unknown error")
        queries = parse_sub_queries(response.text)
        if not queries:
            raise DecompositionError(topic=topic, reason="response contained no sub-queries")
        return queries

    async def decompose(self, topic: str, count: int) -> DecompositionResult:
        """Return exactly ``count`` non-empty sub-queries with ids 1..count.

        Generation failures are never fatal: the deterministic fallback takes
        over and the result is flagged ``used_fallback``.
        """
        if not 1 <= count <= MAX_SUB_QUERIES:
            raise ValueError(f"count must be between 1 and {MAX_SUB_QUERIES}, got {count}")

        try:
            queries = await self._generate(topic, count)
        except DecompositionError as e:
            log.warning("decomposer.fallback", topic=topic, count=count, reason=e.reason)
            texts = fallback_sub_queries(topic, count)
            return DecompositionResult(
                sub_queries=[SubQuery(id=i, text=text) for i, text in enumerate(texts, 1)],
                used_fallback=True,
                reason=e.reason,
            )

        if len(queries) != count:
            log.info("decomposer.count_adjusted", requested=count, received=len(queries))
        texts = fit_to_count(topic, queries, count)
        log.info("decomposer.completed", topic=topic, count=len(texts))
        return DecompositionResult(sub_queries=[SubQuery(id=i, text=text) for i, text in enumerate(texts, 1)])
