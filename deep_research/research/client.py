"""Generation client: one prompt in, one uniform response out."""

import asyncio
from time import perf_counter
from typing import Callable

from pydantic import BaseModel, Field
from pydantic_ai import Agent
from pydantic_ai.exceptions import ModelHTTPError
from pydantic_ai.settings import ModelSettings

from deep_research.config import ServiceConfig
from deep_research.credentials import CredentialSelector
from deep_research.exceptions import GenerationError
from deep_research.logging import get_logger
from deep_research.models import QueryResult, ResearchSettings, SubQuery
from deep_research.research.agents import AgentKind, ModelFactory, build_model, get_agent
from deep_research.research.prompts import DEPTH_OUTPUT_TOKENS, build_query_prompt
from deep_research.research.references import extract_references
from deep_research.retry import retry_until

log = get_logger("deep_research.research.client")

AgentGetter = Callable[..., Agent[None, str]]

RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


class GenerationResponse(BaseModel):
    """Text payload or error message from the generation service."""

    text: str = Field(default="", description="Generated text, empty on failure")
    error: str | None = Field(default=None, description="Provider message for failed calls")
    retryable: bool = Field(default=False, description="Whether the failure is worth retrying")
    model_used: str = Field(default="")
    attempts: int = Field(default=1, ge=1)

    @property
    def ok(self) -> bool:
        return self.error is None


class GenerationClient:
    """Sends prompts to the generation service without ever raising.

    Failures of any kind (non-2xx responses, malformed or empty payloads,
    timeouts) come back as a ``GenerationResponse`` with ``error`` set, so a
    single failing call never aborts the batch around it.
    """

    def __init__(
        self,
        selector: CredentialSelector,
        settings: ResearchSettings,
        config: ServiceConfig,
        *,
        model_factory: ModelFactory = build_model,
        agent_getter: AgentGetter = get_agent,
    ) -> None:
        self._selector = selector
        self._settings = settings
        self._config = config
        self._model_factory = model_factory
        self._agent_getter = agent_getter

    @property
    def settings(self) -> ResearchSettings:
        return self._settings

    async def complete(
        self,
        prompt: str,
        *,
        label: str,
        kind: AgentKind = AgentKind.QUERY,
        max_tokens: int | None = None,
    ) -> GenerationResponse:
        """Run one prompt, retrying transient failures with backoff."""

        async def _attempt(attempt: int) -> GenerationResponse:
            return await self._call_once(prompt, label=label, kind=kind, max_tokens=max_tokens, attempt=attempt)

        outcome = await retry_until(
            _attempt,
            lambda response: response.ok or not response.retryable,
            self._config.retry_policy(),
            label=label,
        )
        return outcome.value.model_copy(update={"attempts": outcome.attempts})

    async def _invoke(self, prompt: str, *, kind: AgentKind, max_tokens: int | None) -> str:
        """Single outbound call; every failure surfaces as ``GenerationError``."""
        grounding = kind is AgentKind.QUERY and self._settings.use_grounding
        model_settings = ModelSettings(temperature=self._config.temperature)
        if max_tokens is not None:
            model_settings["max_tokens"] = max_tokens

        try:
            model = self._model_factory(self._settings.model, self._selector.next())
            agent = self._agent_getter(kind, grounding=grounding)
            result = await asyncio.wait_for(
                agent.run(prompt, model=model, model_settings=model_settings),
                timeout=self._config.request_timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise GenerationError(
                f"Generation timed out after {self._config.request_timeout_seconds:g}s", retryable=True
            ) from e
        except ModelHTTPError as e:
            raise GenerationError(
                f"API error {e.status_code}: {e.body or e.message}",
                retryable=e.status_code in RETRYABLE_STATUS_CODES,
            ) from e
        except Exception as e:
            raise GenerationError(f"{type(e).__name__}: {e}") from e

        text = (result.output or "").strip()
        if not text:
            raise GenerationError("No content in generation response")
        return text

    async def _call_once(
        self,
        prompt: str,
        *,
        label: str,
        kind: AgentKind,
        max_tokens: int | None,
        attempt: int,
    ) -> GenerationResponse:
        model_name = self._settings.model
        call_start = perf_counter()
        try:
            text = await self._invoke(prompt, kind=kind, max_tokens=max_tokens)
        except GenerationError as e:
            log.warning(
                "client.call.failed", label=label, attempt=attempt, retryable=e.retryable, error=e.reason
            )
            return GenerationResponse(error=e.reason, retryable=e.retryable, model_used=model_name)

        duration_ms = int((perf_counter() - call_start) * 1000)
        log.debug("client.call.completed", label=label, attempt=attempt, duration_ms=duration_ms, chars=len(text))
        return GenerationResponse(text=text, model_used=model_name)

    async def research(self, sub_query: SubQuery) -> QueryResult:
        """Run one sub-query and resolve its result to completed or error."""
        pending = QueryResult.pending(sub_query, self._settings.model)
        response = await self.complete(
            build_query_prompt(sub_query.text, self._settings),
            label=f"sub_query:{sub_query.id}",
            kind=AgentKind.QUERY,
            max_tokens=DEPTH_OUTPUT_TOKENS[self._settings.search_depth],
        )
        if not response.ok:
            log.warning("client.sub_query.failed", sub_query_id=sub_query.id, error=response.error)
            return pending.resolve_error(response.error or "Unknown generation error", response.model_used)

        references = extract_references(response.text, self._settings.custom_urls)
        log.info("client.sub_query.completed", sub_query_id=sub_query.id, references=len(references))
        return pending.resolve_completed(response.text, references, response.model_used)
