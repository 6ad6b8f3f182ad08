"""Shared fixtures: a scripted generation service behind pydantic-ai's FunctionModel."""

import inspect
import re
from typing import Any, Awaitable, Callable

import pytest
from pydantic_ai.messages import ModelMessage, ModelRequest, ModelResponse, TextPart, UserPromptPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from deep_research.config import ServiceConfig
from deep_research.credentials import CredentialSelector
from deep_research.models import ResearchSettings
from deep_research.research.agents import clear_agent_cache
from deep_research.research.client import GenerationClient

Responder = Callable[[str, str], str | Awaitable[str]]

SENTINEL_PATTERN = re.compile(r"<<<END-OF-PART-[0-9a-f]+>>>")
SUB_QUERY_COUNT_PATTERN = re.compile(r"into exactly (\d+) distinct research sub-queries")
QUERY_PATTERN = re.compile(r'using current internet data: "(.+?)"\.')


def last_prompt(messages: list[ModelMessage]) -> str:
    for message in reversed(messages):
        if isinstance(message, ModelRequest):
            for part in message.parts:
                if isinstance(part, UserPromptPart) and isinstance(part.content, str):
                    return part.content
    return ""


def is_decomposition_prompt(prompt: str) -> bool:
    return SUB_QUERY_COUNT_PATTERN.search(prompt) is not None


def is_part_prompt(prompt: str) -> bool:
    return prompt.startswith("Write part ")


def default_responder(prompt: str, api_key: str) -> str:
    """Well-behaved service: exact decomposition, cited findings, marked parts."""
    if match := SUB_QUERY_COUNT_PATTERN.search(prompt):
        return "\n".join(f"sub-query {i}" for i in range(1, int(match.group(1)) + 1))
    if is_part_prompt(prompt):
        sentinel = SENTINEL_PATTERN.search(prompt)
        return f"## Section\n\nReport body.\n{sentinel.group(0) if sentinel else ''}"
    query = QUERY_PATTERN.search(prompt)
    subject = query.group(1) if query else "topic"
    return (
        f"Findings about {subject}. "
        f"[Source: Shared Report | Agency | 2024 | https://example.org/shared] "
        f"See also https://www.example.com/{subject.replace(' ', '-')}."
    )


class ScriptedGeneration:
    """Builds FunctionModels that answer through ``responder`` and records every call."""

    def __init__(self, responder: Responder = default_responder) -> None:
        self.responder = responder
        self.api_keys: list[str] = []
        self.prompts: list[str] = []

    def model_factory(self, model_name: str, api_key: str) -> FunctionModel:
        self.api_keys.append(api_key)

        async def _respond(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
            prompt = last_prompt(messages)
            self.prompts.append(prompt)
            text = self.responder(prompt, api_key)
            if inspect.isawaitable(text):
                text = await text
            return ModelResponse(parts=[TextPart(content=text)])

        return FunctionModel(_respond, model_name=model_name)

    def client_factory(
        self, selector: CredentialSelector, settings: ResearchSettings, config: ServiceConfig
    ) -> GenerationClient:
        return GenerationClient(selector, settings, config, model_factory=self.model_factory)

    def prompts_matching(self, predicate: Callable[[str], bool]) -> list[str]:
        return [prompt for prompt in self.prompts if predicate(prompt)]


def make_config(**overrides: Any) -> ServiceConfig:
    """Service config with pacing and backoff disabled."""
    values: dict[str, Any] = {
        "gemini_api_keys": "key-a,key-b,key-c",
        "batch_pause_seconds": 0,
        "part_pause_seconds": 0,
        "retry_backoff_seconds": 0,
        "retry_max_backoff_seconds": 0,
        "request_timeout_seconds": 5,
    }
    values.update(overrides)
    return ServiceConfig(_env_file=None, **values)


def make_settings(**overrides: Any) -> ResearchSettings:
    values: dict[str, Any] = {"use_grounding": False, "subtopic_count": 4, "batch_size": 2, "target_word_count": 5000}
    values.update(overrides)
    return ResearchSettings(**values)


@pytest.fixture(autouse=True)
def _reset_agent_cache():
    clear_agent_cache()
    yield
    clear_agent_cache()


@pytest.fixture
def config() -> ServiceConfig:
    return make_config()


@pytest.fixture
def settings() -> ResearchSettings:
    return make_settings()


@pytest.fixture
def generation() -> ScriptedGeneration:
    return ScriptedGeneration()


@pytest.fixture
def client(generation: ScriptedGeneration, settings: ResearchSettings, config: ServiceConfig) -> GenerationClient:
    return generation.client_factory(CredentialSelector(config.api_key_pool), settings, config)
