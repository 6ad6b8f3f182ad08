"""Tests for topic decomposition."""

import pytest
from conftest import ScriptedGeneration, make_config, make_settings
from pydantic_ai.exceptions import ModelHTTPError

from deep_research.credentials import CredentialSelector
from deep_research.research.client import GenerationClient
from deep_research.research.decomposer import (
    TopicDecomposer,
    fallback_sub_queries,
    fit_to_count,
    parse_sub_queries,
)


def _decomposer(generation: ScriptedGeneration) -> TopicDecomposer:
    config = make_config()
    client = generation.client_factory(CredentialSelector(config.api_key_pool), make_settings(), config)
    return TopicDecomposer(client)


def _lines(count: int) -> ScriptedGeneration:
    return ScriptedGeneration(lambda prompt, key: "\n".join(f"angle {i}" for i in range(1, count + 1)))


class TestParseSubQueries:
    """Tests for parse_sub_queries."""

    def test__list_markers_and_quotes__stripped(self) -> None:
        text = '1. solar\n- wind\n* "storage"\n• grids\n2) hydro\n\n'
        assert parse_sub_queries(text) == ["solar", "wind", "storage", "grids", "hydro"]

    def test__duplicates__removed_case_insensitively(self) -> None:
        assert parse_sub_queries("Solar costs\nsolar COSTS\nwind") == ["Solar costs", "wind"]

    def test__numbers_inside_text__kept(self) -> None:
        assert parse_sub_queries("2030 targets for offshore wind") == ["2030 targets for offshore wind"]


class TestFitToCount:
    """Tests for fit_to_count."""

    def test__short_list__padded_with_fallback_positions(self) -> None:
        assert fit_to_count("energy", ["a", "b"], 4) == ["a", "b", "energy — aspect 3", "energy — aspect 4"]

    def test__long_list__truncated(self) -> None:
        assert fit_to_count("energy", ["a", "b", "c"], 2) == ["a", "b"]


class TestTopicDecomposer:
    """Tests for TopicDecomposer.decompose."""

    @pytest.mark.asyncio
    async def test__exact_response__used_verbatim(self, client: GenerationClient) -> None:
        result = await TopicDecomposer(client).decompose("renewable energy", 4)

        assert [sq.text for sq in result.sub_queries] == ["sub-query 1", "sub-query 2", "sub-query 3", "sub-query 4"]
        assert [sq.id for sq in result.sub_queries] == [1, 2, 3, 4]
        assert not result.used_fallback

    @pytest.mark.asyncio
    @pytest.mark.parametrize("returned,requested", [(2, 5), (10, 3), (1, 1)])
    async def test__any_response_size__yields_exactly_requested_count(self, returned: int, requested: int) -> None:
        result = await _decomposer(_lines(returned)).decompose("renewable energy", requested)

        assert len(result.sub_queries) == requested
        assert all(sq.text for sq in result.sub_queries)
        assert [sq.id for sq in result.sub_queries] == list(range(1, requested + 1))
        assert not result.used_fallback

    @pytest.mark.asyncio
    async def test__generation_failure__falls_back(self) -> None:
        def failing(prompt: str, api_key: str) -> str:
            raise ModelHTTPError(status_code=500, model_name="gemini-2.5-flash", body="internal")

        result = await _decomposer(ScriptedGeneration(failing)).decompose("renewable energy", 3)

        assert result.used_fallback
        assert result.reason == "API error 500: internal"
        assert [sq.text for sq in result.sub_queries] == fallback_sub_queries("renewable energy", 3)

    @pytest.mark.asyncio
    async def test__response_without_queries__falls_back(self) -> None:
        result = await _decomposer(ScriptedGeneration(lambda prompt, key: '""\n""')).decompose("energy", 2)

        assert result.used_fallback
        assert [sq.text for sq in result.sub_queries] == ["energy — aspect 1", "energy — aspect 2"]

    @pytest.mark.asyncio
    async def test__prompt__requests_exact_count(self, client: GenerationClient, generation: ScriptedGeneration) -> None:
        await TopicDecomposer(client).decompose("renewable energy", 7)

        assert 'research topic "renewable energy" into exactly 7 distinct' in generation.prompts[0]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("count", [0, 1001])
    async def test__count_out_of_range__raises_value_error(self, client: GenerationClient, count: int) -> None:
        with pytest.raises(ValueError):
            await TopicDecomposer(client).decompose("renewable energy", count)
