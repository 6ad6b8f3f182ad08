"""Tests for batched sub-query execution."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from conftest import QUERY_PATTERN, ScriptedGeneration, make_config, make_settings

from deep_research.credentials import CredentialSelector
from deep_research.events import BatchProgressEvent, SSEEvent, SubQueryProgressEvent
from deep_research.models import QueryResult, QueryStatus, SubQuery
from deep_research.research.client import GenerationClient
from deep_research.research.scheduler import BatchScheduler, partition


def _sub_queries(count: int) -> list[SubQuery]:
    return [SubQuery(id=i, text=f"sub-query {i}") for i in range(1, count + 1)]


def _client(generation: ScriptedGeneration) -> GenerationClient:
    config = make_config()
    return generation.client_factory(CredentialSelector(config.api_key_pool), make_settings(), config)


class _StubClient:
    """Completes every sub-query instantly, crashing on the ids it is told to."""

    def __init__(self, crash_ids: tuple[int, ...] = ()) -> None:
        self.settings = make_settings()
        self.crash_ids = crash_ids

    async def research(self, sub_query: SubQuery) -> QueryResult:
        if sub_query.id in self.crash_ids:
            raise RuntimeError("client bug")
        return QueryResult.pending(sub_query, "m").resolve_completed("text", [], "m")


async def _collect(scheduler: BatchScheduler, sub_queries: list[SubQuery]) -> list[list[QueryResult]]:
    return [batch async for batch in scheduler.run(sub_queries)]


class TestPartition:
    """Tests for partition."""

    def test__uneven_split__last_batch_smaller(self) -> None:
        batches = partition(_sub_queries(5), 2)
        assert [[sq.id for sq in batch] for batch in batches] == [[1, 2], [3, 4], [5]]

    def test__batch_larger_than_input__single_batch(self) -> None:
        assert len(partition(_sub_queries(3), 10)) == 1

    def test__zero_batch_size__raises_value_error(self) -> None:
        with pytest.raises(ValueError):
            partition(_sub_queries(3), 0)


class TestBatchScheduler:
    """Tests for BatchScheduler.run."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("batch_size", [1, 2, 3, 7, 50])
    async def test__every_sub_query__terminal_after_run(self, batch_size: int) -> None:
        scheduler = BatchScheduler(_client(ScriptedGeneration()), batch_size=batch_size, pause_seconds=0)

        batches = await _collect(scheduler, _sub_queries(7))

        results = [result for batch in batches for result in batch]
        assert sorted(r.sub_query_id for r in results) == list(range(1, 8))
        assert all(r.is_terminal for r in results)
        assert scheduler.completed == 7

    @pytest.mark.asyncio
    async def test__four_queries_batch_two__two_batches_with_progress(self) -> None:
        events: list[SSEEvent] = []

        async def record(event: SSEEvent) -> None:
            events.append(event)

        scheduler = BatchScheduler(
            _client(ScriptedGeneration()), batch_size=2, pause_seconds=0, event_callback=record
        )

        batches = await _collect(scheduler, _sub_queries(4))

        assert [[r.sub_query_id for r in batch] for batch in batches] == [[1, 2], [3, 4]]
        progress = [e.data for e in events if isinstance(e, BatchProgressEvent)]
        assert [(p["completed"], p["batch"], p["percent"]) for p in progress] == [(2, 1, 50.0), (4, 2, 100.0)]
        assert sum(isinstance(e, SubQueryProgressEvent) for e in events) == 4

    @pytest.mark.asyncio
    async def test__failing_sub_query__does_not_cancel_siblings(self) -> None:
        def responder(prompt: str, api_key: str) -> str:
            query = QUERY_PATTERN.search(prompt)
            if query and query.group(1) == "sub-query 2":
                raise ValueError("bad response")
            return "findings"

        scheduler = BatchScheduler(_client(ScriptedGeneration(responder)), batch_size=3, pause_seconds=0)

        (batch,) = await _collect(scheduler, _sub_queries(3))

        statuses = {r.sub_query_id: r.status for r in batch}
        assert statuses == {1: QueryStatus.COMPLETED, 2: QueryStatus.ERROR, 3: QueryStatus.COMPLETED}

    @pytest.mark.asyncio
    async def test__batch__settles_before_next_starts(self) -> None:
        timeline: list[str] = []

        async def responder(prompt: str, api_key: str) -> str:
            query = QUERY_PATTERN.search(prompt).group(1)
            timeline.append(f"start {query}")
            await asyncio.sleep(0.01)
            timeline.append(f"end {query}")
            return "findings"

        scheduler = BatchScheduler(_client(ScriptedGeneration(responder)), batch_size=2, pause_seconds=0)

        await _collect(scheduler, _sub_queries(4))

        first_batch_end = max(timeline.index("end sub-query 1"), timeline.index("end sub-query 2"))
        second_batch_start = min(timeline.index("start sub-query 3"), timeline.index("start sub-query 4"))
        assert timeline.index("start sub-query 2") < timeline.index("end sub-query 1")
        assert first_batch_end < second_batch_start

    @pytest.mark.asyncio
    async def test__crashing_client__recorded_as_error(self) -> None:
        scheduler = BatchScheduler(_StubClient(crash_ids=(2,)), batch_size=2, pause_seconds=0)  # type: ignore[arg-type]

        (batch,) = await _collect(scheduler, _sub_queries(2))

        assert batch[0].status is QueryStatus.COMPLETED
        assert batch[1].status is QueryStatus.ERROR
        assert batch[1].error_detail == "RuntimeError: client bug"

    @pytest.mark.asyncio
    async def test__pause__only_between_batches(self) -> None:
        scheduler = BatchScheduler(_StubClient(), batch_size=2, pause_seconds=3.0)  # type: ignore[arg-type]

        with patch("deep_research.research.scheduler.asyncio.sleep", new=AsyncMock()) as sleep:
            await _collect(scheduler, _sub_queries(5))

        assert [call.args[0] for call in sleep.await_args_list] == [3.0, 3.0]

    def test__invalid_batch_size__raises_value_error(self) -> None:
        with pytest.raises(ValueError):
            BatchScheduler(_StubClient(), batch_size=0)  # type: ignore[arg-type]
