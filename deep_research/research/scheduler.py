"""Batched concurrent execution of sub-queries with inter-batch pacing."""

import asyncio
from time import perf_counter
from typing import AsyncIterator, Sequence

from deep_research.events import BatchProgressEvent, EventCallback, SubQueryProgressEvent, discard_event
from deep_research.logging import get_logger
from deep_research.models import QueryResult, QueryStatus, SubQuery
from deep_research.research.client import GenerationClient

log = get_logger("deep_research.research.scheduler")


def partition(sub_queries: Sequence[SubQuery], batch_size: int) -> list[list[SubQuery]]:
    """Contiguous chunks of at most ``batch_size`` sub-queries."""
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [list(sub_queries[i : i + batch_size]) for i in range(0, len(sub_queries), batch_size)]


class BatchScheduler:
    """Drives the generation client over every sub-query, one batch at a time.

    All calls in a batch run concurrently and the whole batch settles before
    the next one starts. Results are yielded batch by batch, so callers see
    them while later batches are still running.
    """

    def __init__(
        self,
        client: GenerationClient,
        *,
        batch_size: int,
        pause_seconds: float = 3.0,
        event_callback: EventCallback | None = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self._client = client
        self._batch_size = batch_size
        self._pause_seconds = pause_seconds
        self._emit = event_callback or discard_event
        self.completed = 0

    async def _settle(self, sub_query: SubQuery) -> QueryResult:
        try:
            result = await self._client.research(sub_query)
        except Exception as e:
            # The client converts its own failures; anything reaching here is a bug upstream
            log.exception("scheduler.sub_query.crashed", sub_query_id=sub_query.id, error=str(e))
            result = QueryResult.pending(sub_query, self._client.settings.model).resolve_error(
                f"{type(e).__name__}: {e}", self._client.settings.model
            )
        await self._emit(
            SubQueryProgressEvent(
                data={
                    "id": result.sub_query_id,
                    "status": result.status.value,
                    "references": len(result.references),
                    "error": result.error_detail or "",
                }
            )
        )
        return result

    async def _run_batch(self, batch: list[SubQuery]) -> list[QueryResult]:
        tasks: list[asyncio.Task[QueryResult]] = []
        async with asyncio.TaskGroup() as tg:
            for sub_query in batch:
                tasks.append(tg.create_task(self._settle(sub_query)))
        return [task.result() for task in tasks]

    async def run(self, sub_queries: Sequence[SubQuery]) -> AsyncIterator[list[QueryResult]]:
        """Yield the terminal results of each batch as it settles."""
        batches = partition(sub_queries, self._batch_size)
        total = len(sub_queries)
        self.completed = 0
        log.info("scheduler.started", total=total, batches=len(batches), batch_size=self._batch_size)

        for number, batch in enumerate(batches, 1):
            batch_start = perf_counter()
            results = await self._run_batch(batch)
            self.completed += len(results)
            failed = sum(1 for r in results if r.status is QueryStatus.ERROR)

            log.info(
                "scheduler.batch.completed",
                batch=number,
                total_batches=len(batches),
                failed=failed,
                duration_ms=int((perf_counter() - batch_start) * 1000),
            )
            await self._emit(
                BatchProgressEvent(
                    data={
                        "completed": self.completed,
                        "total": total,
                        "batch": number,
                        "total_batches": len(batches),
                        "percent": round(100.0 * self.completed / total, 1) if total else 100.0,
                    }
                )
            )
            yield results

            if number < len(batches) and self._pause_seconds > 0:
                await asyncio.sleep(self._pause_seconds)

        log.info("scheduler.completed", total=total)
