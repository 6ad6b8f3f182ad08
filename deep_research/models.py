"""Pydantic models for the research orchestration pipeline."""

import re
from datetime import datetime, timezone
from enum import Enum
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, SecretStr, field_validator

DEFAULT_MODEL = "gemini-2.5-flash"

_WHITESPACE = re.compile(r"\s+")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Tone(str, Enum):
    """Academic register of the final report."""

    PHD = "phd"
    BACHELOR = "bachelor"
    SCHOOL = "school"


class SearchDepth(str, Enum):
    """How much material each sub-query should pull in."""

    SHALLOW = "shallow"
    MEDIUM = "medium"
    DEEP = "deep"


class QueryStatus(str, Enum):
    """Lifecycle of a sub-query result; pending is the only non-terminal state."""

    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"


class ResearchSettings(BaseModel):
    """Immutable per-run settings, validated before any network call."""

    tone: Tone = Field(default=Tone.PHD, description="Register of the final report", examples=["phd"])
    target_word_count: int = Field(
        default=10_000,
        gt=0,
        le=1_000_000,
        description="Approximate length of the final report in words",
        examples=[10_000],
    )
    subtopic_count: int = Field(
        default=20,
        ge=1,
        le=1000,
        description="Number of sub-queries the topic is decomposed into",
        examples=[20],
    )
    model: str = Field(
        default=DEFAULT_MODEL,
        min_length=1,
        description="Generation model identifier",
        examples=[DEFAULT_MODEL],
    )
    batch_size: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Sub-queries issued concurrently per batch",
        examples=[5],
    )
    custom_urls: tuple[str, ...] = Field(
        default=(),
        description="User-supplied sources always included in the reference list",
        examples=[["https://example.org/x"]],
    )
    search_depth: SearchDepth = Field(
        default=SearchDepth.MEDIUM,
        description="Output budget and thoroughness of each sub-query",
        examples=["medium"],
    )
    use_grounding: bool = Field(default=True, description="Enable live web search for sub-queries")
    include_recent: bool = Field(default=True, description="Ask for the most recent sources available")
    language: str = Field(default="English", min_length=1, description="Language of generated text")
    credentials: tuple[SecretStr, ...] = Field(
        default=(),
        description="Ordered API credential pool; empty falls back to the service configuration",
    )

    model_config = {"frozen": True}

    @field_validator("custom_urls", mode="before")
    @classmethod
    def _normalize_custom_urls(cls, value: object) -> object:
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        if not isinstance(value, (list, tuple, set, frozenset)):
            raise ValueError("custom_urls must be a list of URLs")
        urls: list[str] = []
        for raw in value:
            url = str(raw).strip()
            if not url:
                continue
            parts = urlsplit(url)
            if parts.scheme not in ("http", "https") or not parts.netloc:
                raise ValueError(f"custom URL must be an absolute http(s) URL: {url!r}")
            if url not in urls:
                urls.append(url)
        return tuple(urls)

    @field_validator("model")
    @classmethod
    def _strip_model(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("model identifier must not be blank")
        return value


class ResearchRequest(BaseModel):
    """Input for one orchestration run."""

    topic: str = Field(
        min_length=1,
        max_length=1000,
        description="Research topic to investigate (1-1000 characters)",
        examples=["renewable energy"],
    )
    settings: ResearchSettings = Field(default_factory=ResearchSettings)

    model_config = {"frozen": True}

    @field_validator("topic")
    @classmethod
    def _topic_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("topic must not be blank")
        return value


class SubQuery(BaseModel):
    """One decomposed unit of the research topic."""

    id: int = Field(ge=1, description="Stable 1-based position", examples=[1])
    text: str = Field(min_length=1, description="Sub-query sent to the generation service")

    model_config = {"frozen": True}


def normalize_url_key(url: str) -> str:
    """Scheme-stripped URL with a lower-cased host and no trailing slash."""
    url = url.strip()
    parts = urlsplit(url if "://" in url else f"//{url}")
    key = f"{parts.netloc.lower()}{parts.path.rstrip('/')}"
    if parts.query:
        key = f"{key}?{parts.query}"
    if parts.fragment:
        key = f"{key}#{parts.fragment}"
    return key


def normalize_title_key(title: str) -> str:
    return _WHITESPACE.sub(" ", title).strip().casefold()


class Reference(BaseModel):
    """A citation derived from generated text or supplied by the user."""

    url: str = Field(description="Source URL", examples=["https://www.iea.org/reports/renewables-2024"])
    title: str = Field(description="Source title", examples=["Renewables 2024"])
    domain: str = Field(description="Host without a leading 'www.'", examples=["iea.org"])
    author: str | None = Field(default=None, examples=["International Energy Agency"])
    publish_date: str | None = Field(default=None, examples=["2024-10-09"])
    description: str | None = Field(default=None, examples=["Cited by the generation service"])

    model_config = {"frozen": True}

    @property
    def key(self) -> tuple[str, str]:
        """Deduplication key, stable for the whole run."""
        return normalize_url_key(self.url), normalize_title_key(self.title)


class QueryResult(BaseModel):
    """Outcome of one sub-query; resolved exactly once from pending."""

    sub_query_id: int = Field(ge=1)
    query: str = Field(description="Sub-query text")
    raw_text: str = Field(default="", description="Generated text (empty unless completed)")
    references: list[Reference] = Field(default_factory=list)
    status: QueryStatus = Field(default=QueryStatus.PENDING)
    error_detail: str | None = Field(default=None, description="Failure message for error results")
    model_used: str = Field(default="")
    timestamp: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}

    @classmethod
    def pending(cls, sub_query: SubQuery, model: str = "") -> "QueryResult":
        return cls(sub_query_id=sub_query.id, query=sub_query.text, model_used=model)

    @property
    def is_terminal(self) -> bool:
        return self.status is not QueryStatus.PENDING

    def _ensure_pending(self) -> None:
        if self.is_terminal:
            raise ValueError(f"Result for sub-query {self.sub_query_id} is already {self.status.value}")

    def resolve_completed(self, raw_text: str, references: list[Reference], model_used: str) -> "QueryResult":
        self._ensure_pending()
        return self.model_copy(
            update={
                "raw_text": raw_text,
                "references": list(references),
                "status": QueryStatus.COMPLETED,
                "model_used": model_used,
                "timestamp": _utcnow(),
            }
        )

    def resolve_error(self, error_detail: str, model_used: str) -> "QueryResult":
        self._ensure_pending()
        return self.model_copy(
            update={
                "raw_text": "",
                "references": [],
                "status": QueryStatus.ERROR,
                "error_detail": error_detail or "Unknown generation error",
                "model_used": model_used,
                "timestamp": _utcnow(),
            }
        )


class ReportPart(BaseModel):
    """One bounded-size chunk of the final report."""

    index: int = Field(ge=1, description="1-based position in the report")
    total_parts: int = Field(ge=1)
    content: str = Field(description="Accepted text with the completion marker stripped")
    is_complete: bool = Field(description="Whether the completion marker was seen")
    retry_count: int = Field(default=0, ge=0, description="Attempts made beyond the first")

    model_config = {"frozen": True}


# Progress bands: decomposition 0-5, gathering 5-75, synthesis 75-95
DECOMPOSED_PERCENT = 5.0
GATHERED_PERCENT = 75.0
SYNTHESIZED_PERCENT = 95.0


class RunState(BaseModel):
    """Aggregate state of one run; written only by the orchestrator."""

    topic: str
    settings: ResearchSettings
    sub_queries: list[SubQuery] = Field(default_factory=list)
    query_results: dict[int, QueryResult] = Field(default_factory=dict)
    references: list[Reference] = Field(default_factory=list)
    report_parts: list[ReportPart] = Field(default_factory=list)
    total_parts: int = Field(default=1, ge=1)
    report: str = ""
    progress_percent: float = Field(default=0.0, ge=0.0, le=100.0)

    @classmethod
    def start(
        cls, topic: str, settings: ResearchSettings, sub_queries: list[SubQuery], total_parts: int
    ) -> "RunState":
        ids = [sq.id for sq in sub_queries]
        if ids != list(range(1, len(sub_queries) + 1)):
            raise ValueError("sub-query ids must be unique and contiguous from 1")
        return cls(
            topic=topic,
            settings=settings,
            sub_queries=list(sub_queries),
            query_results={sq.id: QueryResult.pending(sq, settings.model) for sq in sub_queries},
            total_parts=total_parts,
        )

    def record_result(self, result: QueryResult) -> None:
        current = self.query_results.get(result.sub_query_id)
        if current is None:
            raise KeyError(f"Unknown sub-query id {result.sub_query_id}")
        if not result.is_terminal:
            raise ValueError("Only terminal results can be recorded")
        if current.is_terminal:
            raise ValueError(f"Result for sub-query {result.sub_query_id} is already {current.status.value}")
        self.query_results[result.sub_query_id] = result

    def add_references(self, references: list[Reference]) -> int:
        """Append references whose key is new; returns how many were added."""
        seen = {ref.key for ref in self.references}
        added = 0
        for ref in references:
            if ref.key in seen:
                continue
            seen.add(ref.key)
            self.references.append(ref)
            added += 1
        return added

    def add_part(self, part: ReportPart) -> None:
        if part.index != len(self.report_parts) + 1:
            raise ValueError(f"Expected report part {len(self.report_parts) + 1}, got {part.index}")
        self.report_parts.append(part)

    def set_progress(self, percent: float) -> None:
        """Advance progress; never moves backwards."""
        self.progress_percent = max(self.progress_percent, min(100.0, max(0.0, percent)))

    @property
    def ordered_results(self) -> list[QueryResult]:
        return [self.query_results[sq.id] for sq in self.sub_queries]

    @property
    def completed_results(self) -> list[QueryResult]:
        return [r for r in self.ordered_results if r.status is QueryStatus.COMPLETED]

    @property
    def pending_count(self) -> int:
        return sum(1 for r in self.query_results.values() if not r.is_terminal)


class RunTimings(BaseModel):
    """Timing metrics for each run phase."""

    decomposition_ms: int = Field(ge=0, examples=[1800])
    gathering_ms: int = Field(ge=0, examples=[42000])
    synthesis_ms: int = Field(ge=0, examples=[95000])
    total_ms: int = Field(ge=0, examples=[139000])


class ResearchRunResult(BaseModel):
    """Complete result of a research run."""

    topic: str = Field(min_length=1, examples=["renewable energy"])
    sub_queries: list[SubQuery] = Field(description="Decomposed sub-queries in id order")
    used_fallback_decomposition: bool = Field(
        default=False, description="Whether sub-queries came from the local fallback generator"
    )
    query_results: list[QueryResult] = Field(description="Terminal result for every sub-query, in id order")
    references: list[Reference] = Field(description="Deduplicated references across the run")
    report_parts: list[ReportPart] = Field(description="Report parts in index order")
    report: str = Field(description="Full report with the appended source list")
    timings: RunTimings

    @classmethod
    def from_state(cls, state: RunState, used_fallback: bool, timings: RunTimings) -> "ResearchRunResult":
        return cls(
            topic=state.topic,
            sub_queries=state.sub_queries,
            used_fallback_decomposition=used_fallback,
            query_results=state.ordered_results,
            references=state.references,
            report_parts=state.report_parts,
            report=state.report,
            timings=timings,
        )

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.query_results if r.status is QueryStatus.ERROR)
