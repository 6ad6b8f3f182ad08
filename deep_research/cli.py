"""Command-line entry point: run one research request and print the report."""

import argparse
import asyncio
import sys
from typing import Any, Sequence

from dotenv import load_dotenv

from deep_research.events import SSEEvent, SSEEventType
from deep_research.logging import configure_structlog, get_logger
from deep_research.models import DEFAULT_MODEL, SearchDepth, Tone
from deep_research.workflow import run_research

log = get_logger("deep_research.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deep-research",
        description="Decompose a topic, research every sub-query and write a long-form report.",
    )
    parser.add_argument("topic", help="Research topic")
    parser.add_argument("--tone", choices=[t.value for t in Tone], default=Tone.PHD.value)
    parser.add_argument("--words", type=int, default=10_000, help="Target report length in words")
    parser.add_argument("--subtopics", type=int, default=20, help="Number of sub-queries to research")
    parser.add_argument("--batch-size", type=int, default=5, help="Sub-queries executed concurrently")
    parser.add_argument("--depth", choices=[d.value for d in SearchDepth], default=SearchDepth.MEDIUM.value)
    parser.add_argument("--model", default=DEFAULT_MODEL)
    parser.add_argument("--language", default="English", help="Language of the report")
    parser.add_argument("--url", action="append", default=[], dest="urls", help="Extra source URL (repeatable)")
    parser.add_argument("--no-grounding", action="store_true", help="Disable web search grounding")
    parser.add_argument("--no-recent", action="store_true", help="Do not prioritise recent sources")
    return parser


def settings_from_args(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "tone": args.tone,
        "target_word_count": args.words,
        "subtopic_count": args.subtopics,
        "batch_size": args.batch_size,
        "search_depth": args.depth,
        "model": args.model,
        "language": args.language,
        "custom_urls": args.urls,
        "use_grounding": not args.no_grounding,
        "include_recent": not args.no_recent,
    }


def describe_event(event: SSEEvent) -> str | None:
    """One progress line per event, or None for events not worth printing."""
    data = event.data
    match event.event:
        case SSEEventType.PHASE_START:
            return f"{str(data['phase']).capitalize()}..."
        case SSEEventType.PHASE_COMPLETE:
            return f"  done in {data['duration_ms']}ms {data.get('output_summary', {})}"
        case SSEEventType.PHASE_WARNING:
            return f"  warning: {data['warning']}"
        case SSEEventType.BATCH_PROGRESS:
            return f"  batch {data['batch']}/{data['total_batches']}: {data['completed']}/{data['total']} sub-queries"
        case SSEEventType.PART_GENERATED:
            flag = "" if data["is_complete"] else " (incomplete)"
            return f"  part {data['index']}/{data['total_parts']}{flag}"
        case SSEEventType.RUN_FAILED:
            return f"Research failed: {data['reason']}"
    return None


async def run(topic: str, settings: dict[str, Any]) -> int:
    """Stream one run; progress to stderr, report to stdout. Returns the exit code."""
    async for event in run_research(topic, settings):
        line = describe_event(event)
        if line:
            print(line, file=sys.stderr)
        if event.event is SSEEventType.RUN_COMPLETE:
            sys.stdout.write(str(event.data["report"]))
            return 0
        if event.event is SSEEventType.RUN_FAILED:
            return 1
    return 1


def main(argv: Sequence[str] | None = None) -> None:
    """Main CLI entry point."""
    load_dotenv()
    configure_structlog(testing=True, stream=sys.stderr)

    args = build_parser().parse_args(argv)
    try:
        exit_code = asyncio.run(run(args.topic, settings_from_args(args)))
    except KeyboardInterrupt:
        exit_code = 130
    except Exception as e:
        log.exception("cli.failed", error=str(e))
        exit_code = 1
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
