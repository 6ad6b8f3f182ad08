"""Prompt builders for decomposition, sub-query research and report parts."""

from typing import Sequence

from deep_research.models import ResearchSettings, SearchDepth, Tone

TONE_INSTRUCTIONS: dict[Tone, str] = {
    Tone.PHD: (
        "Write in an academic, scholarly tone suitable for PhD-level research. Use sophisticated "
        "vocabulary, complex sentence structures and a rigorous analytical approach."
    ),
    Tone.BACHELOR: (
        "Write in a clear, academic tone suitable for undergraduate level. Balance accessibility "
        "with academic rigor."
    ),
    Tone.SCHOOL: (
        "Write in clear, simple language suitable for high school students. Avoid jargon and "
        "explain complex concepts simply."
    ),
}

DEPTH_INSTRUCTIONS: dict[SearchDepth, str] = {
    SearchDepth.SHALLOW: "Give a concise overview of the most important facts.",
    SearchDepth.MEDIUM: "Give a balanced analysis with key data, examples and trends.",
    SearchDepth.DEEP: (
        "Give an exhaustive analysis: detailed statistics, competing viewpoints, case studies "
        "and methodological caveats."
    ),
}

DEPTH_OUTPUT_TOKENS: dict[SearchDepth, int] = {
    SearchDepth.SHALLOW: 2048,
    SearchDepth.MEDIUM: 4096,
    SearchDepth.DEEP: 8192,
}

INTRODUCTION_FOCUS = (
    "Open the report: executive summary, introduction, key definitions and the scope of the analysis."
)
CONCLUSION_FOCUS = "Close the report: conclusions, recommendations and directions for further research."

# Middle parts cycle through these in order
SECTION_FOCUSES: tuple[str, ...] = (
    "Methodology and theoretical frameworks.",
    "Current state of the field with key statistics and data.",
    "Case studies and practical applications.",
    "Economic and market analysis.",
    "Social, ethical and cultural implications.",
    "Legal, regulatory and policy landscape.",
    "Technological developments and innovation.",
    "Challenges, risks and limitations.",
    "Future trends and forecasts.",
    "Comparative and international perspectives.",
)

CITATION_FORMAT = "[Source: Title | Author | Date | URL]"


def section_focus(index: int, total_parts: int) -> str:
    """Focus hint for part ``index`` (1-based) of ``total_parts``."""
    if total_parts == 1:
        return f"{INTRODUCTION_FOCUS} Then cover the full analysis. {CONCLUSION_FOCUS}"
    if index == 1:
        return INTRODUCTION_FOCUS
    if index == total_parts:
        return CONCLUSION_FOCUS
    return SECTION_FOCUSES[(index - 2) % len(SECTION_FOCUSES)]


def build_decomposition_prompt(topic: str, count: int) -> str:
    return (
        f'Split the research topic "{topic}" into exactly {count} distinct research sub-queries.\n\n'
        "Requirements:\n"
        "- The sub-queries must not overlap and together must cover the topic exhaustively.\n"
        "- Spread them across technical, economic, social, legal and temporal (historical and future) dimensions.\n"
        "- Each sub-query must be a self-contained web search request.\n"
        "- Output one sub-query per line with no numbering, bullets, headings or commentary."
    )


def build_query_prompt(query: str, settings: ResearchSettings) -> str:
    lines = [
        f'Research and analyze the following using current internet data: "{query}".',
        "",
        "Provide:",
        "1. A detailed, factual analysis with specific data and statistics",
        "2. Concrete examples and case studies",
        "3. Expert opinions and key findings",
        "4. Full details for every source you rely on",
        "",
        DEPTH_INSTRUCTIONS[settings.search_depth],
    ]
    if settings.include_recent:
        lines.append("Prioritize the most recent credible information available.")
    if settings.custom_urls:
        lines.append("Where relevant, also consider these sources: " + ", ".join(settings.custom_urls))
    lines.extend(
        [
            f"Write in {settings.language}.",
            "",
            f"Cite every source inline in exactly this format: {CITATION_FORMAT}",
        ]
    )
    return "\n".join(lines)


def build_part_prompt(
    *,
    topic: str,
    corpus: str,
    previous_parts: Sequence[str],
    settings: ResearchSettings,
    index: int,
    total_parts: int,
    target_words: int,
    sentinel: str,
) -> str:
    """Prompt for one report part, carrying every previously accepted part."""
    if previous_parts:
        previous = "\n\n".join(previous_parts)
        continuity = (
            "Report parts already written (continue from them; do not repeat their content, "
            "headings or arguments):\n"
            f"<previous_parts>\n{previous}\n</previous_parts>"
        )
    else:
        continuity = "This is the first part of the report."

    return (
        f'Write part {index} of {total_parts} of a comprehensive research report on "{topic}".\n\n'
        f"Web research material:\n<research>\n{corpus}\n</research>\n\n"
        f"{continuity}\n\n"
        "Requirements:\n"
        f"- {TONE_INSTRUCTIONS[settings.tone]}\n"
        f"- Write in {settings.language}.\n"
        f"- Target length for this part: approximately {target_words} words.\n"
        f"- Focus of this part: {section_focus(index, total_parts)}\n"
        "- Include specific data, statistics and examples from the research material.\n"
        "- Use clear markdown headings and subheadings.\n"
        "- Reference the sources appropriately.\n"
        f"- When this part is completely finished, end your response with the marker {sentinel} "
        "on its own line. Never write the marker anywhere else."
    )
