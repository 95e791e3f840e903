"""Prompt builders and request enrichment for scholarly section generation."""

from __future__ import annotations

import re
from typing import Iterable, List, Sequence

from .llm.types import EnrichedRequest, GenerationRequest, Message

MAX_OUTPUT_TOKENS = 8192
GENERATION_TEMPERATURE = 0.7
MIN_SECTION_WORDS = 2500
CONTEXT_EXCERPT_CHARS = 300

# Order matters: the first keyword found in the identifier wins.
CONTENT_TYPES: tuple[tuple[str, str], ...] = (
    ("intro", "introduction"),
    ("literature", "literature_review"),
    ("method", "methodology"),
    ("analysis", "analysis"),
    ("conclusion", "conclusion"),
    ("chapter", "chapter"),
)
DEFAULT_CONTENT_TYPE = "default"

CLEANUP_INSTRUCTION = (
    "FINAL INSTRUCTION: Deliver ONLY the complete academic content in clean Markdown format. "
    "Remove any meta-text, continuation prompts, word count discussions, or bracketed notes. "
    "The content must be usable as-is. Do not ask questions or mention continuing or word count targets."
)

_TASKS = {
    "introduction": (
        "TASK: Write an academic introduction that frames the research problem, states a clear thesis, "
        "and sets out the contribution of the whole project.",
        "CHAPTER CONTEXT",
    ),
    "literature_review": (
        "TASK: Write a literature review organised by theme that critically compares existing studies "
        "and identifies the gaps this project addresses.",
        "FOCUS AREA",
    ),
    "methodology": (
        "TASK: Write a methodology section that justifies the research design, details procedures, "
        "and addresses validity, limitations and ethics.",
        "METHODOLOGICAL FOCUS",
    ),
    "analysis": (
        "TASK: Write an analysis section that interprets evidence through an explicit framework and "
        "develops original arguments beyond description.",
        "ANALYTICAL FOCUS",
    ),
    "conclusion": (
        "TASK: Write a conclusion that synthesises the findings, states their significance, "
        "and points to future research.",
        "CONCLUDING FOCUS",
    ),
    "chapter": (
        "TASK: Write a complete chapter that stands on its own while advancing the thesis of the project.",
        "CHAPTER SCOPE",
    ),
    "default": (
        "TASK: Write comprehensive academic content with scholarly depth that fits the overall project.",
        "CONTENT FOCUS",
    ),
}


def classify_content_type(custom_id: str) -> str:
    lowered = (custom_id or "").lower()
    for keyword, content_type in CONTENT_TYPES:
        if keyword in lowered:
            return content_type
    return DEFAULT_CONTENT_TYPE


def context_excerpt(text: str, limit: int = CONTEXT_EXCERPT_CHARS) -> str:
    text = (text or "").strip()
    if len(text) <= limit:
        return text
    return text[:limit].rstrip() + "..."


def build_system_prompt(
    content_type: str,
    project_title: str,
    citation_style: str,
    context: str | None = None,
    min_words: int = MIN_SECTION_WORDS,
) -> str:
    task, focus_label = _TASKS.get(content_type, _TASKS[DEFAULT_CONTENT_TYPE])
    parts = [
        "You are ScribeAI, an academic writing assistant working on a large scholarly project "
        f'titled "{project_title}" using {citation_style} citation style.',
        "OUTPUT REQUIREMENTS:\n"
        f"- Write at least {min_words:,} words for this section.\n"
        "- Write continuous academic prose in full paragraphs.\n"
        "- Markdown headings (#, ##, ###) are allowed; avoid bullet points and numbered lists in the body.\n"
        f"- Integrate {citation_style} citations into the prose.",
        "STRICT OUTPUT HYGIENE (MANDATORY):\n"
        "- No meta commentary, system notes or apologies.\n"
        '- Never ask questions such as "Would you like me to continue?".\n'
        "- No bracketed editorial notes such as [Note: ...].\n"
        "- No disclaimers and no statements about length or word count targets.\n"
        "- Output only the final content as clean Markdown.",
        task,
    ]
    if context:
        parts.append(f"{focus_label}: {context}")
    return "\n\n".join(parts)


def enrich_request(
    request: GenerationRequest,
    project_title: str,
    citation_style: str,
    min_words: int = MIN_SECTION_WORDS,
    excerpt_chars: int = CONTEXT_EXCERPT_CHARS,
) -> EnrichedRequest:
    """Replaces the system prompt, appends the cleanup turn and pins the token ceiling."""
    content_type = classify_content_type(request.custom_id)
    first = request.messages[0].content if request.messages else ""
    system = build_system_prompt(
        content_type,
        project_title,
        citation_style,
        context=context_excerpt(first, excerpt_chars) or None,
        min_words=min_words,
    )
    messages = tuple(request.messages) + (Message("user", CLEANUP_INSTRUCTION),)
    return EnrichedRequest(
        custom_id=request.custom_id,
        messages=messages,
        model=request.model,
        max_tokens=MAX_OUTPUT_TOKENS,
        temperature=GENERATION_TEMPERATURE,
        system=system,
        content_type=content_type,
    )


def enrich_all(
    requests: Iterable[GenerationRequest],
    project_title: str,
    citation_style: str,
    min_words: int = MIN_SECTION_WORDS,
    excerpt_chars: int = CONTEXT_EXCERPT_CHARS,
) -> List[EnrichedRequest]:
    enriched: List[EnrichedRequest] = []
    seen: set[str] = set()
    for request in requests:
        if request.custom_id in seen:
            raise ValueError(f"Duplicate custom_id in job: {request.custom_id}")
        seen.add(request.custom_id)
        enriched.append(enrich_request(request, project_title, citation_style, min_words, excerpt_chars))
    return enriched


def section_custom_id(index: int, title: str) -> str:
    slug = re.sub(r"[^a-zA-Z0-9]", "_", title)[:20]
    return f"section_{index}_{slug}"


def build_section_prompt(
    title: str,
    index: int,
    total: int,
    project_title: str,
    citation_style: str,
    target_words: int = MIN_SECTION_WORDS,
    include_figures: bool = True,
    include_tables: bool = True,
) -> str:
    figures = (
        f"Add figure placeholders where useful: [FIGURE {index}: Description]"
        if include_figures
        else "Do NOT include figure placeholders."
    )
    tables = (
        "Add table placeholders when summarising data: [TABLE: Description]"
        if include_tables
        else "Do NOT include table placeholders."
    )
    return (
        f'Write a comprehensive academic section for the project titled "{project_title}".\n\n'
        f"Section: {title}\n"
        f"Citation Style: {citation_style}\n"
        f"Section Number: {index} of {total}\n\n"
        "REQUIREMENTS:\n"
        f"- At least {target_words} words for this section\n"
        f"- Relevant citations in {citation_style} format throughout\n"
        f"- {figures}\n"
        f"- {tables}\n"
        "- Consistent academic tone that fits the overall project structure\n\n"
        "STYLE:\n"
        "- Continuous prose in rich paragraphs, not lists\n"
        "- Markdown headings (## for main parts, ### for subsections)\n\n"
        "Write the complete section now:"
    )


def build_section_requests(
    outline: Sequence[str],
    project_title: str,
    citation_style: str = "APA",
    model: str = "claude-3-5-sonnet-20241022",
    target_words: int = MIN_SECTION_WORDS,
    include_figures: bool = True,
    include_tables: bool = True,
) -> List[GenerationRequest]:
    """One generation request per outline entry, in outline order."""
    total = len(outline)
    requests: List[GenerationRequest] = []
    for index, title in enumerate(outline, start=1):
        prompt = build_section_prompt(
            title,
            index,
            total,
            project_title,
            citation_style,
            target_words=target_words,
            include_figures=include_figures,
            include_tables=include_tables,
        )
        requests.append(
            GenerationRequest(
                custom_id=section_custom_id(index, title),
                messages=[Message("user", prompt)],
                model=model,
                max_tokens=MAX_OUTPUT_TOKENS,
            )
        )
    return requests
