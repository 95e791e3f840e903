"""Word/token statistics and processing-time estimates."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

from .models import BatchStats, NormalizedResult
from .utils import count_words

WORDS_PER_SECTION = 2500


def result_words(result: NormalizedResult) -> int:
    if not result.ok:
        return 0
    return result.word_count or count_words(result.content)


def aggregate(results: Iterable[NormalizedResult]) -> BatchStats:
    items = list(results)
    successes = [r for r in items if r.ok]
    total_words = sum(result_words(r) for r in items)
    total = len(items)
    return BatchStats(
        total_words=total_words,
        avg_words=(total_words / total) if total else 0.0,
        success_rate=(len(successes) / total * 100.0) if total else 0.0,
        total_tokens=sum(r.tokens for r in successes),
        completed_sections=len(successes),
        total_sections=total,
    )


@dataclass(frozen=True)
class ProcessingEstimate:
    min_minutes: int
    max_minutes: int
    target_words: int


def target_word_count(section_count: int, words_per_section: int = WORDS_PER_SECTION) -> int:
    return section_count * words_per_section


def estimate_processing_time(section_count: int, words_per_section: int = WORDS_PER_SECTION) -> ProcessingEstimate:
    return ProcessingEstimate(
        min_minutes=max(5, math.ceil(section_count * 0.5)),
        max_minutes=math.ceil(section_count * 2),
        target_words=target_word_count(section_count, words_per_section),
    )
