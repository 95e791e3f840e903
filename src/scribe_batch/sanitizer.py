"""Post-generation cleanup: strips meta-commentary and enforces minimum structure."""

from __future__ import annotations

import logging
import re
from dataclasses import replace

from .errors import SanitizationFailure
from .models import NormalizedResult, ResultStatus
from .utils import count_words

logger = logging.getLogger(__name__)

MIN_CONTENT_CHARS = 100
DIAGNOSTIC_EXCERPT_CHARS = 200
DEFAULT_HEADING = "# Section Content"
EMPTY_INPUT_MESSAGE = "Error: Content generation failed - no valid text content received"

# Bracketed forms are left for the bracket pass.
_CONTINUATION_RE = re.compile(
    r"(?<!\[)\b(?:"
    r"would you like me to (?:continue|proceed|expand)"
    r"|should i (?:continue|proceed)"
    r"|do you want me to (?:continue|proceed)"
    r"|let me know if you(?:'d| would) like me to (?:continue|proceed)"
    r")[^?.!\n\[\]]*[?.!]?",
    re.IGNORECASE,
)
_BRACKETED_NOTE_RES = (
    re.compile(r"\[Note:[^\]]*\]", re.IGNORECASE),
    re.compile(r"\[This section represents[^\]]*\]", re.IGNORECASE),
    re.compile(r"\[Would you like me to continue[^\]]*\]", re.IGNORECASE),
)
_META_LINE_RE = re.compile(
    r"^[ \t]*(?:Note|Please note|Disclaimer|CRITICAL|IMPORTANT|Remember|Keep in mind):[^\n]*$",
    re.IGNORECASE | re.MULTILINE,
)
_LENGTH_DISCLAIMER_RE = re.compile(
    r"\bThis section represents approximately \d+%?(?: of the requested length)?\.?",
    re.IGNORECASE,
)
_BLANK_RUN_RE = re.compile(r"\n\s*\n\s*\n")


def _strip_meta(text: str) -> str:
    text = _CONTINUATION_RE.sub("", text)
    for pattern in _BRACKETED_NOTE_RES:
        text = pattern.sub("", text)
    text = _LENGTH_DISCLAIMER_RE.sub("", text)
    return _META_LINE_RE.sub("", text)


class ContentSanitizer:
    def __init__(self, min_chars: int = MIN_CONTENT_CHARS) -> None:
        self.min_chars = min_chars

    def sanitize(self, raw_text: object) -> str:
        """Returns cleaned Markdown or raises SanitizationFailure."""
        if not isinstance(raw_text, str) or not raw_text.strip():
            raise SanitizationFailure("No valid text content received", marker=EMPTY_INPUT_MESSAGE)

        # Removing one pattern can join the pieces of another; repeat until stable.
        cleaned, previous = raw_text, None
        while cleaned != previous:
            previous = cleaned
            cleaned = _strip_meta(cleaned)
        cleaned = _BLANK_RUN_RE.sub("\n\n", cleaned).strip()

        if len(cleaned) < self.min_chars:
            excerpt = raw_text[:DIAGNOSTIC_EXCERPT_CHARS]
            marker = (
                f"Error: Generated content too short ({len(cleaned)} characters). "
                f"Original content: {excerpt}..."
            )
            raise SanitizationFailure(f"Content too short after sanitization ({len(cleaned)} chars)", marker=marker)

        if "#" not in cleaned:
            cleaned = f"{DEFAULT_HEADING}\n\n{cleaned}"
        return cleaned

    def finalize(self, result: NormalizedResult) -> NormalizedResult:
        """Sanitizes a success result and fills in its word count."""
        if not result.ok:
            return replace(result, word_count=0)
        try:
            content = self.sanitize(result.content)
        except SanitizationFailure as exc:
            logger.warning("Sanitization rejected %s: %s", result.custom_id, exc)
            return replace(
                result,
                content=exc.marker,
                status=ResultStatus.ERROR,
                word_count=0,
                error=str(exc),
            )
        return replace(result, content=content, word_count=count_words(content))
