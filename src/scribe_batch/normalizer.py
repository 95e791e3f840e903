"""Normalization of batch result records across provider response shapes.

Result lines have appeared in several layouts over time:

1. flattened:  {"type": "succeeded", "result": {"content": [...], "usage": {...}}}
2. documented: {"custom_id": ..., "result": {"type": "succeeded", "message": {...}}}
3. legacy:     {"type": "succeeded", "message": {...}} or a bare {"error": {...}}

Each layout has its own matcher. Matchers are tried in that order and return
None to fall through; anything left over becomes an "unrecognized" error
result. `normalize` never raises.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from .errors import ResultParseFailure
from .models import NormalizedResult, ResultStatus

logger = logging.getLogger(__name__)

NO_TEXT_MESSAGE = "No text content found in successful response"
CANCELED_MESSAGE = "Request was canceled"
EXPIRED_MESSAGE = "Request expired before processing"
UNRECOGNIZED_MESSAGE = "Unrecognized batch result structure"
UNSPECIFIED_ERROR = "Unspecified error from provider"
MISSING_RESULT_MESSAGE = "No result returned for request"

SUCCESS_TYPES = ("succeeded",)
ERROR_TYPES = ("errored", "error")


def extract_text(message: Any) -> str:
    """Joins the text blocks of a message payload."""
    if not isinstance(message, dict):
        return ""
    content = message.get("content")
    if isinstance(content, str):
        return content.strip()
    if not isinstance(content, list):
        return ""
    texts = [
        item["text"]
        for item in content
        if isinstance(item, dict) and item.get("type") == "text" and isinstance(item.get("text"), str)
    ]
    return "\n".join(texts).strip()


def output_tokens(message: Any) -> int:
    if not isinstance(message, dict):
        return 0
    usage = message.get("usage")
    if not isinstance(usage, dict):
        return 0
    return int(usage.get("output_tokens", 0) or 0)


def success_result(custom_id: str, text: str, tokens: int = 0) -> NormalizedResult:
    return NormalizedResult(custom_id=custom_id, content=text, status=ResultStatus.SUCCESS, tokens=tokens)


def error_result(custom_id: str, message: str) -> NormalizedResult:
    return NormalizedResult(
        custom_id=custom_id,
        content=f"Error: {message}",
        status=ResultStatus.ERROR,
        error=message,
    )


def _error_message(error: Any) -> str:
    if isinstance(error, dict):
        return str(error.get("message") or UNSPECIFIED_ERROR)
    if isinstance(error, str) and error:
        return error
    return UNSPECIFIED_ERROR


def _from_message(custom_id: str, message: Any) -> NormalizedResult:
    text = extract_text(message)
    if not text:
        return error_result(custom_id, NO_TEXT_MESSAGE)
    return success_result(custom_id, text, output_tokens(message))


def _match_flattened(raw: Dict[str, Any], custom_id: str) -> Optional[NormalizedResult]:
    kind = raw.get("type")
    node = raw.get("result")
    if kind not in SUCCESS_TYPES + ERROR_TYPES or not isinstance(node, dict):
        return None
    if kind in SUCCESS_TYPES:
        if "content" not in node:
            return None
        return _from_message(custom_id, node)
    error = raw.get("error") or node.get("error")
    if error is None:
        return None
    return error_result(custom_id, _error_message(error))


def _match_documented(raw: Dict[str, Any], custom_id: str) -> Optional[NormalizedResult]:
    node = raw.get("result")
    if not isinstance(node, dict) or not isinstance(node.get("type"), str):
        return None
    kind = node["type"]
    if kind in SUCCESS_TYPES:
        return _from_message(custom_id, node.get("message"))
    if kind == "message":
        # Single-call responses stored inline.
        return _from_message(custom_id, node)
    if kind in ERROR_TYPES:
        return error_result(custom_id, _error_message(node.get("error")))
    if kind in ("canceled", "cancelled"):
        return error_result(custom_id, CANCELED_MESSAGE)
    if kind == "expired":
        return error_result(custom_id, EXPIRED_MESSAGE)
    logger.warning("Unknown result type for %s: %s", custom_id, kind)
    return error_result(custom_id, f"Unknown result type: {kind}")


def _match_legacy(raw: Dict[str, Any], custom_id: str) -> Optional[NormalizedResult]:
    kind = raw.get("type")
    if kind in SUCCESS_TYPES and isinstance(raw.get("message"), dict):
        return _from_message(custom_id, raw["message"])
    if raw.get("error") is not None and (kind is None or kind in ERROR_TYPES):
        return error_result(custom_id, _error_message(raw["error"]))
    return None


Matcher = Callable[[Dict[str, Any], str], Optional[NormalizedResult]]

MATCHERS: Sequence[Matcher] = (_match_flattened, _match_documented, _match_legacy)


class ResultNormalizer:
    def __init__(self, matchers: Sequence[Matcher] = MATCHERS) -> None:
        self.matchers = tuple(matchers)

    def normalize(self, raw: Any, fallback_id: str = "item_1") -> NormalizedResult:
        if not isinstance(raw, dict):
            return error_result(fallback_id, UNRECOGNIZED_MESSAGE)
        custom_id = str(raw.get("custom_id") or raw.get("id") or fallback_id)
        try:
            for matcher in self.matchers:
                result = matcher(raw, custom_id)
                if result is not None:
                    return result
        except (TypeError, ValueError, AttributeError) as exc:
            logger.warning("Failed to parse result for %s: %s", custom_id, exc)
            return error_result(custom_id, f"Result parse error: {exc}")
        logger.warning("Unrecognized batch result structure for %s (keys=%s)", custom_id, sorted(raw))
        return error_result(custom_id, UNRECOGNIZED_MESSAGE)

    @staticmethod
    def load_line(line: str, line_number: int = 1) -> Any:
        try:
            return json.loads(line)
        except json.JSONDecodeError as exc:
            raise ResultParseFailure(f"Invalid JSON on results line {line_number}: {exc.msg}") from exc

    def parse_line(self, line: str, line_number: int) -> NormalizedResult:
        fallback_id = f"item_{line_number}"
        try:
            raw = self.load_line(line, line_number)
        except ResultParseFailure as exc:
            logger.warning("%s", exc)
            return error_result(fallback_id, str(exc))
        return self.normalize(raw, fallback_id)

    def parse_jsonl(self, text: str) -> List[NormalizedResult]:
        results: List[NormalizedResult] = []
        for line_number, line in enumerate((text or "").splitlines(), start=1):
            if line.strip():
                results.append(self.parse_line(line, line_number))
        return results

    @staticmethod
    def reconcile(results: Iterable[NormalizedResult], expected_ids: Sequence[str]) -> List[NormalizedResult]:
        """One result per expected id, in submission order."""
        by_id: Dict[str, NormalizedResult] = {}
        extras = 0
        for result in results:
            if result.custom_id in by_id:
                logger.warning("Duplicate result for %s ignored", result.custom_id)
                continue
            if result.custom_id not in expected_ids:
                extras += 1
            by_id[result.custom_id] = result

        reconciled: List[NormalizedResult] = []
        for custom_id in expected_ids:
            found = by_id.get(custom_id)
            if found is None:
                message = MISSING_RESULT_MESSAGE
                if extras:
                    message = f"{message} ({extras} unmatched results line(s))"
                found = error_result(custom_id, message)
            reconciled.append(found)
        if extras:
            logger.warning("Dropped %d result(s) with unknown identifiers", extras)
        return reconciled
