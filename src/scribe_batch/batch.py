"""Asynchronous batch submission, status polling and result retrieval."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .errors import JobTimeout, ProviderError, ResultParseFailure, UpstreamUnknown
from .llm.providers.base import BatchProvider
from .llm.types import EnrichedRequest, JobMetadata
from .models import OUTCOME_KEYS, ExecutionMode, Job, JobStatus, JobStatusView, NormalizedResult
from .normalizer import ResultNormalizer, extract_text, output_tokens
from .registry import JobRegistry
from .sanitizer import ContentSanitizer
from .stats import WORDS_PER_SECTION, aggregate, target_word_count
from .utils import epoch_to_iso, utc_now_iso

logger = logging.getLogger(__name__)

STATUS_MAP: Dict[str, JobStatus] = {
    "in_progress": JobStatus.PROCESSING,
    "canceling": JobStatus.PROCESSING,
    "ended": JobStatus.COMPLETED,
}


def map_status(upstream: Optional[str], target_words: Optional[int] = None) -> Tuple[JobStatus, str]:
    """Upstream processing_status -> (canonical status, user message).

    Older vocabularies (failed, expired, ...) and missing values land in pending.
    """
    status = STATUS_MAP.get(upstream or "", JobStatus.PENDING)
    if upstream == "in_progress":
        size = f"{target_words:,}-word" if target_words else "comprehensive"
        return status, f"ScribeAI is generating your {size} project..."
    if upstream == "canceling":
        return status, "Batch is canceling; some requests may still complete."
    if upstream == "ended":
        return status, "Your project is ready for review."
    return status, "Your project is queued."


def outcome_counts(raw: Any) -> Dict[str, int]:
    raw = raw if isinstance(raw, dict) else {}
    counts = {key: int(raw.get(key) or 0) for key in OUTCOME_KEYS}
    counts["processing"] = int(raw.get("processing") or 0)
    return counts


class BatchOrchestrator:
    def __init__(
        self,
        provider: BatchProvider,
        registry: JobRegistry,
        normalizer: ResultNormalizer | None = None,
        sanitizer: ContentSanitizer | None = None,
        words_per_section: int = WORDS_PER_SECTION,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.normalizer = normalizer or ResultNormalizer()
        self.sanitizer = sanitizer or ContentSanitizer()
        self.words_per_section = words_per_section
        self._sleep = sleep
        self._clock = clock

    def submit(self, requests: Sequence[EnrichedRequest], metadata: JobMetadata) -> Job:
        if not requests:
            raise ValueError("A batch needs at least one request")

        logger.info("Submitting batch of %d request(s) for %r", len(requests), metadata.project_title)
        data = self.provider.create_batch([request.to_batch_entry() for request in requests])
        batch_id = data.get("id")
        if not batch_id:
            raise UpstreamUnknown("Batch submission response did not include an id", body=str(data)[:400])

        status, _ = map_status(data.get("processing_status"))
        job = Job(
            id=str(batch_id),
            created_at=epoch_to_iso(data.get("created_at")) or utc_now_iso(),
            mode=ExecutionMode.BATCH,
            project_title=metadata.project_title,
            citation_style=metadata.citation_style,
            project_type=metadata.project_type,
            request_ids=tuple(request.custom_id for request in requests),
            target_word_count=target_word_count(len(requests), self.words_per_section),
            status=status,
            upstream_status=data.get("processing_status"),
        )
        self.registry.register(job)
        logger.info("Batch %s created (%d requests)", job.id, job.request_count)
        return job

    def collect_results(self, results_url: str, expected_ids: Sequence[str] = ()) -> List[NormalizedResult]:
        text = self.provider.fetch_results(results_url)
        logger.info("Fetched %d characters of batch results", len(text))
        results = self.normalizer.parse_jsonl(text)
        if expected_ids:
            results = self.normalizer.reconcile(results, expected_ids)
        return [self.sanitizer.finalize(result) for result in results]

    def poll(self, job_id: str) -> JobStatusView:
        data = self.provider.retrieve_batch(job_id)
        job = self.registry.get(job_id)
        upstream = data.get("processing_status")
        target = job.target_word_count if job else None
        status, message = map_status(upstream, target)

        results: Optional[List[NormalizedResult]] = None
        if status is JobStatus.COMPLETED and data.get("results_url"):
            results = self.collect_results(data["results_url"], job.request_ids if job else ())

        counts = outcome_counts(data.get("request_counts"))
        completed = sum(counts[key] for key in OUTCOME_KEYS)
        failed = counts["errored"] + counts["canceled"] + counts["expired"]
        request_count = (completed + counts["processing"]) or (job.request_count if job else 0)
        ended_at = epoch_to_iso(data.get("ended_at"))

        if job is not None:
            if job.status is not status:
                logger.info("Job %s: %s -> %s", job_id, job.status.value, status.value)
            self.registry.update(
                job_id,
                lambda current: {"results": results if results is not None else current.results},
                status=status,
                upstream_status=upstream,
                counts={key: counts[key] for key in OUTCOME_KEYS},
                ended_at=ended_at,
            )

        stats = aggregate(results) if results is not None else None
        return JobStatusView(
            job_id=job_id,
            status=status,
            message=message,
            request_count=request_count,
            completed_count=completed,
            failed_count=failed,
            target_word_count=target,
            actual_word_count=stats.total_words if stats else None,
            results=results,
            stats=stats,
            created_at=epoch_to_iso(data.get("created_at")) or (job.created_at if job else None),
            completed_at=ended_at,
        )

    def wait_for_completion(
        self,
        job_id: str,
        interval: float = 10,
        max_wait: float = 1800,
        max_consecutive_errors: int = 3,
        on_progress: Callable[[JobStatusView], None] | None = None,
    ) -> JobStatusView:
        """Polls until the job completes.

        Retryable provider errors back off exponentially; anything else is
        re-raised at once. Raises JobTimeout once max_wait seconds have passed.
        """
        started = self._clock()
        errors = 0
        retried_empty = False
        while True:
            elapsed = self._clock() - started
            if max_wait and elapsed > max_wait:
                raise JobTimeout(
                    f"Job {job_id} did not complete within {int(max_wait)} seconds; it may still be processing upstream."
                )
            try:
                view = self.poll(job_id)
            except ProviderError as exc:
                if not exc.retryable:
                    raise
                errors += 1
                if errors >= max_consecutive_errors:
                    logger.error("Giving up on %s after %d consecutive errors", job_id, errors)
                    raise
                delay = interval * 2 ** (errors - 1)
                logger.warning("Poll error %d/%d for %s: %s", errors, max_consecutive_errors, job_id, exc)
                self._sleep(delay)
                continue

            errors = 0
            if on_progress is not None:
                on_progress(view)
            if view.status is JobStatus.COMPLETED:
                if view.results or retried_empty:
                    return view
                # Results can lag slightly behind the ended status.
                retried_empty = True
            self._sleep(interval)

    def inspect(self, job_id: str) -> Dict[str, Any]:
        """Raw upstream status plus a summary of the first results line."""
        data = self.provider.retrieve_batch(job_id)
        summary: Optional[Dict[str, Any]] = None
        if data.get("results_url"):
            text = self.provider.fetch_results(data["results_url"])
            lines = [line for line in text.splitlines() if line.strip()]
            summary = {"raw_length": len(text), "line_count": len(lines), "first_line": lines[0][:500] if lines else ""}
            if lines:
                summary["sample"] = self._sample(lines[0])
        return {"job_id": job_id, "upstream": data, "results": summary}

    @staticmethod
    def _sample(line: str) -> Dict[str, Any]:
        try:
            raw = ResultNormalizer.load_line(line)
        except ResultParseFailure as exc:
            return {"error": str(exc)}
        if not isinstance(raw, dict):
            return {"error": "first results line is not a JSON object"}
        node = raw.get("result") if isinstance(raw.get("result"), dict) else {}
        message = node.get("message") if isinstance(node.get("message"), dict) else node
        return {
            "custom_id": raw.get("custom_id"),
            "result_type": node.get("type") or raw.get("type"),
            "has_message": isinstance(node.get("message"), dict),
            "has_error": bool(node.get("error") or raw.get("error")),
            "content_preview": extract_text(message)[:200],
            "output_tokens": output_tokens(message),
        }
