"""Job submission and status lookup across the batch and sequential paths."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, Optional

from .batch import BatchOrchestrator, map_status
from .config import DEFAULT_SETTINGS, EXECUTION_MODES
from .errors import JobNotFound, TransportFailure, UpstreamUnknown
from .llm.providers.anthropic_provider import AnthropicProvider
from .llm.types import GenerationRequest, JobMetadata
from .models import (
    OUTCOME_KEYS,
    ExecutionMode,
    Job,
    JobStatus,
    JobStatusView,
    SubmissionView,
)
from .normalizer import ResultNormalizer
from .prompts import enrich_all
from .registry import JobRegistry
from .sanitizer import ContentSanitizer
from .sequential import SequentialExecutor
from .stats import ProcessingEstimate, aggregate, estimate_processing_time

logger = logging.getLogger(__name__)

SEQUENTIAL_PREFIX = "seq_batch_"
# Failures the single-item endpoint might not share with the batch endpoint.
FALLBACK_ERRORS = (UpstreamUnknown, TransportFailure)


def _section(settings: Dict[str, Any], key: str) -> Dict[str, Any]:
    merged = dict(DEFAULT_SETTINGS[key])
    merged.update(settings.get(key) or {})
    return merged


class JobOrchestrator:
    def __init__(
        self,
        settings: Dict[str, Any] | None = None,
        provider: Any = None,
        registry: JobRegistry | None = None,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        settings = settings or {}
        self.generation = _section(settings, "generation")
        self.execution = _section(settings, "execution")
        self.polling = _section(settings, "polling")
        registry_cfg = _section(settings, "registry")
        self.model = _section(settings, "provider")["model"]

        self.provider = provider or AnthropicProvider(settings=settings)
        self.registry = registry or JobRegistry(ttl_seconds=registry_cfg.get("ttl_seconds"))
        normalizer = ResultNormalizer()
        sanitizer = ContentSanitizer()
        words = int(self.generation["words_per_section"])
        extra: Dict[str, Any] = {"sleep": sleep} if sleep is not None else {}
        self.batch = BatchOrchestrator(
            self.provider, self.registry, normalizer, sanitizer, words_per_section=words, **extra
        )
        self.sequential = SequentialExecutor(
            self.provider,
            self.registry,
            normalizer,
            sanitizer,
            pacing_seconds=float(self.execution["pacing_seconds"]),
            words_per_section=words,
            **extra,
        )

    def submit_job(
        self,
        requests: Iterable[GenerationRequest],
        project_title: str,
        citation_style: str = "APA",
        project_type: str = "academic",
        mode: str | None = None,
    ) -> SubmissionView:
        mode = mode or self.execution["mode"]
        if mode not in EXECUTION_MODES:
            raise ValueError(f"Invalid execution mode: {mode!r}")

        enriched = enrich_all(
            requests,
            project_title,
            citation_style,
            min_words=int(self.generation["words_per_section"]),
            excerpt_chars=int(self.generation["context_excerpt_chars"]),
        )
        if not enriched:
            raise ValueError("A job needs at least one request")
        metadata = JobMetadata(project_title, citation_style, project_type)

        if mode != ExecutionMode.SEQUENTIAL.value:
            try:
                job = self.batch.submit(enriched, metadata)
            except FALLBACK_ERRORS as exc:
                if mode == ExecutionMode.BATCH.value:
                    raise
                logger.warning("Batch submission failed (%s); falling back to sequential", exc)
            else:
                _, message = map_status(job.upstream_status, job.target_word_count)
                return SubmissionView(
                    job_id=job.id,
                    status=job.status,
                    mode=job.mode,
                    request_count=job.request_count,
                    target_word_count=job.target_word_count,
                    message=message,
                )

        run = self.sequential.run(enriched, metadata)
        job = self.registry.require(run.job_id)
        return SubmissionView(
            job_id=job.id,
            status=job.status,
            mode=job.mode,
            request_count=job.request_count,
            target_word_count=job.target_word_count,
            message=f"Generated {run.succeeded} of {job.request_count} section(s).",
        )

    def get_job_status(self, job_id: str) -> JobStatusView:
        job = self.registry.get(job_id)
        if job is not None and job.mode is ExecutionMode.SEQUENTIAL:
            return self._stored_view(job)
        if job is None and job_id.startswith(SEQUENTIAL_PREFIX):
            raise JobNotFound(f"Job not found or expired: {job_id}")
        return self.batch.poll(job_id)

    def wait(self, job_id: str, on_progress: Callable[[JobStatusView], None] | None = None) -> JobStatusView:
        job = self.registry.get(job_id)
        if (job is not None and job.mode is ExecutionMode.SEQUENTIAL) or job_id.startswith(SEQUENTIAL_PREFIX):
            return self.get_job_status(job_id)
        return self.batch.wait_for_completion(
            job_id,
            interval=float(self.polling["interval_seconds"]),
            max_wait=float(self.polling["max_wait_seconds"]),
            max_consecutive_errors=int(self.polling["max_consecutive_errors"]),
            on_progress=on_progress,
        )

    def inspect(self, job_id: str) -> Dict[str, Any]:
        return self.batch.inspect(job_id)

    def estimate(self, section_count: int) -> ProcessingEstimate:
        return estimate_processing_time(section_count, int(self.generation["words_per_section"]))

    @staticmethod
    def _stored_view(job: Job) -> JobStatusView:
        results = list(job.results or [])
        stats = aggregate(results)
        _, message = map_status("ended")
        completed = sum(job.counts.get(key, 0) for key in OUTCOME_KEYS)
        return JobStatusView(
            job_id=job.id,
            status=JobStatus.COMPLETED,
            message=message,
            request_count=job.request_count,
            completed_count=completed,
            failed_count=completed - job.counts.get("succeeded", 0),
            target_word_count=job.target_word_count,
            actual_word_count=stats.total_words,
            results=results,
            stats=stats,
            created_at=job.created_at,
            completed_at=job.ended_at,
        )
