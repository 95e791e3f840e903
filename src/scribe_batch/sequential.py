"""Paced one-at-a-time execution used when the batch endpoint is unavailable."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Sequence

from .errors import ProviderError, UpstreamAuthFailure, UpstreamBadRequest
from .llm.providers.base import CompletionProvider
from .llm.types import EnrichedRequest, JobMetadata
from .models import OUTCOME_KEYS, ExecutionMode, Job, JobStatus, NormalizedResult
from .normalizer import ResultNormalizer, error_result
from .registry import JobRegistry
from .sanitizer import ContentSanitizer
from .stats import WORDS_PER_SECTION, target_word_count
from .utils import local_job_id, utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class SequentialRun:
    job_id: str
    results: List[NormalizedResult]

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded


def _failure_message(exc: ProviderError) -> str:
    if exc.status is not None:
        return f"API request failed: {exc.status}"
    return str(exc)


class SequentialExecutor:
    def __init__(
        self,
        provider: CompletionProvider,
        registry: JobRegistry,
        normalizer: ResultNormalizer | None = None,
        sanitizer: ContentSanitizer | None = None,
        pacing_seconds: float = 1.0,
        words_per_section: int = WORDS_PER_SECTION,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider = provider
        self.registry = registry
        self.normalizer = normalizer or ResultNormalizer()
        self.sanitizer = sanitizer or ContentSanitizer()
        self.pacing_seconds = pacing_seconds
        self.words_per_section = words_per_section
        self._sleep = sleep

    def _run_one(self, request: EnrichedRequest) -> NormalizedResult:
        try:
            data = self.provider.create_message(request.to_params())
        except (UpstreamAuthFailure, UpstreamBadRequest) as exc:
            logger.error("Aborting sequential run at %s: %s", request.custom_id, exc)
            raise
        except ProviderError as exc:
            logger.warning("Request %s failed: %s", request.custom_id, exc)
            return error_result(request.custom_id, _failure_message(exc))

        wrapped = {"custom_id": request.custom_id, "result": {"type": "succeeded", "message": data}}
        return self.normalizer.normalize(wrapped, request.custom_id)

    def run(self, requests: Sequence[EnrichedRequest], metadata: JobMetadata) -> SequentialRun:
        """Runs every request in order and registers a completed job.

        Auth and bad-request failures abort the whole run; no partial job is kept.
        """
        if not requests:
            raise ValueError("A job needs at least one request")

        logger.info("Running %d request(s) sequentially for %r", len(requests), metadata.project_title)
        created_at = utc_now_iso()
        results: List[NormalizedResult] = []
        for index, request in enumerate(requests):
            if index:
                self._sleep(self.pacing_seconds)
            result = self.sanitizer.finalize(self._run_one(request))
            logger.info("Sequential %d/%d %s: %s", index + 1, len(requests), request.custom_id, result.status.value)
            results.append(result)

        job_id = local_job_id()
        run = SequentialRun(job_id=job_id, results=results)
        counts: Dict[str, int] = {key: 0 for key in OUTCOME_KEYS}
        counts["succeeded"] = run.succeeded
        counts["errored"] = run.failed
        self.registry.register(
            Job(
                id=job_id,
                created_at=created_at,
                mode=ExecutionMode.SEQUENTIAL,
                project_title=metadata.project_title,
                citation_style=metadata.citation_style,
                project_type=metadata.project_type,
                request_ids=tuple(request.custom_id for request in requests),
                target_word_count=target_word_count(len(requests), self.words_per_section),
                status=JobStatus.COMPLETED,
                upstream_status="ended",
                ended_at=utc_now_iso(),
                counts=counts,
                results=results,
            )
        )
        logger.info("Sequential job %s done: %d succeeded, %d failed", job_id, run.succeeded, run.failed)
        return run
