"""Job, result and status-view data structures."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"


class ResultStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class ExecutionMode(str, Enum):
    BATCH = "batch"
    SEQUENTIAL = "sequential"


OUTCOME_KEYS = ("succeeded", "errored", "canceled", "expired")


@dataclass(frozen=True)
class NormalizedResult:
    custom_id: str
    content: str
    status: ResultStatus
    tokens: int = 0
    word_count: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is ResultStatus.SUCCESS


@dataclass(frozen=True)
class BatchStats:
    total_words: int
    avg_words: float
    success_rate: float
    total_tokens: int
    completed_sections: int
    total_sections: int


@dataclass
class Job:
    id: str
    created_at: str
    mode: ExecutionMode
    project_title: str
    citation_style: str
    project_type: str
    request_ids: Tuple[str, ...]
    target_word_count: int
    status: JobStatus = JobStatus.PENDING
    upstream_status: Optional[str] = None
    ended_at: Optional[str] = None
    counts: Dict[str, int] = field(default_factory=lambda: {key: 0 for key in OUTCOME_KEYS})
    results: Optional[List[NormalizedResult]] = None

    @property
    def request_count(self) -> int:
        return len(self.request_ids)


@dataclass
class SubmissionView:
    job_id: str
    status: JobStatus
    mode: ExecutionMode
    request_count: int
    target_word_count: int
    message: str = ""


@dataclass
class JobStatusView:
    job_id: str
    status: JobStatus
    message: str
    request_count: int
    completed_count: int
    failed_count: int
    target_word_count: Optional[int]
    actual_word_count: Optional[int] = None
    results: Optional[List[NormalizedResult]] = None
    stats: Optional[BatchStats] = None
    created_at: Optional[str] = None
    completed_at: Optional[str] = None


def to_jsonable(view: Any) -> Dict[str, Any]:
    """Dataclass view -> plain dict with enum values unwrapped."""

    def _plain(value: Any) -> Any:
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, dict):
            return {k: _plain(v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return [_plain(v) for v in value]
        return value

    return _plain(asdict(view))
