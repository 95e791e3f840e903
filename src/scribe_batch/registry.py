"""Process-local job registry with lazy TTL eviction."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Mapping, MutableMapping, Optional

from .errors import JobNotFound
from .models import Job

logger = logging.getLogger(__name__)


class JobRegistry:
    """Maps job ids to Job records.

    Storage is any mutable mapping (a plain dict by default) so callers can
    plug in another backend. All access goes through one lock because a poll
    may update a job while another thread submits a new one.

    Age is measured from registration on this registry's clock, not from the
    upstream `created_at`, whose format varies by provider.
    """

    def __init__(
        self,
        store: Optional[MutableMapping[str, Job]] = None,
        ttl_seconds: float | None = 86400,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store: MutableMapping[str, Job] = store if store is not None else {}
        self._registered_at: Dict[str, float] = {}
        self._ttl = ttl_seconds
        self._clock = clock
        self._lock = threading.RLock()

    def _purge_locked(self) -> int:
        if not self._ttl:
            return 0
        cutoff = self._clock() - self._ttl
        # Jobs already in an injected store have no stamp and are kept.
        expired = [job_id for job_id, stamp in self._registered_at.items() if stamp < cutoff]
        for job_id in expired:
            del self._registered_at[job_id]
            self._store.pop(job_id, None)
        if expired:
            logger.info("Evicted %d expired job(s) from registry", len(expired))
        return len(expired)

    def purge_expired(self) -> int:
        with self._lock:
            return self._purge_locked()

    def register(self, job: Job) -> Job:
        with self._lock:
            self._purge_locked()
            self._store[job.id] = job
            self._registered_at[job.id] = self._clock()
        return job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            self._purge_locked()
            return self._store.get(job_id)

    def require(self, job_id: str) -> Job:
        job = self.get(job_id)
        if job is None:
            raise JobNotFound(f"Job not found or expired: {job_id}")
        return job

    def update(
        self,
        job_id: str,
        changes: Callable[[Job], Mapping[str, Any]] | None = None,
        **fields: Any,
    ) -> Optional[Job]:
        """Applies field changes to a registered job; no-op for unknown ids.

        `changes` is called with the current job under the lock, so changes
        derived from the stored record cannot race another writer.
        """
        with self._lock:
            current = self._store.get(job_id)
            if current is None:
                return None
            if changes is not None:
                fields = {**changes(current), **fields}
            updated = replace(current, **fields)
            self._store[job_id] = updated
            return updated

    def list_jobs(self) -> List[Job]:
        with self._lock:
            self._purge_locked()
            return list(self._store.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._store
