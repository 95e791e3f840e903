import json

import pytest

from scribe_batch.batch import BatchOrchestrator, map_status
from scribe_batch.errors import JobTimeout, UpstreamAuthFailure, UpstreamRateLimited, UpstreamUnknown
from scribe_batch.llm.types import GenerationRequest, JobMetadata, Message
from scribe_batch.models import ExecutionMode, JobStatus, ResultStatus
from scribe_batch.prompts import enrich_all
from scribe_batch.registry import JobRegistry

IDS = ["intro-1", "chapter-2", "conclusion-3"]
LONG_TEXT = "# Section\n\n" + " ".join(["scholarly"] * 40)


def _enriched(ids=IDS):
    requests = [GenerationRequest(i, [Message("user", f"Write {i}")], "claude-test") for i in ids]
    return enrich_all(requests, "Urban Heat Islands", "APA")


def _line(custom_id, text=LONG_TEXT, tokens=90):
    message = {"content": [{"type": "text", "text": text}], "usage": {"output_tokens": tokens}}
    return json.dumps({"custom_id": custom_id, "result": {"type": "succeeded", "message": message}})


class FakeBatchProvider:
    name = "fake"

    def __init__(self, statuses=None, results_text=""):
        self.statuses = list(statuses or [])
        self.results_text = results_text
        self.submitted = []
        self.fetched = []

    def create_batch(self, entries):
        self.submitted.append(entries)
        return {"id": "msgbatch_1", "processing_status": "in_progress", "created_at": "2024-10-01T00:00:00+00:00"}

    def retrieve_batch(self, batch_id):
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return status

    def fetch_results(self, results_url):
        self.fetched.append(results_url)
        return self.results_text


def _orchestrator(provider, sleeps=None, clock=None):
    kwargs = {}
    if sleeps is not None:
        kwargs["sleep"] = sleeps.append
    if clock is not None:
        kwargs["clock"] = clock
    return BatchOrchestrator(provider, JobRegistry(ttl_seconds=None), **kwargs)


@pytest.mark.parametrize(
    "upstream,expected",
    [
        ("in_progress", JobStatus.PROCESSING),
        ("canceling", JobStatus.PROCESSING),
        ("ended", JobStatus.COMPLETED),
        ("failed", JobStatus.PENDING),
        ("expired", JobStatus.PENDING),
        (None, JobStatus.PENDING),
    ],
)
def test_status_mapping_is_total(upstream, expected):
    status, message = map_status(upstream, 7500)
    assert status is expected
    assert message


def test_processing_message_mentions_target_words():
    _, message = map_status("in_progress", 7500)
    assert "7,500-word" in message
    assert map_status("ended")[1] == "Your project is ready for review."
    assert map_status("bogus")[1] == "Your project is queued."


def test_submit_registers_job():
    provider = FakeBatchProvider()
    orchestrator = _orchestrator(provider)

    job = orchestrator.submit(_enriched(), JobMetadata("Urban Heat Islands"))

    assert job.id == "msgbatch_1"
    assert job.mode is ExecutionMode.BATCH
    assert job.status is JobStatus.PROCESSING
    assert job.target_word_count == 7500
    assert orchestrator.registry.get("msgbatch_1") is job
    assert [e["custom_id"] for e in provider.submitted[0]] == IDS


def test_submit_without_id_is_upstream_unknown():
    provider = FakeBatchProvider()
    provider.create_batch = lambda entries: {"processing_status": "in_progress"}
    with pytest.raises(UpstreamUnknown):
        _orchestrator(provider).submit(_enriched(), JobMetadata("T"))


def test_poll_recomputes_counts_from_outcomes():
    provider = FakeBatchProvider([{"processing_status": "in_progress", "request_counts": {"succeeded": 2, "errored": 1}}])
    orchestrator = _orchestrator(provider)
    orchestrator.submit(_enriched(), JobMetadata("T"))

    view = orchestrator.poll("msgbatch_1")

    assert view.status is JobStatus.PROCESSING
    assert view.completed_count == 3
    assert view.failed_count == 1
    assert view.request_count == 3
    assert view.results is None
    assert provider.fetched == []


def test_poll_fetches_and_reconciles_results_when_ended():
    results_text = "\n".join(
        [
            _line("conclusion-3"),
            json.dumps({"custom_id": "intro-1", "result": {"type": "errored", "error": {"message": "overloaded"}}}),
        ]
    )
    status = {
        "processing_status": "ended",
        "request_counts": {"succeeded": 1, "errored": 1, "processing": 0},
        "results_url": "https://files/results",
        "ended_at": "2024-10-01T00:20:00+00:00",
    }
    provider = FakeBatchProvider([status], results_text)
    orchestrator = _orchestrator(provider)
    orchestrator.submit(_enriched(), JobMetadata("T"))

    view = orchestrator.poll("msgbatch_1")

    assert view.status is JobStatus.COMPLETED
    assert [r.custom_id for r in view.results] == IDS
    intro, chapter, conclusion = view.results
    assert intro.status is ResultStatus.ERROR and intro.word_count == 0
    assert chapter.status is ResultStatus.ERROR
    assert conclusion.ok and conclusion.word_count == 42
    assert view.actual_word_count == 42
    assert view.stats.total_tokens == 90
    assert view.completed_at == "2024-10-01T00:20:00+00:00"
    assert orchestrator.registry.get("msgbatch_1").status is JobStatus.COMPLETED


def test_poll_unknown_job_still_maps_status():
    provider = FakeBatchProvider([{"processing_status": "canceling", "request_counts": {"canceled": 2, "processing": 1}}])
    view = _orchestrator(provider).poll("msgbatch_other")
    assert view.status is JobStatus.PROCESSING
    assert view.request_count == 3
    assert view.failed_count == 2
    assert view.target_word_count is None


def test_wait_backs_off_on_retryable_errors():
    sleeps = []
    statuses = [
        UpstreamRateLimited("slow down", status=429),
        UpstreamUnknown("boom", status=500),
        {"processing_status": "in_progress"},
        {"processing_status": "ended", "results_url": "u"},
    ]
    provider = FakeBatchProvider(statuses, _line("intro-1"))
    orchestrator = _orchestrator(provider, sleeps)
    seen = []

    view = orchestrator.wait_for_completion("msgbatch_1", interval=2, max_consecutive_errors=3, on_progress=seen.append)

    assert view.status is JobStatus.COMPLETED
    assert sleeps == [2, 4, 2]
    assert [v.status for v in seen] == [JobStatus.PROCESSING, JobStatus.COMPLETED]


def test_wait_gives_up_after_consecutive_errors():
    provider = FakeBatchProvider([UpstreamUnknown("boom", status=503)])
    with pytest.raises(UpstreamUnknown):
        _orchestrator(provider, []).wait_for_completion("msgbatch_1", interval=1, max_consecutive_errors=3)


def test_wait_reraises_non_retryable_errors():
    sleeps = []
    provider = FakeBatchProvider([UpstreamAuthFailure("bad key", status=401)])
    with pytest.raises(UpstreamAuthFailure):
        _orchestrator(provider, sleeps).wait_for_completion("msgbatch_1")
    assert sleeps == []


def test_wait_times_out():
    ticks = iter([0, 5, 11])
    provider = FakeBatchProvider([{"processing_status": "in_progress"}])
    orchestrator = _orchestrator(provider, [], clock=lambda: next(ticks))
    with pytest.raises(JobTimeout):
        orchestrator.wait_for_completion("msgbatch_1", interval=5, max_wait=10)


def test_inspect_summarizes_first_line():
    provider = FakeBatchProvider([{"processing_status": "ended", "results_url": "u"}], _line("intro-1") + "\n")
    report = _orchestrator(provider).inspect("msgbatch_1")

    assert report["upstream"]["processing_status"] == "ended"
    summary = report["results"]
    assert summary["line_count"] == 1
    assert summary["sample"]["custom_id"] == "intro-1"
    assert summary["sample"]["result_type"] == "succeeded"
    assert summary["sample"]["output_tokens"] == 90
    assert summary["sample"]["content_preview"].startswith("# Section")


def test_job_with_zulu_created_at_survives_until_results():
    now = [1727203044.0]
    provider = FakeBatchProvider([{"processing_status": "ended", "results_url": "u"}], "")
    provider.create_batch = lambda entries: {
        "id": "msgbatch_z",
        "processing_status": "in_progress",
        "created_at": "2024-09-24T18:37:24.100435Z",
    }
    registry = JobRegistry(ttl_seconds=86400, clock=lambda: now[0])
    orchestrator = BatchOrchestrator(provider, registry)
    orchestrator.submit(_enriched(IDS[:2]), JobMetadata("T"))

    now[0] += 60
    view = orchestrator.poll("msgbatch_z")

    assert "msgbatch_z" in registry
    assert view.target_word_count == 5000
    assert [r.custom_id for r in view.results] == IDS[:2]
    assert all(r.status is ResultStatus.ERROR for r in view.results)
