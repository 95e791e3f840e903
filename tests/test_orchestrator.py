import json

import pytest

from scribe_batch.errors import JobNotFound, TransportFailure, UpstreamRateLimited, UpstreamUnknown
from scribe_batch.llm.types import GenerationRequest, Message
from scribe_batch.models import ExecutionMode, JobStatus, to_jsonable
from scribe_batch.orchestrator import JobOrchestrator

IDS = ["intro-1", "chapter-2", "conclusion-3"]
TEXT = "# Part\n\n" + " ".join(["finding"] * 30)


def _requests():
    return [GenerationRequest(i, [Message("user", f"Write {i}")], "claude-test") for i in IDS]


class FakeProvider:
    name = "fake"

    def __init__(self, batch_error=None, status=None, results_text=""):
        self.batch_error = batch_error
        self.status = status or {"processing_status": "in_progress"}
        self.results_text = results_text
        self.messages = []

    def create_batch(self, entries):
        if self.batch_error is not None:
            raise self.batch_error
        return {"id": "msgbatch_9", "processing_status": "in_progress"}

    def retrieve_batch(self, batch_id):
        return self.status

    def fetch_results(self, results_url):
        return self.results_text

    def create_message(self, params):
        self.messages.append(params)
        return {"content": [{"type": "text", "text": TEXT}], "usage": {"output_tokens": 40}}


def _orchestrator(provider, mode="auto"):
    settings = {"execution": {"mode": mode, "pacing_seconds": 0}}
    return JobOrchestrator(settings, provider=provider, sleep=lambda seconds: None)


def test_submit_uses_batch_path():
    orchestrator = _orchestrator(FakeProvider())
    submission = orchestrator.submit_job(_requests(), "Urban Heat Islands", "APA", "thesis")

    assert submission.job_id == "msgbatch_9"
    assert submission.mode is ExecutionMode.BATCH
    assert submission.status is JobStatus.PROCESSING
    assert submission.request_count == 3
    assert submission.target_word_count == 7500
    assert "7,500-word" in submission.message


@pytest.mark.parametrize("error", [UpstreamUnknown("boom", status=503), TransportFailure("unreachable")])
def test_auto_mode_falls_back_to_sequential(error):
    provider = FakeProvider(batch_error=error)
    orchestrator = _orchestrator(provider)

    submission = orchestrator.submit_job(_requests(), "T")

    assert submission.mode is ExecutionMode.SEQUENTIAL
    assert submission.status is JobStatus.COMPLETED
    assert submission.job_id.startswith("seq_batch_")
    assert len(provider.messages) == 3


def test_rate_limit_is_not_a_fallback_trigger():
    orchestrator = _orchestrator(FakeProvider(batch_error=UpstreamRateLimited("slow", status=429)))
    with pytest.raises(UpstreamRateLimited):
        orchestrator.submit_job(_requests(), "T")


def test_batch_mode_never_falls_back():
    provider = FakeProvider(batch_error=UpstreamUnknown("boom", status=500))
    with pytest.raises(UpstreamUnknown):
        _orchestrator(provider, mode="batch").submit_job(_requests(), "T")
    assert provider.messages == []


def test_sequential_job_status_comes_from_registry():
    orchestrator = _orchestrator(FakeProvider(), mode="sequential")
    submission = orchestrator.submit_job(_requests(), "T")

    view = orchestrator.get_job_status(submission.job_id)

    assert view.status is JobStatus.COMPLETED
    assert [r.custom_id for r in view.results] == IDS
    assert (view.request_count, view.completed_count, view.failed_count) == (3, 3, 0)
    assert view.actual_word_count == 3 * 32
    assert view.stats.success_rate == 100.0
    assert orchestrator.wait(submission.job_id).job_id == submission.job_id


def test_unknown_sequential_job_is_not_found():
    with pytest.raises(JobNotFound):
        _orchestrator(FakeProvider()).get_job_status("seq_batch_1700000000000_abcdefghi")


def test_batch_job_status_scenario():
    provider = FakeProvider(status={"processing_status": "in_progress", "request_counts": {"succeeded": 2, "errored": 1}})
    orchestrator = _orchestrator(provider)
    submission = orchestrator.submit_job(_requests(), "T")

    view = orchestrator.get_job_status(submission.job_id)

    assert (view.completed_count, view.failed_count, view.request_count) == (3, 1, 3)
    assert view.target_word_count == 7500


def test_completed_batch_returns_one_result_per_request():
    line = json.dumps(
        {
            "custom_id": "chapter-2",
            "result": {"type": "succeeded", "message": {"content": [{"type": "text", "text": TEXT}]}},
        }
    )
    provider = FakeProvider(
        status={"processing_status": "ended", "request_counts": {"succeeded": 1}, "results_url": "u"},
        results_text=line + "\nnot json\n",
    )
    orchestrator = _orchestrator(provider)
    submission = orchestrator.submit_job(_requests(), "T")

    view = orchestrator.get_job_status(submission.job_id)
    payload = to_jsonable(view)

    assert [r["custom_id"] for r in payload["results"]] == IDS
    assert [r["status"] for r in payload["results"]] == ["error", "success", "error"]
    assert payload["status"] == "completed"


def test_estimate_uses_configured_words_per_section():
    settings = {"generation": {"words_per_section": 1000}}
    orchestrator = JobOrchestrator(settings, provider=FakeProvider())
    assert orchestrator.estimate(4).target_words == 4000


def test_invalid_mode_is_rejected():
    with pytest.raises(ValueError):
        _orchestrator(FakeProvider()).submit_job(_requests(), "T", mode="parallel")
