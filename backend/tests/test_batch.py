"""
Tests for the batch orchestrator.

A fake clock whose sleep advances time stands in for real waiting, so the
pacing, cancellation and retry rules are checked without any delay.
"""

from datetime import datetime

import pytest
import requests

from ingestion.batch import (
    BatchJob,
    BatchOrchestrator,
    ItemStatus,
    JobRegistry,
    JobState,
    WorkItem,
    get_job_registry,
)
from ingestion.errors import ConfigurationError, FailureReason, NavigationTimeout, TransientStoreFailure
from ingestion.settings import IngestionSettings


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []
        self.on_sleep = None

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds
        if self.on_sleep:
            self.on_sleep(len(self.sleeps))


class FakeProcess:
    """process_item stand-in; per-target list of results / exceptions."""

    def __init__(self, script=None):
        self.script = {target: list(steps) for target, steps in (script or {}).items()}
        self.calls = []

    def __call__(self, target, source_type, force):
        self.calls.append(target)
        steps = self.script.get(target)
        step = steps.pop(0) if steps else None
        if isinstance(step, Exception):
            raise step
        if step is not None:
            return step
        return {
            "staged": {"source_native_id": target},
            "transform": {"status": "success", "entity_id": len(self.calls)},
        }


def paced(tmp_path, seconds, retries=1):
    return IngestionSettings(
        config_path=str(tmp_path / "missing.yaml"),
        overrides={"pacing": {
            "item_retries": retries,
            "profiles": {"standard": {"min_seconds": seconds, "max_seconds": seconds}},
        }},
    )


@pytest.fixture
def clock():
    return FakeClock()


def orchestrator(process, settings, clock, **kwargs):
    return BatchOrchestrator(process, settings=settings, sleep=clock.sleep, clock=clock, **kwargs)


# =============================================================================
# Outcomes
# =============================================================================

class TestOutcomes:
    def test_failure_does_not_stop_batch(self, settings, clock):
        process = FakeProcess({"b": [ValueError("parse blew up")]})
        job = BatchJob.create(["a", "b", "c"])

        summary = orchestrator(process, settings, clock).run(job)

        assert [o["status"] for o in summary["outcomes"]] == ["succeeded", "failed", "succeeded"]
        assert summary["outcomes"][1]["error"] == "parse blew up"
        assert summary["outcomes"][1]["reason"] == "unknown"
        assert summary["outcomes"][1]["attempts"] == 1
        assert summary["state"] == "completed"
        assert process.calls == ["a", "b", "c"]

    def test_conflict_outcome(self, settings, clock):
        process = FakeProcess({"a": [{
            "staged": {"source_native_id": "a"},
            "transform": {"status": "conflict", "existing_entity_id": 7},
        }]})
        summary = orchestrator(process, settings, clock).run(BatchJob.create(["a"]))
        assert summary["outcomes"][0]["status"] == "conflict"
        assert summary["outcomes"][0]["entity_id"] == 7
        assert summary["conflicts"] == 1

    def test_blank_targets_dropped(self):
        job = BatchJob.create(["a", "  ", ""])
        assert [item.target for item in job.items] == ["a"]

    def test_work_items_kept(self):
        job = BatchJob.create([WorkItem("9739-08-6546-0-000-0000", "evaluation_roll")])
        assert job.items[0].source_type == "evaluation_roll"


# =============================================================================
# Pacing and cancellation
# =============================================================================

class TestPacing:
    def test_no_delay_after_last_item(self, tmp_path, clock):
        orchestrator(FakeProcess(), paced(tmp_path, 10), clock).run(BatchJob.create(["a", "b"]))
        assert sum(clock.sleeps) == 10
        assert all(s <= 1.0 for s in clock.sleeps)

    def test_cancel_seen_within_one_second(self, tmp_path, clock):
        job = BatchJob.create(["a", "b", "c"])
        cancelled_at = {}

        def cancel_after_five(count):
            if count == 5:
                job.cancel()
                cancelled_at["now"] = clock.now

        clock.on_sleep = cancel_after_five
        process = FakeProcess()

        summary = orchestrator(process, paced(tmp_path, 120), clock).run(job)

        assert clock.now - cancelled_at["now"] <= 1.0
        assert process.calls == ["a"]
        assert summary["state"] == "cancelled"
        assert summary["cancelled"] is True
        assert [o["status"] for o in summary["outcomes"]] == ["succeeded", "not_started", "not_started"]
        assert summary["not_started"] == 2

    def test_cancel_before_start(self, settings, clock):
        job = BatchJob.create(["a", "b"])
        job.cancel()
        summary = orchestrator(FakeProcess(), settings, clock).run(job)
        assert summary["not_started"] == 2
        assert job.state == JobState.CANCELLED

    def test_in_flight_item_finishes(self, settings, clock):
        job = BatchJob.create(["a", "b"])

        def process(target, source_type, force):
            job.cancel()
            return {"staged": {"source_native_id": target}, "transform": {"status": "success", "entity_id": 1}}

        summary = orchestrator(process, settings, clock).run(job)
        assert [o["status"] for o in summary["outcomes"]] == ["succeeded", "not_started"]

    def test_unknown_profile_aborts(self, settings, clock):
        with pytest.raises(ConfigurationError):
            orchestrator(FakeProcess(), settings, clock).run(BatchJob.create(["a"], profile="reckless"))


# =============================================================================
# Retries and skips
# =============================================================================

def http_error(status):
    response = requests.Response()
    response.status_code = status
    return requests.HTTPError(f"{status} Error", response=response)


class TestRetries:
    def test_network_failure_retried(self, settings, clock):
        process = FakeProcess({"a": [requests.ConnectionError("reset by peer")]})

        summary = orchestrator(process, settings, clock).run(BatchJob.create(["a"]))

        outcome = summary["outcomes"][0]
        assert outcome["status"] == "succeeded"
        assert outcome["attempts"] == 2
        assert outcome["error"] is None
        assert sum(clock.sleeps) == 5.0

    def test_store_failure_retried(self, settings, clock):
        process = FakeProcess({"a": [TransientStoreFailure("db hiccup", "a")]})

        summary = orchestrator(process, settings, clock).run(BatchJob.create(["a"]))

        outcome = summary["outcomes"][0]
        assert process.calls == ["a", "a"]
        assert outcome["status"] == "succeeded"
        assert outcome["attempts"] == 2
        assert outcome["reason"] is None
        assert sum(clock.sleeps) == 5.0

    def test_store_failure_escalated_after_retries(self, settings, clock):
        process = FakeProcess({"a": [
            TransientStoreFailure("db down", "a"), TransientStoreFailure("db down", "a"),
        ]})

        outcome = orchestrator(process, settings, clock).run(BatchJob.create(["a"]))["outcomes"][0]

        assert outcome["status"] == "failed"
        assert outcome["reason"] == "store"
        assert outcome["attempts"] == 2
        assert outcome["error"] == "[a] db down"

    def test_rate_limited_retries_exhausted(self, settings, clock):
        process = FakeProcess({"a": [http_error(429), http_error(429)]})

        outcome = orchestrator(process, settings, clock).run(BatchJob.create(["a"]))["outcomes"][0]

        assert outcome["status"] == "failed"
        assert outcome["reason"] == "rate_limited"
        assert outcome["attempts"] == 2

    def test_cancel_during_backoff_ends_item(self, settings, clock):
        process = FakeProcess({"a": [requests.ConnectionError("reset by peer")]})
        job = BatchJob.create(["a", "b"])
        clock.on_sleep = lambda count: job.cancel()

        summary = orchestrator(process, settings, clock).run(job)

        assert process.calls == ["a"]
        assert summary["outcomes"][0]["status"] == "failed"
        assert summary["outcomes"][0]["reason"] == "network"
        assert summary["outcomes"][0]["attempts"] == 1
        assert summary["outcomes"][1]["status"] == "not_started"
        assert summary["state"] == "cancelled"

    def test_site_structure_failure_not_retried(self, settings, clock):
        error = NavigationTimeout("submit_search", FailureReason.SITE_STRUCTURE, "9739-08-6546-0-000-0000")
        process = FakeProcess({"a": [error]})

        outcome = orchestrator(process, settings, clock).run(BatchJob.create(["a"]))["outcomes"][0]

        assert outcome["status"] == "failed"
        assert outcome["reason"] == "site_structure"
        assert outcome["attempts"] == 1
        assert outcome["natural_key"] == "9739-08-6546-0-000-0000"
        assert clock.sleeps == []

    def test_retries_disabled(self, tmp_path, clock):
        process = FakeProcess({"a": [requests.ConnectionError("reset")]})
        outcome = orchestrator(process, paced(tmp_path, 0, retries=0), clock).run(
            BatchJob.create(["a"])
        )["outcomes"][0]
        assert outcome["status"] == "failed"
        assert outcome["attempts"] == 1

    def test_configuration_error_aborts_run(self, settings, clock):
        process = FakeProcess({"b": [ConfigurationError("endpoint missing")]})
        job = BatchJob.create(["a", "b", "c"])

        with pytest.raises(ConfigurationError):
            orchestrator(process, settings, clock).run(job)

        assert job.state == JobState.FAILED
        assert process.calls == ["a", "b"]


class TestSkip:
    def test_transformed_items_skipped_without_delay(self, tmp_path, clock):
        process = FakeProcess()
        summary = orchestrator(
            process, paced(tmp_path, 10), clock, is_transformed=lambda item: item.target == "a"
        ).run(BatchJob.create(["a", "b"]))

        assert [o["status"] for o in summary["outcomes"]] == ["skipped", "succeeded"]
        assert process.calls == ["b"]
        assert clock.sleeps == []

    def test_force_ignores_transformed_state(self, settings, clock):
        process = FakeProcess()
        orchestrator(process, settings, clock, is_transformed=lambda item: True).run(
            BatchJob.create(["a"], force=True)
        )
        assert process.calls == ["a"]


# =============================================================================
# Progress and registry
# =============================================================================

class TestProgress:
    def test_snapshot_during_item(self, settings, clock):
        job = BatchJob.create(["a", "b"])
        snapshots = []

        def process(target, source_type, force):
            snapshots.append(job.progress())
            if target == "a":
                raise ValueError("boom")
            return {"staged": {"source_native_id": target}, "transform": {"status": "success", "entity_id": 1}}

        orchestrator(process, settings, clock).run(job)

        assert snapshots[1]["index"] == 2
        assert snapshots[1]["total"] == 2
        assert snapshots[1]["current_item"] == "b"
        assert snapshots[1]["failed"] == 1
        assert snapshots[1]["state"] == "running"
        assert job.progress()["succeeded"] == 1

    def test_registry(self):
        job = BatchJob.create(["a"])
        registry = get_job_registry()
        registry.add(job)
        assert registry.get(job.id) is job
        assert not registry.is_running(job.id)
        assert registry.get("missing") is None

    def test_registry_evicts_oldest_finished_jobs(self):
        registry = JobRegistry(max_finished=1)
        running = BatchJob.create(["a"])
        running.state = JobState.RUNNING
        old, recent = BatchJob.create(["b"]), BatchJob.create(["c"])
        for day, job in ((1, old), (2, recent)):
            job.state = JobState.COMPLETED
            job.finished_at = datetime(2024, 1, day)

        for job in (running, old, recent):
            registry.add(job)

        assert registry.get(running.id) is running
        assert registry.get(recent.id) is recent
        assert registry.get(old.id) is None
