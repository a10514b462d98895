"""
Batch Orchestrator - Sequential, paced processing of work items.

Per item: scrape then transform, one outcome per item; a failing item never
stops the batch. Between two processed items the orchestrator waits a delay
drawn uniformly from the pacing profile; the wait checks the job's cancel
flag every cancel_check_interval seconds (default 1s). Cancelling only stops
new items from starting; the item in flight always finishes.

Additions over the plain loop:
- items already transformed are skipped (unless the job forces)
- failures classified network / rate_limited / store are retried a bounded
  number of times, then recorded as failed
- live progress snapshot for pollers (index/total, current item, countdown,
  running counts)

Usage:
    job = BatchJob.create(["https://www.centris.ca/fr/...", ...], profile="standard")
    summary = BatchOrchestrator(pipeline.process).run(job)
"""
import logging
import random
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional

from ingestion.errors import ConfigurationError, classify_exception
from ingestion.settings import IngestionSettings, get_settings

logger = logging.getLogger(__name__)

RETRY_BACKOFF_SECONDS = 5.0


class ItemStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    CONFLICT = "conflict"
    NOT_STARTED = "not_started"


class JobState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class WorkItem:
    """One unit of batch work: a listing URL, matricule, NEQ or company name."""
    target: str
    source_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"target": self.target, "source_type": self.source_type}


@dataclass
class ItemOutcome:
    index: int
    target: str
    status: ItemStatus = ItemStatus.PENDING
    natural_key: Optional[str] = None
    entity_id: Optional[int] = None
    error: Optional[str] = None
    reason: Optional[str] = None
    attempts: int = 0
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "target": self.target,
            "status": self.status.value,
            "natural_key": self.natural_key,
            "entity_id": self.entity_id,
            "error": self.error,
            "reason": self.reason,
            "attempts": self.attempts,
            "duration_ms": self.duration_ms,
        }


@dataclass
class BatchJob:
    """Ordered work items with per-item outcomes and a cooperative cancel flag."""
    items: List[WorkItem]
    profile: Optional[str] = None
    force: bool = False
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: JobState = JobState.PENDING
    current_index: int = -1
    delay_remaining: float = 0.0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    outcomes: List[ItemOutcome] = field(default_factory=list)
    _cancel: threading.Event = field(default_factory=threading.Event, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @classmethod
    def create(
        cls,
        targets: Iterable[Any],
        source_type: Optional[str] = None,
        profile: Optional[str] = None,
        force: bool = False,
    ) -> "BatchJob":
        items = [
            target if isinstance(target, WorkItem) else WorkItem(str(target).strip(), source_type)
            for target in targets
        ]
        items = [item for item in items if item.target]
        job = cls(items=items, profile=profile, force=force)
        job.outcomes = [ItemOutcome(index=i, target=item.target) for i, item in enumerate(items)]
        return job

    @property
    def total(self) -> int:
        return len(self.items)

    def cancel(self):
        """Request cancellation; takes effect before the next item starts."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def count(self, status: ItemStatus) -> int:
        return sum(1 for outcome in self.outcomes if outcome.status == status)

    def progress(self) -> Dict[str, Any]:
        """Snapshot for pollers."""
        with self._lock:
            current = (
                self.items[self.current_index].target
                if 0 <= self.current_index < self.total
                else None
            )
            return {
                "job_id": self.id,
                "state": self.state.value,
                "index": self.current_index + 1 if self.current_index >= 0 else 0,
                "total": self.total,
                "current_item": current,
                "delay_remaining_seconds": round(self.delay_remaining, 1),
                "succeeded": self.count(ItemStatus.SUCCEEDED),
                "failed": self.count(ItemStatus.FAILED),
                "skipped": self.count(ItemStatus.SKIPPED),
                "conflicts": self.count(ItemStatus.CONFLICT),
                "cancel_requested": self.cancelled,
            }

    def summary(self) -> Dict[str, Any]:
        return {
            "job_id": self.id,
            "state": self.state.value,
            "total": self.total,
            "succeeded": self.count(ItemStatus.SUCCEEDED),
            "failed": self.count(ItemStatus.FAILED),
            "skipped": self.count(ItemStatus.SKIPPED),
            "conflicts": self.count(ItemStatus.CONFLICT),
            "not_started": self.count(ItemStatus.NOT_STARTED),
            "cancelled": self.state == JobState.CANCELLED,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
        }

    def _update(self, **changes):
        with self._lock:
            for name, value in changes.items():
                setattr(self, name, value)


ProcessItem = Callable[[str, Optional[str], bool], Dict[str, Any]]


class BatchOrchestrator:
    """
    Runs a BatchJob one item at a time.

    process_item(target, source_type, force) performs scrape + transform and
    raises on failure. is_transformed(item) lets the orchestrator skip work
    already done. sleep / clock / rng are injectable for tests.
    """

    def __init__(
        self,
        process_item: ProcessItem,
        settings: Optional[IngestionSettings] = None,
        is_transformed: Optional[Callable[[WorkItem], bool]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.process_item = process_item
        self.settings = settings or get_settings()
        self.is_transformed = is_transformed
        self.sleep = sleep
        self.clock = clock
        self.rng = rng or random.Random()

    def run(self, job: BatchJob) -> Dict[str, Any]:
        """Process every item of job (until cancelled) and return its summary."""
        profile = self.settings.pacing_profile(job.profile)
        max_attempts = 1 + max(self.settings.item_retries, 0)

        logger.info("=" * 70)
        logger.info(
            f"Batch {job.id}: {job.total} items, pacing {profile.name} "
            f"({profile.min_seconds:.0f}-{profile.max_seconds:.0f}s)"
        )
        logger.info("=" * 70)

        job._update(state=JobState.RUNNING, started_at=datetime.utcnow())

        try:
            for index, item in enumerate(job.items):
                if job.cancelled:
                    break

                job._update(current_index=index, delay_remaining=0.0)
                outcome = job.outcomes[index]
                self._run_item(job, item, outcome, max_attempts)

                is_last = index == job.total - 1
                if is_last or job.cancelled or outcome.status == ItemStatus.SKIPPED:
                    continue
                delay = self.rng.uniform(profile.min_seconds, profile.max_seconds)
                logger.info(f"Waiting {delay:.0f}s before next item ({index + 1}/{job.total} done)")
                self._wait(job, delay)
        except ConfigurationError:
            job._update(state=JobState.FAILED, finished_at=datetime.utcnow())
            raise

        for outcome in job.outcomes:
            if outcome.status == ItemStatus.PENDING:
                outcome.status = ItemStatus.NOT_STARTED

        final_state = JobState.CANCELLED if job.cancelled else JobState.COMPLETED
        job._update(state=final_state, finished_at=datetime.utcnow(), delay_remaining=0.0)

        summary = job.summary()
        logger.info("=" * 70)
        logger.info(
            f"Batch {job.id} {final_state.value}: {summary['succeeded']} succeeded, "
            f"{summary['failed']} failed, {summary['skipped']} skipped, "
            f"{summary['conflicts']} conflicts, {summary['not_started']} not started"
        )
        logger.info("=" * 70)
        return summary

    def _run_item(self, job: BatchJob, item: WorkItem, outcome: ItemOutcome, max_attempts: int):
        label = f"[{outcome.index + 1}/{job.total}] {item.target}"

        if not job.force and self.is_transformed is not None:
            try:
                already = self.is_transformed(item)
            except Exception as e:
                already = False
                logger.debug(f"{label} could not check transformed state: {e}")
            if already:
                outcome.status = ItemStatus.SKIPPED
                logger.info(f"{label} already transformed, skipping")
                return

        outcome.status = ItemStatus.RUNNING
        started = self.clock()

        for attempt in range(1, max_attempts + 1):
            outcome.attempts = attempt
            try:
                result = self.process_item(item.target, item.source_type, job.force)
            except ConfigurationError:
                outcome.status = ItemStatus.FAILED
                raise
            except Exception as e:
                reason = classify_exception(e)
                outcome.error = str(e)
                outcome.reason = reason.value
                outcome.natural_key = getattr(e, "natural_key", None) or outcome.natural_key
                retry = reason.retryable and attempt < max_attempts and not job.cancelled
                if retry:
                    logger.warning(
                        f"{label} failed ({reason.value}), retrying "
                        f"(attempt {attempt + 1}/{max_attempts}): {e}"
                    )
                    if self._wait(job, RETRY_BACKOFF_SECONDS * attempt):
                        continue
                outcome.status = ItemStatus.FAILED
                logger.error(f"{label} failed ({reason.value}): {e}")
                break
            else:
                transform = (result or {}).get("transform") or {}
                staged = (result or {}).get("staged") or {}
                outcome.natural_key = staged.get("source_native_id")
                outcome.error = None
                outcome.reason = None
                if transform.get("status") == "conflict":
                    outcome.status = ItemStatus.CONFLICT
                    outcome.entity_id = transform.get("existing_entity_id")
                    logger.info(f"{label} exists as entity {outcome.entity_id} (not forced)")
                else:
                    outcome.status = ItemStatus.SUCCEEDED
                    outcome.entity_id = transform.get("entity_id")
                    logger.info(f"{label} done (entity {outcome.entity_id})")
                break

        outcome.duration_ms = int((self.clock() - started) * 1000)

    def _wait(self, job: BatchJob, seconds: float) -> bool:
        """
        Sleep for seconds in cancel-check ticks.

        Returns False as soon as the job is cancelled.
        """
        interval = self.settings.cancel_check_interval
        deadline = self.clock() + seconds
        remaining = seconds
        while remaining > 0:
            if job.cancelled:
                job._update(delay_remaining=0.0)
                logger.info(f"Batch {job.id} cancelled during delay")
                return False
            job._update(delay_remaining=remaining)
            self.sleep(min(interval, remaining))
            remaining = deadline - self.clock()
        job._update(delay_remaining=0.0)
        return True


FINISHED_STATES = (JobState.COMPLETED, JobState.CANCELLED, JobState.FAILED)

# Finished jobs kept for polling; older ones are evicted as new jobs arrive
MAX_FINISHED_JOBS = 50


class JobRegistry:
    """In-process registry of batch jobs for the operator API."""

    def __init__(self, max_finished: int = MAX_FINISHED_JOBS):
        self.max_finished = max_finished
        self._jobs: Dict[str, BatchJob] = {}
        self._threads: Dict[str, threading.Thread] = {}
        self._lock = threading.Lock()

    def add(self, job: BatchJob, thread: Optional[threading.Thread] = None):
        with self._lock:
            self._jobs[job.id] = job
            if thread is not None:
                self._threads[job.id] = thread
            self._evict_finished()

    def _evict_finished(self):
        finished = sorted(
            (job for job in self._jobs.values() if job.state in FINISHED_STATES),
            key=lambda job: job.finished_at or datetime.min,
        )
        for job in finished[:max(len(finished) - self.max_finished, 0)]:
            del self._jobs[job.id]
            self._threads.pop(job.id, None)
            logger.debug(f"Evicted finished batch {job.id}")

    def get(self, job_id: str) -> Optional[BatchJob]:
        with self._lock:
            return self._jobs.get(job_id)

    def is_running(self, job_id: str) -> bool:
        with self._lock:
            thread = self._threads.get(job_id)
        return thread is not None and thread.is_alive()

    def clear(self):
        with self._lock:
            self._jobs.clear()
            self._threads.clear()


_registry = None


def get_job_registry() -> JobRegistry:
    """Get the global job registry."""
    global _registry
    if _registry is None:
        _registry = JobRegistry()
    return _registry


__all__ = [
    "BatchJob",
    "BatchOrchestrator",
    "ItemOutcome",
    "ItemStatus",
    "JobRegistry",
    "JobState",
    "WorkItem",
    "get_job_registry",
]
