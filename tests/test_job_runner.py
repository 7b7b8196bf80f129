from __future__ import annotations

import threading
import time
from collections.abc import Callable
from typing import Any

import pytest
from django.utils import timezone

from drawings.job_runner import TrainingJobRunner
from drawings.models import TrainingJob
from ml.development.dense_classifier import TrainingPreconditionError


class ImmediateThread:
    def __init__(self, runner: TrainingJobRunner, target: Callable[[str], None], args: tuple[str, ...]) -> None:
        self._runner = runner
        self._target = target
        self._args = args

    def start(self) -> None:
        job_id = self._args[0]
        assert self._runner.is_running(job_id)
        self._target(*self._args)
        assert not self._runner.is_running(job_id)


class FakeResult:
    def __init__(self, labels: list[str], sample_count: int) -> None:
        self.labels = labels
        self.sample_count = sample_count


class FakeJob:
    Status = TrainingJob.Status

    def __init__(self, job_id: str) -> None:
        self.id = job_id
        self.status = TrainingJob.Status.PENDING
        self.error = ""
        self.labels: list[str] = []
        self.sample_count = 0
        self.created_at = timezone.now()
        self.started_at = None
        self.finished_at = None
        self.updated_at = None
        self.status_transitions: list[str] = []

    def save(self, update_fields: list[str] | None = None) -> None:
        if update_fields and "status" in update_fields:
            self.status_transitions.append(self.status)
        self.updated_at = timezone.now()


class FakeQuerySet:
    def __init__(self, job: FakeJob) -> None:
        self._job = job

    def update(self, **fields: Any) -> None:
        for key, value in fields.items():
            setattr(self._job, key, value)
            if key == "status":
                self._job.status_transitions.append(value)


class FakeManager:
    def __init__(self) -> None:
        self.jobs: dict[str, FakeJob] = {}

    def create(self, id: str) -> FakeJob:
        self.jobs[id] = FakeJob(id)
        return self.jobs[id]

    def get(self, pk: str) -> FakeJob:
        if pk not in self.jobs:
            raise FakeModel.DoesNotExist
        return self.jobs[pk]

    def filter(self, pk: str) -> FakeQuerySet:
        return FakeQuerySet(self.jobs[pk])


class FakeModel:
    Status = TrainingJob.Status
    DoesNotExist = type("DoesNotExist", (Exception,), {})
    objects: FakeManager


def make_runner(trainer: Callable[[], Any]) -> tuple[TrainingJobRunner, FakeManager]:
    FakeModel.objects = FakeManager()
    runner = TrainingJobRunner(model=FakeModel, trainer=trainer)
    runner.thread_factory = lambda target, args: ImmediateThread(runner, target, args)
    return runner, FakeModel.objects


@pytest.mark.django_db
def test_successful_job_is_marked_done() -> None:
    runner, manager = make_runner(lambda: FakeResult(["cat", "dog"], 6))

    job = runner.submit()

    stored = manager.jobs[job.id]
    assert stored.status_transitions == [TrainingJob.Status.RUNNING, TrainingJob.Status.DONE]
    assert stored.labels == ["cat", "dog"]
    assert stored.sample_count == 6
    assert stored.started_at is not None
    assert stored.finished_at is not None
    assert stored.error == ""


@pytest.mark.django_db
def test_failed_job_records_reason() -> None:
    def trainer() -> Any:
        raise TrainingPreconditionError("Insufficient number of unique labels: 1 (need at least 2)")

    runner, manager = make_runner(trainer)

    job = runner.submit()

    stored = manager.jobs[job.id]
    assert stored.status == TrainingJob.Status.ERROR
    assert stored.status_transitions == [TrainingJob.Status.RUNNING, TrainingJob.Status.ERROR]
    assert stored.error.startswith("TrainingPreconditionError: Insufficient")
    assert stored.finished_at is not None


@pytest.mark.django_db
def test_missing_job_is_ignored() -> None:
    calls = []
    runner, _ = make_runner(lambda: calls.append("trained"))

    runner.run_job("nope")

    assert calls == []
    assert not runner.is_running("nope")


@pytest.mark.django_db
def test_job_ids_are_unique() -> None:
    runner, manager = make_runner(lambda: FakeResult(["a", "b"], 2))
    first = runner.submit()
    second = runner.submit()
    assert first.id != second.id
    assert len(manager.jobs) == 2


def test_overlapping_submissions_train_one_at_a_time() -> None:
    active = 0
    peak = 0
    counter_lock = threading.Lock()

    def slow_trainer() -> FakeResult:
        nonlocal active, peak
        with counter_lock:
            active += 1
            peak = max(peak, active)
        time.sleep(0.2)
        with counter_lock:
            active -= 1
        return FakeResult(["a", "b"], 2)

    FakeModel.objects = FakeManager()
    threads: list[threading.Thread] = []

    def tracked_thread(target: Callable[[str], None], args: tuple[str, ...]) -> threading.Thread:
        thread = threading.Thread(target=target, args=args)
        threads.append(thread)
        return thread

    runner = TrainingJobRunner(model=FakeModel, trainer=slow_trainer, thread_factory=tracked_thread)

    first = runner.submit()
    second = runner.submit()
    for thread in threads:
        thread.join(timeout=5)

    assert peak == 1
    for job in (first, second):
        assert FakeModel.objects.jobs[job.id].status == TrainingJob.Status.DONE
        assert not runner.is_running(job.id)


@pytest.mark.django_db
def test_recover_interrupted_fails_running_jobs() -> None:
    running = TrainingJob.objects.create(id="a" * 32, status=TrainingJob.Status.RUNNING)
    done = TrainingJob.objects.create(id="b" * 32, status=TrainingJob.Status.DONE)

    marked = TrainingJobRunner().recover_interrupted()

    running.refresh_from_db()
    done.refresh_from_db()
    assert marked == 1
    assert running.status == TrainingJob.Status.ERROR
    assert "interrupted" in running.error
    assert done.status == TrainingJob.Status.DONE
