"""
background training jobs

a TrainingJob row is the only thing a client ever sees of a training run:
submit() creates it as pending and hands the id to a worker thread, the worker
moves it through running to done or error. one training runs at a time; jobs
submitted while another is training stay pending until the trainer is free.
"""
from __future__ import annotations

import logging
import threading
import uuid
from typing import Callable, Optional

from django.db import close_old_connections
from django.utils import timezone

from ml.development.dense_classifier import TrainingResult

from .models import TrainingJob
from .training import train_from_storage

logger = logging.getLogger(__name__)

INTERRUPTED_REASON = "Training interrupted before completion. The server was restarted."

ThreadFactory = Callable[[Callable[[str], None], tuple], threading.Thread]


def daemon_thread(target: Callable[[str], None], args: tuple) -> threading.Thread:
    return threading.Thread(target=target, args=args, daemon=True, name=f"training-{args[0][:8]}")


class TrainingJobRunner:
    """Trains the classifier off the request thread, one job at a time."""

    def __init__(
        self,
        *,
        trainer: Callable[[], TrainingResult] = train_from_storage,
        model: type[TrainingJob] = TrainingJob,
        thread_factory: Optional[ThreadFactory] = None,
    ) -> None:
        self.trainer = trainer
        self.model = model
        self.thread_factory = thread_factory or daemon_thread
        self._active: set[str] = set()
        self._active_lock = threading.Lock()
        # held for the whole of a training run
        self._training_lock = threading.Lock()

    def submit(self) -> TrainingJob:
        """Create a pending job and hand it to a worker thread."""
        job = self.model.objects.create(id=uuid.uuid4().hex)
        logger.info("training job %s submitted", job.id)

        with self._active_lock:
            self._active.add(job.id)
        self.thread_factory(self.run_job, (job.id,)).start()
        return job

    def is_running(self, job_id: str) -> bool:
        """True from submit() until the worker has finished with the job."""
        with self._active_lock:
            return job_id in self._active

    def run_job(self, job_id: str) -> None:
        """Worker body; also callable directly to train synchronously."""
        close_old_connections()
        try:
            with self._training_lock:
                self._train(job_id)
        finally:
            close_old_connections()
            with self._active_lock:
                self._active.discard(job_id)

    def recover_interrupted(self) -> int:
        """Fail jobs a previous process left running. Returns how many."""
        now = timezone.now()
        count = self.model.objects.filter(status=self.model.Status.RUNNING).update(
            status=self.model.Status.ERROR,
            error=INTERRUPTED_REASON,
            finished_at=now,
            updated_at=now,
        )
        if count:
            logger.warning("marked %s interrupted training job(s) as failed", count)
        return count

    def _train(self, job_id: str) -> None:
        try:
            job = self.model.objects.get(pk=job_id)
        except self.model.DoesNotExist:
            logger.warning("training job %s disappeared before it started", job_id)
            return

        job.status = self.model.Status.RUNNING
        job.started_at = timezone.now()
        job.save(update_fields=["status", "started_at", "updated_at"])

        try:
            result = self.trainer()
        except Exception as exc:
            logger.exception("training job %s failed", job_id)
            self._finish(job_id, status=self.model.Status.ERROR, error=f"{type(exc).__name__}: {exc}")
            return

        self._finish(
            job_id,
            status=self.model.Status.DONE,
            labels=list(result.labels),
            sample_count=result.sample_count,
        )
        logger.info("training job %s done (%s samples)", job_id, result.sample_count)

    def _finish(self, job_id: str, **fields) -> None:
        now = timezone.now()
        self.model.objects.filter(pk=job_id).update(finished_at=now, updated_at=now, **fields)


job_runner = TrainingJobRunner()
