"""
Persistence for training records and test results.

Thin wrappers around the ORM so callers deal with one error type: any database
failure comes out as StorageError.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterable, Iterator

from django.db import DatabaseError, transaction

from .models import TestResult, TrainData

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Database unavailable or a read/write failed."""


@contextmanager
def storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except DatabaseError as exc:
        logger.error("storage failure while trying to %s: %s", action, exc)
        raise StorageError(f"Failed to {action}") from exc


def save_training_record(image_data: bytes, label: str) -> TrainData:
    with storage_errors("save training data"):
        return TrainData.objects.create(image_data=image_data, label=label)


def save_training_records(records: Iterable[tuple[bytes, str]]) -> list[TrainData]:
    """Insert several records at once; nothing is written if any insert fails."""
    with storage_errors("save training data"):
        with transaction.atomic():
            return [TrainData.objects.create(image_data=data, label=label) for data, label in records]


def save_test_result(test_name: str, image_data: bytes) -> TestResult:
    with storage_errors("save test result"):
        return TestResult.objects.create(test_name=test_name, image_data=image_data)


def list_training_records() -> list[TrainData]:
    with storage_errors("retrieve training data"):
        return list(TrainData.objects.order_by("id"))


def list_test_results() -> list[TestResult]:
    with storage_errors("retrieve test results"):
        return list(TestResult.objects.order_by("id"))
