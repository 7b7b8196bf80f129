from django.db import models
from django.utils import timezone


class TrainData(models.Model):
    """A labelled drawing used to fit the classifier."""

    # greyscale 256x256 jpeg produced by DrawingPreprocessor.encode
    image_data = models.BinaryField()
    label = models.CharField(max_length=255)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "TrainData"
        ordering = ["id"]

    def __str__(self):
        return f"TrainData {self.pk}: {self.label}"


class TestResult(models.Model):
    """A named drawing submitted from a test session."""

    __test__ = False  # not a pytest test class

    test_name = models.CharField(max_length=255)
    image_data = models.BinaryField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = "TestResult"
        ordering = ["id"]

    def __str__(self):
        return f"TestResult {self.pk}: {self.test_name}"


class TrainingJob(models.Model):
    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        RUNNING = "running", "Running"
        DONE = "done", "Done"
        ERROR = "error", "Error"

    id = models.CharField(primary_key=True, max_length=32, editable=False)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    error = models.TextField(blank=True)
    labels = models.JSONField(default=list, blank=True)
    sample_count = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    started_at = models.DateTimeField(null=True, blank=True)
    finished_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ("-created_at",)

    def __str__(self) -> str:
        return f"{self.id} ({self.status})"

    @property
    def is_finished(self) -> bool:
        return self.status in (self.Status.DONE, self.Status.ERROR)

    @property
    def elapsed_seconds(self) -> float:
        start = self.started_at or self.created_at
        if not start:
            return 0.0
        end = self.finished_at or timezone.now()
        return max(0.0, (end - start).total_seconds())
