import base64
import binascii
import logging

from django.conf import settings
from django.db import DatabaseError
from django.shortcuts import get_object_or_404
from rest_framework import serializers, status
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from ml.development.preprocessing import DecodeError, DrawingPreprocessor
from ml.inference.model_store import ModelLoadError, ModelNotFoundError
from ml.inference.service import ModelMismatchError, predict_from_file

from .job_runner import job_runner
from .models import TrainingJob
from .storage import (
    StorageError,
    list_test_results,
    list_training_records,
    save_test_result,
    save_training_records,
)

logger = logging.getLogger(__name__)


class Base64BytesField(serializers.Field):
    default_error_messages = {"invalid": "Expected base64 encoded image data."}

    def to_representation(self, value):
        return base64.b64encode(bytes(value)).decode("ascii")

    def to_internal_value(self, data):
        if not isinstance(data, str):
            self.fail("invalid")
        try:
            return base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError):
            self.fail("invalid")


class TestResultSerializer(serializers.Serializer):
    testName = serializers.CharField(source="test_name", max_length=255)
    imageData = Base64BytesField(source="image_data", required=False)


class TrainDataSerializer(serializers.Serializer):
    id = serializers.IntegerField(read_only=True)
    label = serializers.CharField(read_only=True)
    imageData = Base64BytesField(source="image_data", read_only=True)


class TrainingJobSerializer(serializers.Serializer):
    id = serializers.CharField(read_only=True)
    status = serializers.CharField(read_only=True)
    error = serializers.CharField(read_only=True)
    labels = serializers.ListField(child=serializers.CharField(), read_only=True)
    sampleCount = serializers.IntegerField(source="sample_count", read_only=True)
    createdAt = serializers.DateTimeField(source="created_at", read_only=True)
    startedAt = serializers.DateTimeField(source="started_at", read_only=True)
    finishedAt = serializers.DateTimeField(source="finished_at", read_only=True)


def oversized(files) -> list:
    return [f.name for f in files if f.size > settings.MAX_UPLOAD_SIZE]


def too_large_response(names) -> Response:
    limit_mb = settings.MAX_UPLOAD_SIZE // (1024 * 1024)
    return Response(
        {"error": f"File too large (limit {limit_mb} MB): {', '.join(names)}"},
        status=status.HTTP_400_BAD_REQUEST,
    )


def submit_training_job():
    try:
        return job_runner.submit()
    except DatabaseError:
        logger.exception("Failed to start training")
        return None


def training_not_started_response() -> Response:
    return Response(
        {"error": "Failed to start training"},
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )


class PredictView(APIView):
    """
    accepts an uploaded drawing and returns the predicted label.
    """

    def post(self, request: Request):
        image = request.FILES.get("image")
        if image is None:
            return Response(
                {"error": "No submitted image found."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        too_large = oversized([image])
        if too_large:
            return too_large_response(too_large)

        try:
            prediction = predict_from_file(image, model_dir=settings.MODEL_DIR)
        except (DecodeError, ModelNotFoundError, ModelLoadError, ModelMismatchError):
            logger.exception("Error predicting image")
            return Response(
                {"error": "Error predicting image"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        return Response(prediction, status=status.HTTP_200_OK)


class TrainDataView(APIView):
    """
    Stores labelled drawings for the next training run.

    With TRAIN_DATA_LABEL_MODE = "shared" every file in `images` gets the same
    `label`; with "per_file" a `labels` list carries one label per file.
    """

    def get(self, request: Request):
        try:
            records = list_training_records()
        except StorageError:
            return Response(
                {"error": "Failed to retrieve training data"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return Response(TrainDataSerializer(records, many=True).data)

    def post(self, request: Request):
        images = request.FILES.getlist("images")
        if not images:
            return Response({"error": "No images found."}, status=status.HTTP_400_BAD_REQUEST)

        too_large = oversized(images)
        if too_large:
            return too_large_response(too_large)

        labels = self.resolve_labels(request, len(images))
        if labels is None:
            return Response(
                {"error": self.label_error()},
                status=status.HTTP_400_BAD_REQUEST,
            )

        preprocessor = DrawingPreprocessor()
        try:
            # encode everything first so a bad file means nothing is written
            encoded = [preprocessor.encode(image.read()) for image in images]
            save_training_records(zip(encoded, labels))
        except (DecodeError, StorageError):
            logger.exception("Failed to save training data")
            return Response(
                {"error": "Failed to save training data"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        return Response(
            {"message": "Training data saved successfully", "count": len(encoded)},
            status=status.HTTP_201_CREATED,
        )

    def resolve_labels(self, request: Request, count: int):
        if settings.TRAIN_DATA_LABEL_MODE == "per_file":
            getlist = getattr(request.data, "getlist", None)
            if getlist is None:
                labels = request.data.get("labels") or []
            else:
                labels = getlist("labels") or getlist("labels[]")
            labels = [str(label).strip() for label in labels]
            if len(labels) != count or not all(labels):
                return None
            return labels

        label = str(request.data.get("label") or "").strip()
        if not label:
            return None
        return [label] * count

    def label_error(self) -> str:
        if settings.TRAIN_DATA_LABEL_MODE == "per_file":
            return "Provide one non-empty entry in `labels` per uploaded image."
        return "A non-empty `label` is required."


class TestResultsView(APIView):
    def get(self, request: Request):
        try:
            results = list_test_results()
        except StorageError:
            return Response(
                {"error": "Failed to retrieve test results"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return Response(TestResultSerializer(results, many=True).data)

    def post(self, request: Request):
        serializer = TestResultSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        image = request.FILES.get("image")
        if image is not None:
            too_large = oversized([image])
            if too_large:
                return too_large_response(too_large)
            image_data = image.read()
        else:
            image_data = serializer.validated_data.get("image_data")
            if image_data is None:
                return Response({"error": "No image found."}, status=status.HTTP_400_BAD_REQUEST)
            if len(image_data) > settings.MAX_UPLOAD_SIZE:
                return too_large_response(["imageData"])

        try:
            save_test_result(serializer.validated_data["test_name"], image_data)
        except StorageError:
            return Response(
                {"error": "Failed to save test result"},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        return Response({"message": "Test result saved successfully"}, status=status.HTTP_201_CREATED)


class TrainView(APIView):
    """
    Starts a background training run from the upload form's "Train Data" button.
    """

    def get(self, request: Request):
        job = submit_training_job()
        if job is None:
            return training_not_started_response()
        return Response(
            {"message": "Training started", "job": TrainingJobSerializer(job).data},
            status=status.HTTP_201_CREATED,
        )


class TrainingJobListView(APIView):
    def get(self, request: Request):
        jobs = TrainingJob.objects.all()[:20]
        return Response(TrainingJobSerializer(jobs, many=True).data)

    def post(self, request: Request):
        job = submit_training_job()
        if job is None:
            return training_not_started_response()
        return Response(TrainingJobSerializer(job).data, status=status.HTTP_202_ACCEPTED)


class TrainingJobDetailView(APIView):
    def get(self, request: Request, job_id: str):
        job = get_object_or_404(TrainingJob, pk=job_id)
        return Response(TrainingJobSerializer(job).data)
