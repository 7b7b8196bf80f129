from __future__ import annotations

import logging
from pathlib import Path

from django.conf import settings

from ml.development.dense_classifier import DenseClassifierTrainer, TrainingConfig, TrainingResult
from ml.development.preprocessing import DrawingPreprocessor
from ml.inference.model_store import save_checkpoint

from .storage import list_training_records

logger = logging.getLogger(__name__)


def training_config_from_settings() -> TrainingConfig:
    return TrainingConfig(**getattr(settings, "TRAINING", {}))


def train_from_storage(
    model_dir: str | Path | None = None,
    config: TrainingConfig | None = None,
) -> TrainingResult:
    """Fit the classifier on every stored training record and persist it.

    The previous model is only replaced once fitting has succeeded; a
    TrainingPreconditionError (no data, fewer than two labels) leaves it untouched.
    """
    target_dir = Path(model_dir or settings.MODEL_DIR)
    records = list_training_records()
    logger.info("loaded %s training record(s)", len(records))

    preprocessor = DrawingPreprocessor()
    features = preprocessor.features_batch([bytes(record.image_data) for record in records])
    labels = [record.label for record in records]

    trainer = DenseClassifierTrainer(config or training_config_from_settings())
    result = trainer.fit(features, labels)

    path = save_checkpoint(target_dir, result.to_checkpoint())
    logger.info("Model trained on %s sample(s), labels %s, saved to %s", len(labels), result.labels, path)
    return result
