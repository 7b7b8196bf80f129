"""
shared inference service helpers for django and cli use

on the ml side, this acts as the python level api surface: it hides model loading,
lets you pass file objects, and returns prediction dicts. django calls this to serve
http requests, and you can call it directly from scripts.

- the model directory defaults to env PROJECTIVE_MODEL_DIR (django passes settings.MODEL_DIR)
- predictors are cached per (model path, file version): retraining swaps in a new
  model.pt, its version changes, and the next request loads the new weights
- the label vocabulary comes from the checkpoint itself, never from the live database

run the ad-hoc test main (from repo root):
- python -m ml.inference.service --model-dir saved_model --image /path/to/drawing.png
"""

from __future__ import annotations

import argparse
import logging
import os
from functools import lru_cache
from typing import Dict, List, Optional

import torch

from ml.development.dense_classifier import DenseClassifier
from ml.development.preprocessing import DrawingPreprocessor
from ml.inference.model_store import ModelLoadError, checkpoint_path, checkpoint_version, load_checkpoint

log = logging.getLogger(__name__)

DEFAULT_MODEL_DIR = os.environ.get("PROJECTIVE_MODEL_DIR", "saved_model")

# used only for checkpoints that carry no vocabulary of their own
FALLBACK_LABELS = ["Person Under The Rain", "Family", "Human Figure"]


class ModelMismatchError(RuntimeError):
    """raised when an upload's feature vector does not fit the saved model"""


class DrawingPredictor:
    """wraps a loaded checkpoint with the preprocessing it was trained with"""

    def __init__(self, payload: Dict[str, object]) -> None:
        try:
            self.model = DenseClassifier.from_checkpoint(payload)
        except (KeyError, TypeError, RuntimeError) as exc:
            raise ModelLoadError(f"checkpoint does not match the classifier: {exc}") from exc
        labels = payload.get("labels")
        self.labels: List[str] = list(labels) if labels else list(FALLBACK_LABELS)
        self.preprocessor = DrawingPreprocessor()

    def predict_features(self, features) -> Dict[str, object]:
        if len(features) != self.model.input_size:
            raise ModelMismatchError(
                f"feature vector has length {len(features)}, model expects {self.model.input_size}"
            )

        inputs = torch.as_tensor(features, dtype=torch.float32).unsqueeze(0)
        probs = self.model.predict_proba(inputs)[0]
        pred_idx = int(probs.argmax().item())
        confidence = float(probs[pred_idx].item())

        # out of range only happens with the fallback list; report no label
        label = self.labels[pred_idx] if pred_idx < len(self.labels) else None
        return {"label": label, "confidence": confidence}

    def predict_bytes(self, raw: bytes) -> Dict[str, object]:
        return self.predict_features(self.preprocessor.features_from_upload(raw))


@lru_cache(maxsize=4)
def _cached_predictor(path: str, version: tuple) -> DrawingPredictor:
    log.info("loading drawing classifier from %s (version %s)", path, version)
    return DrawingPredictor(load_checkpoint(os.path.dirname(path)))


def get_predictor(model_dir: Optional[str] = None) -> DrawingPredictor:
    """
    return a cached predictor for the current model.pt in model_dir

    args:
        model_dir: directory holding model.pt; defaults to env PROJECTIVE_MODEL_DIR

    raises:
        ModelNotFoundError: nothing has been trained yet
    """
    resolved_dir = model_dir or DEFAULT_MODEL_DIR
    version = checkpoint_version(resolved_dir)
    return _cached_predictor(str(checkpoint_path(resolved_dir)), version)


def predict_from_bytes(raw: bytes, model_dir: Optional[str] = None) -> Dict[str, object]:
    return get_predictor(model_dir).predict_bytes(raw)


def predict_from_file(file_obj, model_dir: Optional[str] = None) -> Dict[str, object]:
    """
    run prediction from a django inmemoryuploadedfile or similar file object
    """
    raw_bytes = file_obj.read()
    file_obj.seek(0)
    return predict_from_bytes(raw_bytes, model_dir=model_dir)


def main() -> None:
    parser = argparse.ArgumentParser(description="quick test for the drawing predictor")
    parser.add_argument("--image", required=True, help="path to image file")
    parser.add_argument("--model-dir", default=DEFAULT_MODEL_DIR, help="directory containing model.pt")
    args = parser.parse_args()

    with open(args.image, "rb") as fh:
        print(predict_from_file(fh, model_dir=args.model_dir))


if __name__ == "__main__":
    main()
