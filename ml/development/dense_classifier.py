"""
dense drawing classifier and its training procedure

builds a two layer feed-forward network sized to the flattened drawing vector and
the label vocabulary, fits it with adam + categorical cross entropy, and returns a
checkpoint payload that ml.inference.model_store persists and ml.inference.service
loads for prediction

run (from repo root) against a folder of images laid out as DIR/<label>/<image>:
- python -m ml.development.dense_classifier --data-dir drawings_dataset --output-dir saved_model
"""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import torch
from torch import nn
from torch.optim import Adam
from torch.utils.data import DataLoader, TensorDataset, random_split

from ml.development.preprocessing import DecodeError, DrawingPreprocessor

log = logging.getLogger(__name__)


class TrainingPreconditionError(ValueError):
    """raised when stored data cannot train a classifier (no samples or < 2 labels)"""


@dataclasses.dataclass
class TrainingConfig:
    hidden_units: int = 16
    epochs: int = 25
    batch_size: int = 32
    learning_rate: float = 1e-3
    validation_split: float = 0.0
    seed: Optional[int] = None


@dataclasses.dataclass
class TrainingResult:
    model: "DenseClassifier"
    labels: List[str]
    config: TrainingConfig
    history: List[Dict[str, float]]
    sample_count: int = 0

    def to_checkpoint(self) -> Dict[str, Any]:
        """payload written by model_store.save_checkpoint"""
        return {
            "state_dict": self.model.state_dict(),
            "input_size": self.model.input_size,
            "hidden_units": self.model.hidden_units,
            "num_classes": self.model.num_classes,
            "labels": list(self.labels),
            "config": dataclasses.asdict(self.config),
            "history": self.history,
            "sample_count": self.sample_count,
            "trained_at": datetime.now(timezone.utc).isoformat(),
        }


def build_vocabulary(labels: Iterable[str]) -> List[str]:
    """distinct labels in first-seen order"""
    return list(dict.fromkeys(labels))


class DenseClassifier(nn.Module):
    """one relu hidden layer, one output layer over the label vocabulary"""

    def __init__(self, input_size: int, hidden_units: int, num_classes: int) -> None:
        super().__init__()
        self.input_size = input_size
        self.hidden_units = hidden_units
        self.num_classes = num_classes
        self.hidden = nn.Linear(input_size, hidden_units)
        self.output = nn.Linear(hidden_units, num_classes)

    def forward(self, x: torch.Tensor) -> torch.Tensor:
        # logits; softmax is folded into CrossEntropyLoss during training
        return self.output(torch.relu(self.hidden(x)))

    def predict_proba(self, x: torch.Tensor) -> torch.Tensor:
        with torch.no_grad():
            return self(x).softmax(dim=1)

    @classmethod
    def from_checkpoint(cls, payload: Dict[str, Any]) -> "DenseClassifier":
        state_dict = payload["state_dict"]
        num_classes = payload.get("num_classes") or state_dict["output.weight"].shape[0]
        model = cls(
            input_size=int(payload["input_size"]),
            hidden_units=int(payload["hidden_units"]),
            num_classes=int(num_classes),
        )
        model.load_state_dict(state_dict)
        model.eval()
        return model


class DenseClassifierTrainer:
    """fits a DenseClassifier on feature vectors + label strings"""

    def __init__(self, config: Optional[TrainingConfig] = None) -> None:
        self.config = config or TrainingConfig()
        self.loss_fn = nn.CrossEntropyLoss()

    def fit(self, features: np.ndarray, labels: Sequence[str]) -> TrainingResult:
        if len(labels) == 0:
            raise TrainingPreconditionError("No training data available")
        if len(features) != len(labels):
            raise TrainingPreconditionError(
                f"got {len(features)} feature vectors for {len(labels)} labels"
            )

        vocabulary = build_vocabulary(labels)
        if len(vocabulary) < 2:
            raise TrainingPreconditionError(
                f"Insufficient number of unique labels: {len(vocabulary)} (need at least 2)"
            )

        cfg = self.config
        if cfg.seed is not None:
            torch.manual_seed(cfg.seed)

        xs = torch.as_tensor(np.asarray(features, dtype=np.float32))
        ys = torch.tensor([vocabulary.index(label) for label in labels], dtype=torch.long)
        train_dataset, val_dataset = self._split(TensorDataset(xs, ys))

        model = DenseClassifier(xs.shape[1], cfg.hidden_units, len(vocabulary))
        optimizer = Adam(model.parameters(), lr=cfg.learning_rate)
        train_loader = DataLoader(train_dataset, batch_size=cfg.batch_size, shuffle=True)
        val_loader = (
            DataLoader(val_dataset, batch_size=cfg.batch_size, shuffle=False)
            if val_dataset is not None and len(val_dataset) > 0
            else None
        )

        log.info(
            "training dense classifier | samples %s | features %s | labels %s",
            len(labels),
            xs.shape[1],
            vocabulary,
        )

        history: List[Dict[str, float]] = []
        model.train()
        for epoch in range(cfg.epochs):
            running_loss = 0.0
            running_correct = 0
            running_total = 0

            for batch_x, batch_y in train_loader:
                optimizer.zero_grad(set_to_none=True)
                logits = model(batch_x)
                loss = self.loss_fn(logits, batch_y)
                loss.backward()
                optimizer.step()

                running_loss += loss.item() * batch_y.size(0)
                running_correct += (logits.argmax(dim=1) == batch_y).sum().item()
                running_total += batch_y.size(0)

            epoch_metrics = {
                "epoch": epoch,
                "samples": running_total,
                "loss": running_loss / max(1, running_total),
                "accuracy": running_correct / max(1, running_total),
            }
            if val_loader:
                val_metrics = self.evaluate(model, val_loader)
                epoch_metrics["val_loss"] = val_metrics["loss"]
                epoch_metrics["val_accuracy"] = val_metrics["accuracy"]

            log.info(
                "Epoch %s | loss %.4f | acc %.3f",
                epoch,
                epoch_metrics["loss"],
                epoch_metrics["accuracy"],
            )
            history.append(epoch_metrics)

        model.eval()
        return TrainingResult(
            model=model,
            labels=vocabulary,
            config=cfg,
            history=history,
            sample_count=len(labels),
        )

    def evaluate(self, model: DenseClassifier, dataloader: DataLoader) -> Dict[str, float]:
        model.eval()
        total_loss = 0.0
        total_correct = 0
        total_samples = 0

        with torch.no_grad():
            for batch_x, batch_y in dataloader:
                logits = model(batch_x)
                total_loss += self.loss_fn(logits, batch_y).item() * batch_y.size(0)
                total_correct += (logits.argmax(dim=1) == batch_y).sum().item()
                total_samples += batch_y.size(0)

        model.train()
        return {
            "loss": total_loss / max(1, total_samples),
            "accuracy": total_correct / max(1, total_samples),
        }

    def _split(self, dataset: TensorDataset) -> Tuple[Any, Optional[Any]]:
        val_size = int(len(dataset) * self.config.validation_split)
        if val_size == 0 or val_size >= len(dataset):
            return dataset, None

        generator = torch.Generator()
        if self.config.seed is not None:
            generator.manual_seed(self.config.seed)
        train_part, val_part = random_split(
            dataset, [len(dataset) - val_size, val_size], generator=generator
        )
        return train_part, val_part


def load_image_folder(
    data_dir: Path, preprocessor: DrawingPreprocessor
) -> Tuple[np.ndarray, List[str]]:
    """read DIR/<label>/<image> into (features, labels); undecodable files are skipped"""
    features = []
    labels = []
    for label_dir in sorted(p for p in data_dir.iterdir() if p.is_dir()):
        for image_path in sorted(p for p in label_dir.iterdir() if p.is_file()):
            try:
                features.append(preprocessor.features_from_upload(image_path.read_bytes()))
            except DecodeError:
                log.warning("skipping undecodable file %s", image_path)
                continue
            labels.append(label_dir.name)

    if not features:
        return np.zeros((0, preprocessor.feature_length), dtype=np.float32), labels
    return np.stack(features), labels


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Train the dense drawing classifier.")
    parser.add_argument(
        "--data-dir",
        type=str,
        required=True,
        help="Folder with one sub-folder of images per label.",
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Optional JSON config file with training settings.",
    )
    parser.add_argument(
        "--output-dir", type=str, default="saved_model", help="Directory for model.pt."
    )
    return parser.parse_args()


def load_config(config_path: Optional[str]) -> TrainingConfig:
    if not config_path:
        return TrainingConfig()
    with open(config_path, "r", encoding="utf-8") as fp:
        payload = json.load(fp)
    return TrainingConfig(**payload.get("training", payload))


def setup_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main() -> None:
    from ml.inference.model_store import save_checkpoint

    setup_logging()
    args = parse_args()
    config = load_config(args.config)
    features, labels = load_image_folder(Path(args.data_dir), DrawingPreprocessor())
    result = DenseClassifierTrainer(config).fit(features, labels)
    target = save_checkpoint(args.output_dir, result.to_checkpoint())
    log.info("training complete; saved model to %s", target)


if __name__ == "__main__":
    main()
