"""
read and write the persisted drawing classifier

the model lives in a single file, <model_dir>/model.pt, holding weights, layer sizes
and the label vocabulary it was trained on. writes go to a temp file in the same
directory and are swapped in with os.replace under a process-wide lock, so a reader
sees either the previous model or the new one and two concurrent trainings never
interleave their bytes.

usage:
    python -m ml.inference.model_store --model-dir saved_model
"""
from __future__ import annotations

import argparse
import json
import os
import pickle
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, Tuple

import torch

CHECKPOINT_NAME = "model.pt"

_write_lock = threading.Lock()


class ModelNotFoundError(FileNotFoundError):
    """raised when predicting before any model has been trained"""


class ModelLoadError(RuntimeError):
    """raised when model.pt exists but cannot be read back as a checkpoint"""


def checkpoint_path(model_dir: str | Path) -> Path:
    return Path(model_dir).resolve() / CHECKPOINT_NAME


def checkpoint_version(model_dir: str | Path) -> Tuple[int, int, int]:
    """(inode, mtime_ns, size) of model.pt; every save swaps in a new file so this changes"""
    path = checkpoint_path(model_dir)
    try:
        stat = path.stat()
        return stat.st_ino, stat.st_mtime_ns, stat.st_size
    except FileNotFoundError as exc:
        raise ModelNotFoundError(f"{CHECKPOINT_NAME} not found in {path.parent}") from exc


@contextmanager
def exclusive_write() -> Iterator[None]:
    """hold the model write lock for the duration of the block"""
    with _write_lock:
        yield


def save_checkpoint(model_dir: str | Path, payload: Dict[str, Any]) -> Path:
    """
    Persist a checkpoint payload, replacing any previous model.

    Args:
        model_dir: directory holding model.pt (created if missing)
        payload: dict produced by TrainingResult.to_checkpoint()

    Returns:
        Absolute path of the written model.pt
    """
    target = checkpoint_path(model_dir)
    target.parent.mkdir(parents=True, exist_ok=True)

    with exclusive_write():
        fd, tmp_name = tempfile.mkstemp(prefix=".model-", suffix=".tmp", dir=target.parent)
        try:
            with os.fdopen(fd, "wb") as fp:
                torch.save(payload, fp)
                fp.flush()
                os.fsync(fp.fileno())
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    return target


def load_checkpoint(model_dir: str | Path) -> Dict[str, Any]:
    """
    Load model.pt from model_dir.

    Raises:
        ModelNotFoundError: no model has been saved in model_dir yet
        ModelLoadError: model.pt is truncated or not a checkpoint
    """
    path = checkpoint_path(model_dir)
    if not path.exists():
        raise ModelNotFoundError(f"{CHECKPOINT_NAME} not found in {path.parent}")

    try:
        with path.open("rb") as fp:
            payload = torch.load(fp, map_location="cpu", weights_only=True)
    except (pickle.UnpicklingError, EOFError, KeyError, RuntimeError, ValueError) as exc:
        raise ModelLoadError(f"could not read {path}: {exc}") from exc

    if not isinstance(payload, dict) or "state_dict" not in payload:
        raise ModelLoadError(f"{path} does not hold a drawing classifier checkpoint")
    return payload


def describe_checkpoint(model_dir: str | Path) -> Dict[str, Any]:
    """checkpoint metadata without the weights"""
    payload = load_checkpoint(model_dir)
    return {key: value for key, value in payload.items() if key != "state_dict"}


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="print metadata of the saved drawing classifier")
    parser.add_argument(
        "--model-dir",
        default=os.environ.get("PROJECTIVE_MODEL_DIR", "saved_model"),
        help="directory containing model.pt (default: $PROJECTIVE_MODEL_DIR or saved_model)",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    print(json.dumps(describe_checkpoint(args.model_dir), indent=2, default=str))


if __name__ == "__main__":
    main()
