import threading

import pytest
import torch

from ml.inference import model_store
from ml.inference.model_store import (
    ModelLoadError,
    ModelNotFoundError,
    checkpoint_path,
    checkpoint_version,
    describe_checkpoint,
    load_checkpoint,
    save_checkpoint,
)


def make_payload(fill, labels=("cat", "dog"), size=4096):
    return {
        "state_dict": {"weights": torch.full((size,), float(fill))},
        "input_size": size,
        "hidden_units": 16,
        "labels": list(labels),
        "writer": fill,
    }


def test_round_trip(tmp_path):
    target = save_checkpoint(tmp_path / "saved_model", make_payload(1))

    assert target == checkpoint_path(tmp_path / "saved_model")
    payload = load_checkpoint(tmp_path / "saved_model")
    assert payload["labels"] == ["cat", "dog"]
    assert torch.equal(payload["state_dict"]["weights"], torch.ones(4096))


def test_missing_model_raises(tmp_path):
    with pytest.raises(ModelNotFoundError):
        load_checkpoint(tmp_path)
    with pytest.raises(ModelNotFoundError):
        checkpoint_version(tmp_path)


def test_file_without_state_dict_is_rejected(tmp_path):
    torch.save({"labels": ["cat"]}, tmp_path / "model.pt")

    with pytest.raises(ModelLoadError):
        load_checkpoint(tmp_path)


def test_save_overwrites_and_changes_version(tmp_path):
    save_checkpoint(tmp_path, make_payload(1))
    first = checkpoint_version(tmp_path)

    save_checkpoint(tmp_path, make_payload(2, labels=("a", "b", "c")))

    assert checkpoint_version(tmp_path) != first
    assert load_checkpoint(tmp_path)["labels"] == ["a", "b", "c"]


def test_failed_write_keeps_previous_model(tmp_path, monkeypatch):
    save_checkpoint(tmp_path, make_payload(1))
    before = checkpoint_path(tmp_path).read_bytes()

    def broken_save(payload, fp):
        fp.write(b"partial")
        raise RuntimeError("disk full")

    monkeypatch.setattr(model_store.torch, "save", broken_save)
    with pytest.raises(RuntimeError):
        save_checkpoint(tmp_path, make_payload(2))

    assert checkpoint_path(tmp_path).read_bytes() == before
    assert [p.name for p in tmp_path.iterdir()] == ["model.pt"]


def test_concurrent_writers_leave_one_complete_model(tmp_path):
    # no ordering between the writers is promised, only that the surviving
    # file is entirely one of them
    barrier = threading.Barrier(2)
    errors = []

    def writer(fill):
        try:
            barrier.wait()
            for _ in range(5):
                save_checkpoint(tmp_path, make_payload(fill, size=200_000))
        except Exception as exc:  # pragma: no cover - surfaced by the assert below
            errors.append(exc)

    threads = [threading.Thread(target=writer, args=(fill,)) for fill in (1, 2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    payload = load_checkpoint(tmp_path)
    weights = payload["state_dict"]["weights"]
    assert payload["writer"] in (1, 2)
    assert torch.equal(weights, torch.full_like(weights, float(payload["writer"])))
    assert [p.name for p in tmp_path.iterdir()] == ["model.pt"]


def test_describe_checkpoint_drops_weights(tmp_path):
    save_checkpoint(tmp_path, make_payload(3))
    info = describe_checkpoint(tmp_path)
    assert "state_dict" not in info
    assert info["input_size"] == 4096
