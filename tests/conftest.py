import pytest
from rest_framework.test import APIClient

from ml.inference import service


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def model_dir(settings, tmp_path):
    settings.MODEL_DIR = tmp_path / "saved_model"
    return settings.MODEL_DIR


@pytest.fixture(autouse=True)
def clear_predictor_cache():
    service._cached_predictor.cache_clear()
    yield
    service._cached_predictor.cache_clear()
