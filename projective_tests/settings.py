"""
Django settings for projective_tests project.

Every value that differs between deployments is read from the environment.
"""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name, default=None):
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


def _env_float(name, default):
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "django-insecure-projective-tests-dev-key")

DEBUG = _env_bool("DJANGO_DEBUG", True)

ALLOWED_HOSTS = [h for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "*").split(",") if h]


INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "drawings.apps.DrawingsConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "projective_tests.urls"

WSGI_APPLICATION = "projective_tests.wsgi.application"


DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.environ.get("PROJECTIVE_DB_PATH", str(BASE_DIR / "projective_tests.sqlite3")),
    }
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True


REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "DEFAULT_PARSER_CLASSES": [
        "rest_framework.parsers.JSONParser",
        "rest_framework.parsers.MultiPartParser",
        "rest_framework.parsers.FormParser",
    ],
    "UNAUTHENTICATED_USER": None,
}


# uploads
MAX_UPLOAD_SIZE = _env_int("PROJECTIVE_MAX_UPLOAD_MB", 5) * 1024 * 1024
# json test results carry base64 images, roughly 4/3 of the file size
DATA_UPLOAD_MAX_MEMORY_SIZE = 2 * MAX_UPLOAD_SIZE

# "shared": one `label` applies to every file in a train-data upload
# "per_file": a `labels` list, one entry per uploaded file
TRAIN_DATA_LABEL_MODE = os.environ.get("PROJECTIVE_LABEL_MODE", "shared")


# model
MODEL_DIR = Path(os.environ.get("PROJECTIVE_MODEL_DIR", str(BASE_DIR / "saved_model")))

TRAINING = {
    "hidden_units": _env_int("PROJECTIVE_HIDDEN_UNITS", 16),
    "epochs": _env_int("PROJECTIVE_EPOCHS", 25),
    "batch_size": _env_int("PROJECTIVE_BATCH_SIZE", 32),
    "learning_rate": _env_float("PROJECTIVE_LEARNING_RATE", 1e-3),
    "validation_split": _env_float("PROJECTIVE_VALIDATION_SPLIT", 0.0),
    "seed": _env_int("PROJECTIVE_SEED"),
}


LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "root": {
        "handlers": ["console"],
        "level": os.environ.get("PROJECTIVE_LOG_LEVEL", "INFO"),
    },
    "loggers": {
        "django": {
            "handlers": ["console"],
            "level": "INFO",
            "propagate": False,
        },
    },
}
