"""Django settings for the field overlay service.

Every value can be overridden from the environment; defaults are suitable
for local development and tests only.
"""

from __future__ import annotations

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str, default: str = "") -> list[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


DEBUG = _env_bool("DJANGO_DEBUG", False)
SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "dev-only-insecure-secret-key")
ALLOWED_HOSTS = _env_list("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver")

INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    "rest_framework",
    "drf_spectacular",
    "django_prometheus",
    "overlays.apps.OverlaysConfig",
]

MIDDLEWARE = [
    "django_prometheus.middleware.PrometheusBeforeMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django_prometheus.middleware.PrometheusAfterMiddleware",
]

ROOT_URLCONF = "config.urls"
WSGI_APPLICATION = "config.wsgi.application"
ASGI_APPLICATION = "config.asgi.application"

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": os.getenv("DJANGO_SQLITE_PATH", str(BASE_DIR / "db.sqlite3")),
    }
}

CACHES = {
    "default": {
        "BACKEND": os.getenv(
            "DJANGO_CACHE_BACKEND",
            "django.core.cache.backends.locmem.LocMemCache",
        ),
        "LOCATION": os.getenv("DJANGO_CACHE_LOCATION", "field-overlays"),
    }
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = False
USE_TZ = True
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [],
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.AllowAny"],
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "DEFAULT_PARSER_CLASSES": ["rest_framework.parsers.JSONParser"],
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "EXCEPTION_HANDLER": "config.api.exceptions.custom_exception_handler",
    "UNAUTHENTICATED_USER": None,
}

SPECTACULAR_SETTINGS = {
    "TITLE": "Field Overlays API",
    "DESCRIPTION": (
        "Vegetation index overlays for field boundaries with provider "
        "fallback and a synthetic gradient when no imagery is available."
    ),
    "VERSION": "1.0.0",
    "SERVE_INCLUDE_SCHEMA": False,
}

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
        },
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "overlays": {"level": LOG_LEVEL, "propagate": True},
        "httpx": {"level": "WARNING", "propagate": True},
    },
}

# Imagery providers, tried in ascending priority.
OVERLAY_SOURCES = [
    {
        "id": "copernicus",
        "path": "overlays.sources.copernicus.CopernicusProvider",
        "priority": 1,
        "kind": "image",
        "timeout_ms": int(os.getenv("OVERLAY_COPERNICUS_TIMEOUT_MS", "8000")),
    },
    {
        "id": "agromonitoring",
        "path": "overlays.sources.agromonitoring.AgromonitoringProvider",
        "priority": 2,
        "kind": "image",
        "timeout_ms": int(os.getenv("OVERLAY_AGROMONITORING_TIMEOUT_MS", "8000")),
    },
    {
        "id": "agromonitoring_tiles",
        "path": "overlays.sources.agromonitoring.AgromonitoringProvider",
        "priority": 3,
        "kind": "tile",
        "timeout_ms": int(os.getenv("OVERLAY_TILES_TIMEOUT_MS", "5000")),
        "options": {"kind": "tile"},
    },
]

OVERLAY_CACHE_ALIAS = os.getenv("OVERLAY_CACHE_ALIAS", "default")
OVERLAY_CACHE_TTL_SECONDS = int(os.getenv("OVERLAY_CACHE_TTL_SECONDS", "3600"))
OVERLAY_DEFAULT_WINDOW_DAYS = int(os.getenv("OVERLAY_DEFAULT_WINDOW_DAYS", "30"))
OVERLAY_MAX_WINDOW_DAYS = int(os.getenv("OVERLAY_MAX_WINDOW_DAYS", "370"))
OVERLAY_DEFAULT_PALETTE = os.getenv("OVERLAY_DEFAULT_PALETTE", "contrast")
OVERLAY_SYNTHETIC_SIZE = int(os.getenv("OVERLAY_SYNTHETIC_SIZE", "256"))
OVERLAY_FIT_PADDING = int(os.getenv("OVERLAY_FIT_PADDING", "30"))
OVERLAY_RASTER_OPACITY = float(os.getenv("OVERLAY_RASTER_OPACITY", "0.7"))
OVERLAY_SYNTHETIC_OPACITY = float(os.getenv("OVERLAY_SYNTHETIC_OPACITY", "0.6"))
OVERLAY_MAX_AREA_KM2 = float(os.getenv("OVERLAY_MAX_AREA_KM2", "5000"))
OVERLAY_CLIP_FULL_RES_MAX_PIXELS = int(
    os.getenv("OVERLAY_CLIP_FULL_RES_MAX_PIXELS", str(1024 * 1024))
)
OVERLAY_CLIP_HALF_RES_MAX_PIXELS = int(
    os.getenv("OVERLAY_CLIP_HALF_RES_MAX_PIXELS", str(2048 * 2048))
)

COPERNICUS_CLIENT_ID = os.getenv("COPERNICUS_CLIENT_ID", "")
COPERNICUS_CLIENT_SECRET = os.getenv("COPERNICUS_CLIENT_SECRET", "")
COPERNICUS_HTTP_TIMEOUT_SECONDS = float(
    os.getenv("COPERNICUS_HTTP_TIMEOUT_SECONDS", "20")
)
COPERNICUS_MAX_CLOUD = int(os.getenv("COPERNICUS_MAX_CLOUD", "30"))
COPERNICUS_IMAGE_SIZE = int(os.getenv("COPERNICUS_IMAGE_SIZE", "512"))

AGROMONITORING_API_KEY = os.getenv("AGROMONITORING_API_KEY", "")
AGROMONITORING_HTTP_TIMEOUT_SECONDS = float(
    os.getenv("AGROMONITORING_HTTP_TIMEOUT_SECONDS", "20")
)
