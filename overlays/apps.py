from __future__ import annotations

from django.apps import AppConfig


class OverlaysConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "overlays"
    verbose_name = "Vegetation index overlays"
