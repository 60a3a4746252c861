from __future__ import annotations

# ruff: noqa: S101
import importlib
import sys

import pytest

import manage


def test_manage_main_invokes_execute_from_command_line(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    called = {}

    def _fake_execute(argv: list[str]) -> None:
        called["argv"] = argv

    monkeypatch.setattr(
        "django.core.management.execute_from_command_line",
        _fake_execute,
    )
    monkeypatch.setattr(sys, "argv", ["manage.py", "check"])

    manage.main()

    assert called["argv"] == ["manage.py", "check"]


def test_asgi_application_importable() -> None:
    module = importlib.import_module("config.asgi")
    module = importlib.reload(module)
    assert module.application is not None


def test_wsgi_application_importable() -> None:
    module = importlib.import_module("config.wsgi")
    module = importlib.reload(module)
    assert module.application is not None


def test_schema_lists_overlay_endpoints() -> None:
    from django.test import Client

    resp = Client().get("/api/schema/", {"format": "json"})
    assert resp.status_code == 200
    paths = resp.json()["paths"]
    assert "/api/v1/overlays/" in paths
    assert "/api/v1/overlays/{field_id}/refresh/" in paths
