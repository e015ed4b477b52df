"""Unit test environment helpers."""

import os

import pytest


@pytest.fixture(autouse=True)
def _minimal_env(monkeypatch):
    """Clear engine env so unit tests never pick up a developer's settings."""
    for name in list(os.environ):
        if name.startswith("RELMAP_") or name.startswith("DB_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("OTEL_EXPORTER_OTLP_ENDPOINT", raising=False)
    yield
