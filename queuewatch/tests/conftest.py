from __future__ import annotations

import os

import pytest

from queuewatch.core.config import get_settings
from queuewatch.services.reporter import get_failure_reporter


@pytest.fixture(autouse=True)
def isolate_settings(monkeypatch, tmp_path) -> None:
    # Keep host env vars and .env files from leaking into settings under test.
    for key in list(os.environ):
        if key.startswith("QUEUEWATCH_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    get_failure_reporter.cache_clear()
    yield
    get_settings.cache_clear()
    get_failure_reporter.cache_clear()
