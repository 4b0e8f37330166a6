"""Shared pytest fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from ghostwriter.events import EventBus
from ghostwriter.services.settings import EditorSettings
from tests.helpers import ManualScheduler


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("GHOSTWRITER_LOG_DIR", str(tmp_path / "logs"))
    for name in (
        "GHOSTWRITER_API_KEY",
        "GHOSTWRITER_BASE_URL",
        "GHOSTWRITER_MODEL",
        "GHOSTWRITER_WRITING_TYPE",
        "GHOSTWRITER_SYNC_URL",
        "GHOSTWRITER_AI_ENABLED",
        "GHOSTWRITER_DEBUG_LOGGING",
        "GHOSTWRITER_REQUEST_TIMEOUT",
        "GHOSTWRITER_TEMPERATURE",
        "GHOSTWRITER_DEBUG",
        "GHOSTWRITER_SETTINGS_PATH",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def settings() -> EditorSettings:
    return EditorSettings(
        model="A",
        min_suggestion_chars=10,
        suggestion_debounce_seconds=1.0,
        failover_delay_seconds=5.0,
        autosave_delay_seconds=1.0,
    )
