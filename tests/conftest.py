"""Shared pytest fixtures."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

_ISOLATED_ENV_PREFIXES = ("STOCKAGENT_",)
_ISOLATED_ENV_NAMES = ("API_KEY", "GEMINI_API_KEY")


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep developer shells from leaking keys or overrides into tests."""

    for name in list(os.environ):
        if name.startswith(_ISOLATED_ENV_PREFIXES) or name in _ISOLATED_ENV_NAMES:
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("STOCKAGENT_LOG_DIR", str(tmp_path / "logs"))
