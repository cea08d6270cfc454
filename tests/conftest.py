"""Pytest configuration for test isolation.

The CLI resolves its storage location from ``CAMPUS_PAY_DATA_DIR`` (falling
back to ``./.campus_pay``) and switches to SQL storage when ``DATABASE_URL``
is set. A developer's shell or ``.env`` could therefore point tests at real
data or leak records between tests.

To keep tests hermetic, an autouse fixture clears every ``CAMPUS_PAY_*``
variable and ``DATABASE_URL``, points the data directory at the test's own
temporary directory, and runs the test from there so no stray ``.env`` is
picked up.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Make sure the workspace `packages/` dir is on sys.path so `campus_pay` is importable
_ROOT = Path(__file__).resolve().parents[1]
_PKG_DIR = _ROOT / "packages"
sys.path[:0] = [p for p in [str(_PKG_DIR), str(_ROOT)] if p not in sys.path]


@pytest.fixture(autouse=True)
def _isolate_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Force a per-test data directory and a clean configuration environment."""

    for name in list(os.environ):
        if name.startswith("CAMPUS_PAY_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)

    data_dir = tmp_path / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("CAMPUS_PAY_DATA_DIR", os.fspath(data_dir))
    monkeypatch.chdir(tmp_path)
