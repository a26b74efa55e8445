"""Pytest configuration for repository test runs."""

from __future__ import annotations

import sys
from dataclasses import replace
from pathlib import Path

import pytest

from core.config import LensConfig
from store.record_store import LocalRecordStore


def pytest_sessionstart() -> None:
    """Add src directory to sys.path for test imports."""
    project_root = Path(__file__).resolve().parent.parent
    src_path = project_root / "src"
    if str(src_path) not in sys.path:
        sys.path.insert(0, str(src_path))


@pytest.fixture
def lens_config(tmp_path: Path) -> LensConfig:
    """Inline-engine config rooted in the test's temporary directory."""
    return replace(
        LensConfig.from_env(),
        data_root=tmp_path / "data",
        filter_engine_mode="inline",
        search_debounce_seconds=0.01,
    )


@pytest.fixture
def record_store(lens_config: LensConfig) -> LocalRecordStore:
    return LocalRecordStore(lens_config)
