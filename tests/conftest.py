"""Shared fixtures."""

from pathlib import Path

import pytest
import structlog

from konnyaku.config import Config


@pytest.fixture(autouse=True)
def reset_structlog():
    """Keep a test's log configuration (and its captured stream) from leaking into later tests."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(cache_dir=str(tmp_path / "models"))


@pytest.fixture
def model_file(tmp_path) -> Path:
    path = tmp_path / "models" / "model.gguf"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"GGUF")
    return path
