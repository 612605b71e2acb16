"""Shared fixtures for transcoding tests."""

from pathlib import Path

import pytest

from abrpipe.core.config import Settings
from abrpipe.modules.transcoding.storage import OutputLayout

from fakes import make_settings


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture
def layout(tmp_path: Path) -> OutputLayout:
    return OutputLayout(tmp_path / "package")
