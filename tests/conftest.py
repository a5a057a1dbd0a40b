"""Shared fixtures"""

import pytest

from mirrorkit.orchestrator.models import Volume

from fakes import FakeRuntime


@pytest.fixture
def runtime(tmp_path):
    """In-memory runtime with volumes under tmp_path"""
    return FakeRuntime(tmp_path / "volumes")


@pytest.fixture
def volume(tmp_path):
    path = tmp_path / "volume"
    path.mkdir()
    return Volume("test-volume", path)
