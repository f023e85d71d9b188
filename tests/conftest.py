"""Pytest fixtures for link-relay tests."""

from pathlib import Path

import pytest

from linkrelay.config.settings import Settings
from linkrelay.stream.schemas import Activity


@pytest.fixture
def basedir(tmp_path: Path) -> Path:
    """Empty base directory for one test."""
    path = tmp_path / "relay"
    path.mkdir()
    return path


@pytest.fixture
def test_settings(basedir: Path) -> Settings:
    """Settings configured for testing."""
    return Settings(
        environment="development",
        log_level="DEBUG",
        basedir=basedir,
        poll_timeout_seconds=0.01,
        stop_attempts=5,
        stop_poll_seconds=0.01,
        source_url="https://stream.example.com",
        destination_url="https://feed.example.com/activities",
    )


@pytest.fixture
def sample_activity() -> Activity:
    """An activity with one bitly link."""
    return Activity(
        id="activity_001",
        body="see http://bit.ly/abc and more",
        source_resource="https://stream.example.com/resources/42",
        sources=["origin"],
    )


@pytest.fixture
def plain_activity() -> Activity:
    """An activity without links."""
    return Activity(id="activity_002", body="nothing to expand here")
