"""Shared fixtures."""

import pytest

import agent_notes.storage


@pytest.fixture(autouse=True)
def _isolated_default_scheduler(monkeypatch):
    """Give each test its own process-wide write scheduler."""
    monkeypatch.setattr(agent_notes.storage, "_default_scheduler", None)
    yield
    scheduler = agent_notes.storage._default_scheduler
    if scheduler is not None:
        scheduler.cancel()
