"""Shared fixtures for summary store and server tests."""

from datetime import datetime

import pytest

from summary_store import SummaryStore


class FakeClock:
    """Callable clock returning a settable local time."""

    def __init__(self, moment: datetime):
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 2, 11, 21, 30, 0))


@pytest.fixture
def store(clock):
    return SummaryStore(clock=clock)


@pytest.fixture(autouse=True)
def no_storage_env(monkeypatch):
    """Keep the developer's SUMMARY_STORAGE_PATH out of the tests."""
    monkeypatch.delenv("SUMMARY_STORAGE_PATH", raising=False)
