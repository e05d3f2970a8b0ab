"""Shared fixtures for the mailexport test suite."""

from datetime import timedelta

import pytest

from mailexport_core.jobs.store import JobRecordStore
from mailexport_core.runtime.retry import RetryPolicy
from tests.mailexport_core.fakes import FakeClock, FakeRemote, RecordingSleep


@pytest.fixture
def remote():
    """In-memory remote API."""
    return FakeRemote()


@pytest.fixture
def clock():
    """Clock fixed at T0."""
    return FakeClock()


@pytest.fixture
def store(clock):
    """Job store using the fake clock and a 90-day validity window."""
    return JobRecordStore(validity=timedelta(days=90), clock=clock)


@pytest.fixture
def fast_retry():
    """Two attempts, no delay."""
    return RetryPolicy(max_attempts=2, base_delay=0.0, jitter=False)


@pytest.fixture
def recording_sleep():
    return RecordingSleep()
