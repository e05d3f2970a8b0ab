"""Unit tests for JobPoller."""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

from mailexport_core.domain.codec import job_from_account_export, job_from_transactional
from mailexport_core.domain.models import JobState, PollPolicy
from mailexport_core.jobs.poller import JobPoller
from mailexport_core.runtime.errors import (
    InconsistentStateError,
    PollCancelledError,
    PollTimeoutError,
    TransportError,
)
from mailexport_core.runtime.protocols import Endpoints
from mailexport_core.runtime.retry import RetryPolicy
from tests.mailexport_core.fakes import T0, FakeRemote, account_export, transactional_job

LATER = T0 + timedelta(minutes=2)
DOWNLOAD = "https://dl/job-1.zip"

FAST_POLICY = PollPolicy(
    initial_interval_ms=100,
    max_interval_ms=1000,
    backoff_multiplier=2,
    max_total_wait_ms=5000,
)


def working():
    return transactional_job(state="working")


def complete():
    return transactional_job(state="complete", finished_at=LATER, result_url=DOWNLOAD)


@pytest.fixture
def poller(remote, store, fast_retry, recording_sleep):
    return JobPoller(remote, store, retry_policy=fast_retry, sleep=recording_sleep)


@pytest_asyncio.fixture
async def registered(store):
    return await store.register(job_from_transactional(transactional_job(state="waiting")))


class TestAwaitCompletion:
    """Tests for the polling loop."""

    @pytest.mark.asyncio
    async def test_backs_off_until_complete(self, poller, remote, registered, recording_sleep):
        remote.script("job-1", working(), working(), working(), complete())

        job = await poller.await_completion(registered, FAST_POLICY)

        assert job.state is JobState.COMPLETE
        assert job.result_url == DOWNLOAD
        assert job.finished_at == LATER
        assert remote.count_status_queries() == 4
        assert recording_sleep.delays == [0.1, 0.2, 0.4]

    @pytest.mark.asyncio
    async def test_interval_is_capped(self, poller, remote, registered, recording_sleep):
        remote.script("job-1", *[working()] * 6, complete())

        await poller.await_completion(registered, FAST_POLICY)

        assert recording_sleep.delays == [0.1, 0.2, 0.4, 0.8, 1.0, 1.0]

    @pytest.mark.asyncio
    async def test_error_is_returned_not_raised(self, poller, remote, registered):
        remote.script("job-1", working(), transactional_job(state="error", finished_at=LATER))

        job = await poller.await_completion(registered, FAST_POLICY)

        assert job.state is JobState.ERROR
        assert job.result_url is None

    @pytest.mark.asyncio
    async def test_expired_is_returned_not_raised(self, poller, remote, registered):
        remote.script("job-1", transactional_job(state="expired", finished_at=LATER))

        job = await poller.await_completion(registered.key, FAST_POLICY)

        assert job.state is JobState.EXPIRED

    @pytest.mark.asyncio
    async def test_terminal_record_is_not_queried(self, poller, remote, store, registered):
        remote.script("job-1", complete())
        await poller.refresh(registered)

        job = await poller.await_completion(registered, FAST_POLICY)

        assert job.state is JobState.COMPLETE
        assert remote.count_status_queries() == 1

    @pytest.mark.asyncio
    async def test_zero_budget_times_out_without_querying(self, poller, remote, registered):
        remote.script("job-1", working())

        with pytest.raises(PollTimeoutError) as exc_info:
            await poller.await_completion(registered, PollPolicy(max_total_wait_ms=0))

        assert remote.count_status_queries() == 0
        assert exc_info.value.last_snapshot == registered

    @pytest.mark.asyncio
    async def test_budget_exhausted(self, poller, remote, store, registered, recording_sleep):
        remote.script("job-1", working())
        policy = PollPolicy(
            initial_interval_ms=100, max_interval_ms=1000, backoff_multiplier=2, max_total_wait_ms=700
        )

        with pytest.raises(PollTimeoutError) as exc_info:
            await poller.await_completion(registered, policy)

        error = exc_info.value
        assert error.retryable is True
        assert error.waited_ms == 700
        assert error.last_snapshot.state is JobState.WORKING
        assert remote.count_status_queries() == 4
        assert recording_sleep.delays == [0.1, 0.2, 0.4]
        # Timing out says nothing about the remote job
        assert store.get(registered.key).state is JobState.WORKING

    @pytest.mark.asyncio
    async def test_transient_failure_is_retried(self, poller, remote, registered):
        remote.script("job-1", TransportError("connection reset"), complete())

        job = await poller.await_completion(registered, FAST_POLICY)

        assert job.state is JobState.COMPLETE
        assert remote.count_status_queries() == 2

    @pytest.mark.asyncio
    async def test_persistent_failure_surfaces(self, poller, remote, registered):
        remote.script("job-1", TransportError("connection reset"))

        with pytest.raises(TransportError) as exc_info:
            await poller.await_completion(registered, FAST_POLICY)

        assert exc_info.value.operation == "status"
        assert exc_info.value.job_id == "job-1"
        assert remote.count_status_queries() == 2

    @pytest.mark.asyncio
    async def test_backwards_transition_is_inconsistent(self, poller, remote, store, registered):
        remote.script("job-1", complete())
        await poller.refresh(registered)
        remote.script("job-1", working())

        with pytest.raises(InconsistentStateError):
            await poller.refresh(registered)

        assert store.get(registered.key).state is JobState.COMPLETE

    @pytest.mark.asyncio
    async def test_account_export(self, poller, remote, store):
        registered = await store.register(job_from_account_export(account_export(export_id=5)))
        remote.script(
            5,
            account_export(export_id=5),
            account_export(export_id=5, finished=LATER, download_url="https://dl/acct.zip"),
        )

        job = await poller.await_completion(registered, FAST_POLICY)

        assert job.state is JobState.COMPLETE
        assert job.result_url == "https://dl/acct.zip"
        assert remote.count(Endpoints.EXPORT_INFO) == 0
        assert remote.count_status_queries() == 2


class TestConcurrentPolling:
    """Concurrent pollers of one job share its status queries."""

    @pytest.mark.asyncio
    async def test_one_query_in_flight(self, store, fast_retry, recording_sleep):
        remote = FakeRemote(latency=0.01)
        poller = JobPoller(remote, store, retry_policy=fast_retry, sleep=recording_sleep)
        registered = await store.register(
            job_from_transactional(transactional_job(state="waiting"))
        )
        remote.script("job-1", working(), working(), complete())

        first, second = await asyncio.gather(
            poller.await_completion(registered, FAST_POLICY),
            poller.await_completion(registered, FAST_POLICY),
        )

        assert first.state is JobState.COMPLETE
        assert second == first
        assert remote.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_refresh_calls_are_coalesced(self, store, fast_retry):
        remote = FakeRemote(latency=0.01)
        poller = JobPoller(remote, store, retry_policy=fast_retry)
        registered = await store.register(
            job_from_transactional(transactional_job(state="waiting"))
        )
        remote.script("job-1", working())

        results = await asyncio.gather(*(poller.refresh(registered) for _ in range(5)))

        assert remote.count_status_queries() == 1
        assert all(job.state is JobState.WORKING for job in results)


class TestCancellation:
    """Tests for caller-initiated cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_during_sleep(self, remote, store, fast_retry, registered):
        cancel = asyncio.Event()

        async def sleep_then_cancel(seconds):
            cancel.set()
            await asyncio.sleep(10)

        poller = JobPoller(remote, store, retry_policy=fast_retry, sleep=sleep_then_cancel)
        remote.script("job-1", working())

        with pytest.raises(PollCancelledError) as exc_info:
            await poller.await_completion(registered, FAST_POLICY, cancel_event=cancel)

        assert exc_info.value.last_snapshot.state is JobState.WORKING
        assert remote.count_status_queries() == 1
        assert store.get(registered.key).is_terminal is False

    @pytest.mark.asyncio
    async def test_already_cancelled(self, poller, remote, registered):
        cancel = asyncio.Event()
        cancel.set()
        remote.script("job-1", working())

        with pytest.raises(PollCancelledError):
            await poller.await_completion(registered, FAST_POLICY, cancel_event=cancel)

        assert remote.count_status_queries() == 0

    @pytest.mark.asyncio
    async def test_cancel_during_retry_delay_stops_queries(self, remote, store, registered):
        cancel = asyncio.Event()
        slow_retry = RetryPolicy(max_attempts=5, base_delay=0.05, jitter=False)
        poller = JobPoller(remote, store, retry_policy=slow_retry)
        remote.script("job-1", TransportError("connection reset"))
        asyncio.get_running_loop().call_later(0.01, cancel.set)

        with pytest.raises(PollCancelledError):
            await poller.await_completion(registered, FAST_POLICY, cancel_event=cancel)

        assert remote.count_status_queries() == 1
        # Nothing left running in the background either
        await asyncio.sleep(0.3)
        assert remote.count_status_queries() == 1
        assert store.get(registered.key).state is JobState.WAITING

    @pytest.mark.asyncio
    async def test_cancel_does_not_disturb_other_pollers(self, store, registered):
        remote = FakeRemote(latency=0.02)
        poller = JobPoller(remote, store, retry_policy=RetryPolicy(max_attempts=1))
        remote.script("job-1", working(), complete())
        cancel = asyncio.Event()

        async def cancel_soon():
            await asyncio.sleep(0.005)
            cancel.set()

        cancelled, finished, _ = await asyncio.gather(
            poller.await_completion(registered, FAST_POLICY, cancel_event=cancel),
            poller.await_completion(
                registered,
                PollPolicy(initial_interval_ms=10, max_total_wait_ms=1000),
            ),
            cancel_soon(),
            return_exceptions=True,
        )

        assert isinstance(cancelled, PollCancelledError)
        assert finished.state is JobState.COMPLETE
