"""Unit tests for the export job domain models."""

from datetime import timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from mailexport_core.domain.models import (
    ExportJob,
    JobKey,
    JobState,
    JobType,
    PollPolicy,
)
from mailexport_core.runtime.protocols import ExportApi
from tests.mailexport_core.fakes import T0

NINETY_DAYS = timedelta(days=90)


def make_job(**overrides) -> ExportJob:
    fields = {
        "id": "job-1",
        "type": JobType.ACTIVITY,
        "created_at": T0,
        "state": JobState.WORKING,
    }
    fields.update(overrides)
    return ExportJob(**fields)


class TestJobState:
    """Tests for parsing the open state enumeration."""

    @pytest.mark.parametrize("raw", ["waiting", "working", "complete", "error", "expired"])
    def test_known_states(self, raw):
        state, state_raw = JobState.parse(raw)

        assert state.value == raw
        assert state_raw is None

    def test_parse_is_case_insensitive(self):
        assert JobState.parse("Complete") == (JobState.COMPLETE, None)

    def test_unrecognized_tag_keeps_raw_value(self):
        """New remote states must not break parsing."""
        assert JobState.parse("archiving") == (JobState.UNKNOWN, "archiving")

    def test_literal_unknown_is_kept_raw(self):
        assert JobState.parse("unknown") == (JobState.UNKNOWN, "unknown")

    def test_terminal_states(self):
        terminal = {state for state in JobState if state.is_terminal}
        assert terminal == {JobState.COMPLETE, JobState.ERROR, JobState.EXPIRED}


class TestJobKey:
    """Tests for keeping the two identifier spaces apart."""

    def test_transactional_ids_are_strings(self):
        with pytest.raises(PydanticValidationError):
            JobKey(api=ExportApi.TRANSACTIONAL, id=42)

    def test_account_ids_are_integers(self):
        with pytest.raises(PydanticValidationError):
            JobKey(api=ExportApi.MARKETING, id="42")

    def test_same_number_different_api_are_distinct(self):
        transactional = JobKey(api=ExportApi.TRANSACTIONAL, id="42")
        account = JobKey(api=ExportApi.MARKETING, id=42)

        assert transactional != account
        assert len({transactional, account}) == 2

    def test_job_type_decides_api(self):
        assert JobType.ACCOUNT.api is ExportApi.MARKETING
        assert JobType.REJECT.api is ExportApi.TRANSACTIONAL


class TestExportJobInvariants:
    """finished_at iff terminal; result_url only when complete."""

    def test_non_terminal_without_finished_at(self):
        job = make_job(state=JobState.WAITING)

        assert job.finished_at is None
        assert job.is_terminal is False

    def test_terminal_requires_finished_at(self):
        with pytest.raises(PydanticValidationError):
            make_job(state=JobState.ERROR)

    def test_non_terminal_rejects_finished_at(self):
        with pytest.raises(PydanticValidationError):
            make_job(state=JobState.WORKING, finished_at=T0)

    def test_result_url_requires_complete(self):
        with pytest.raises(PydanticValidationError):
            make_job(state=JobState.ERROR, finished_at=T0, result_url="https://x")

    def test_account_job_needs_numeric_id(self):
        with pytest.raises(PydanticValidationError):
            make_job(type=JobType.ACCOUNT, id="7")

    def test_is_frozen(self):
        job = make_job()
        with pytest.raises(Exception):
            job.state = JobState.COMPLETE

    def test_naive_datetimes_become_utc(self):
        job = make_job(created_at=T0.replace(tzinfo=None))
        assert job.created_at == T0

    def test_key(self):
        assert make_job().key == JobKey(api=ExportApi.TRANSACTIONAL, id="job-1")


class TestLazyExpiry:
    """Tests for the time-driven complete -> expired transition."""

    def complete(self) -> ExportJob:
        return make_job(state=JobState.COMPLETE, finished_at=T0, result_url="https://dl/1")

    def test_within_window_unchanged(self):
        job = self.complete()
        assert job.evaluated(T0 + timedelta(days=89), NINETY_DAYS) is job

    def test_exactly_at_window_still_complete(self):
        job = self.complete()
        assert job.evaluated(T0 + NINETY_DAYS, NINETY_DAYS).state is JobState.COMPLETE

    def test_past_window_expires(self):
        expired = self.complete().evaluated(T0 + timedelta(days=91), NINETY_DAYS)

        assert expired.state is JobState.EXPIRED
        assert expired.result_url is None
        assert expired.finished_at == T0

    def test_other_states_untouched(self):
        job = make_job(state=JobState.ERROR, finished_at=T0)
        assert job.evaluated(T0 + timedelta(days=365), NINETY_DAYS) is job

    def test_expires_at(self):
        assert self.complete().expires_at(NINETY_DAYS) == T0 + NINETY_DAYS
        assert make_job().expires_at(NINETY_DAYS) is None


class TestPollPolicy:
    def test_next_interval_is_capped(self):
        policy = PollPolicy(
            initial_interval_ms=100, max_interval_ms=1000, backoff_multiplier=2, max_total_wait_ms=5000
        )

        assert policy.next_interval(100) == 200
        assert policy.next_interval(800) == 1000

    def test_initial_cannot_exceed_max(self):
        with pytest.raises(PydanticValidationError):
            PollPolicy(initial_interval_ms=2000, max_interval_ms=1000)

    def test_multiplier_below_one_rejected(self):
        with pytest.raises(PydanticValidationError):
            PollPolicy(backoff_multiplier=0.5)

    def test_zero_budget_allowed(self):
        assert PollPolicy(max_total_wait_ms=0).max_total_wait_ms == 0
