"""Unit tests for export request parameters."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from mailexport_core.domain.models import JobType
from mailexport_core.domain.params import (
    PARAMS_BY_TYPE,
    AccountExportParams,
    ActivityExportParams,
    RejectExportParams,
    check_email,
)
from tests.mailexport_core.fakes import T0


class TestCheckEmail:
    def test_strips_whitespace(self):
        assert check_email("  ops@example.com ") == "ops@example.com"

    @pytest.mark.parametrize("value", ["", "no-at-sign", "a@b", "two@@example.com", "a b@c.io"])
    def test_rejects_malformed(self, value):
        with pytest.raises(ValueError):
            check_email(value)


class TestActivityExportParams:
    """Tests for activity export filters."""

    def test_empty_params_have_no_filters(self):
        params = ActivityExportParams()

        assert params.has_filters is False
        assert params.to_payload() == {}

    def test_payload_formats_dates_in_utc(self):
        eastern = timezone(timedelta(hours=-5))
        params = ActivityExportParams(
            date_from=datetime(2026, 1, 1, 7, 0, 0, tzinfo=eastern),
            date_to=T0,
            tags=["welcome", "billing"],
            notify_email="ops@example.com",
        )

        assert params.to_payload() == {
            "notify_email": "ops@example.com",
            "date_from": "2026-01-01 12:00:00",
            "date_to": "2026-01-15 12:00:00",
            "tags": ["welcome", "billing"],
        }

    def test_date_range_must_be_ordered(self):
        with pytest.raises(PydanticValidationError):
            ActivityExportParams(date_from=T0, date_to=T0 - timedelta(days=1))

    def test_blank_filter_values_rejected(self):
        with pytest.raises(PydanticValidationError):
            ActivityExportParams(senders=["a@example.com", " "])

    def test_unknown_fields_rejected(self):
        with pytest.raises(PydanticValidationError):
            ActivityExportParams(subject="hello")

    def test_notify_email_checked(self):
        with pytest.raises(PydanticValidationError):
            RejectExportParams(notify_email="not-an-email")


class TestAccountExportParams:
    """Tests for marketing account export parameters."""

    def test_requires_at_least_one_stage(self):
        with pytest.raises(PydanticValidationError):
            AccountExportParams(include_stages=[])

    def test_duplicate_stages_rejected(self):
        with pytest.raises(PydanticValidationError):
            AccountExportParams(include_stages=["audiences", "audiences "])

    def test_payload(self):
        params = AccountExportParams(include_stages=["audiences", "campaigns"], since_timestamp=T0)

        assert params.to_payload() == {
            "include_stages": ["audiences", "campaigns"],
            "since_timestamp": "2026-01-15T12:00:00+00:00",
        }

    def test_payload_without_since(self):
        params = AccountExportParams(include_stages=["reports"])
        assert params.to_payload() == {"include_stages": ["reports"]}


def test_every_job_type_has_params():
    assert set(PARAMS_BY_TYPE) == set(JobType)
