"""
Request parameters for each export job kind.

Each model validates its own shape and knows how to render the wire payload
for its creation endpoint.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from mailexport_core.domain.models import JobType, ensure_utc

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Transactional API timestamps are UTC "YYYY-MM-DD HH:MM:SS"
TRANSACTIONAL_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

# Stage that the remote ignores ``since_timestamp`` for
AUDIENCES_STAGE = "audiences"


def check_email(value: str) -> str:
    """Strip and syntax-check an email address."""
    value = value.strip()
    if not EMAIL_PATTERN.match(value):
        raise ValueError(f"Invalid email address: {value!r}")
    return value


def format_transactional_time(value: datetime) -> str:
    return ensure_utc(value).strftime(TRANSACTIONAL_TIME_FORMAT)


class ExportParams(BaseModel):
    """Fields shared by every transactional export request."""

    notify_email: Optional[str] = Field(
        None, description="Address to notify when the export job has finished"
    )

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("notify_email")
    @classmethod
    def _check_notify_email(cls, value: str | None) -> str | None:
        return check_email(value) if value is not None else None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.notify_email:
            payload["notify_email"] = self.notify_email
        return payload


class RejectExportParams(ExportParams):
    """Parameters for a rejection (denylist) export."""


class AllowListExportParams(ExportParams):
    """Parameters for an allow-list export."""


class ActivityExportParams(ExportParams):
    """
    Parameters for an activity history export.

    Every filter is optional. List filters match messages with ANY of the
    given values.
    """

    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    tags: Optional[list[str]] = None
    senders: Optional[list[str]] = None
    states: Optional[list[str]] = None
    api_keys: Optional[list[str]] = None

    @field_validator("date_from", "date_to")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    @field_validator("tags", "senders", "states", "api_keys")
    @classmethod
    def _no_blank_values(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        if any(not item.strip() for item in value):
            raise ValueError("Filter values cannot be blank")
        return value

    @model_validator(mode="after")
    def _check_range(self) -> "ActivityExportParams":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self

    @property
    def has_filters(self) -> bool:
        return any(
            (
                self.date_from,
                self.date_to,
                self.tags,
                self.senders,
                self.states,
                self.api_keys,
            )
        )

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.date_from:
            payload["date_from"] = format_transactional_time(self.date_from)
        if self.date_to:
            payload["date_to"] = format_transactional_time(self.date_to)
        for name in ("tags", "senders", "states", "api_keys"):
            values = getattr(self, name)
            if values:
                payload[name] = list(values)
        return payload


class AccountExportParams(BaseModel):
    """
    Parameters for a marketing account export.

    ``since_timestamp`` limits the export to records created after it;
    the ``audiences`` stage is exempt from that limit on the remote side.
    """

    include_stages: list[str] = Field(..., min_length=1)
    since_timestamp: Optional[datetime] = None

    model_config = {"frozen": True, "extra": "forbid"}

    @field_validator("include_stages")
    @classmethod
    def _check_stages(cls, value: list[str]) -> list[str]:
        stages = [stage.strip() for stage in value]
        if any(not stage for stage in stages):
            raise ValueError("Stage names cannot be blank")
        if len(set(stages)) != len(stages):
            raise ValueError("Stage names must be unique")
        return stages

    @field_validator("since_timestamp")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"include_stages": list(self.include_stages)}
        if self.since_timestamp:
            payload["since_timestamp"] = self.since_timestamp.astimezone(
                timezone.utc
            ).isoformat()
        return payload


PARAMS_BY_TYPE: dict[JobType, type[BaseModel]] = {
    JobType.ACTIVITY: ActivityExportParams,
    JobType.REJECT: RejectExportParams,
    JobType.ALLOWLIST: AllowListExportParams,
    JobType.ACCOUNT: AccountExportParams,
}
