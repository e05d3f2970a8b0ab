"""
Domain models for export jobs, allow-list entries and artifacts.

Every model is a frozen pydantic model: the store hands out snapshots and
never lets a caller mutate the record it owns.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from mailexport_core.runtime.protocols import ExportApi


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class JobType(str, Enum):
    """
    Export job kinds.

    ``account`` exports live in the marketing API and use numeric ids; the
    other kinds live in the transactional API and use string ids.
    """

    ACTIVITY = "activity"
    REJECT = "reject"
    ALLOWLIST = "allowlist"
    ACCOUNT = "account"

    @property
    def api(self) -> ExportApi:
        if self is JobType.ACCOUNT:
            return ExportApi.MARKETING
        return ExportApi.TRANSACTIONAL


class JobState(str, Enum):
    """
    Export job states.

    The remote enumeration is open: any tag this client does not know maps
    to UNKNOWN and the raw value is kept on the record.
    """

    WAITING = "waiting"
    WORKING = "working"
    COMPLETE = "complete"
    ERROR = "error"
    EXPIRED = "expired"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, raw: str | None) -> tuple["JobState", str | None]:
        """Parse a remote tag into (state, raw_value_if_unknown)."""
        if raw is None:
            return cls.UNKNOWN, None
        normalized = str(raw).strip().lower()
        try:
            state = cls(normalized)
        except ValueError:
            return cls.UNKNOWN, str(raw)
        if state is cls.UNKNOWN:
            return cls.UNKNOWN, str(raw)
        return state, None

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({JobState.COMPLETE, JobState.ERROR, JobState.EXPIRED})


class JobKey(BaseModel):
    """
    Store key for an export job.

    Pairs the identifier with the API that issued it, so a transactional
    job "42" and an account export 42 can never be confused.
    """

    api: ExportApi
    id: str | int

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_id_space(self) -> "JobKey":
        check_id_space(self.api, self.id)
        return self

    def __str__(self) -> str:
        return f"{self.api.value}:{self.id}"


def check_id_space(api: ExportApi, job_id: object) -> None:
    """Raise ValueError if ``job_id`` does not belong to ``api``'s id space."""
    if api is ExportApi.MARKETING:
        if isinstance(job_id, bool) or not isinstance(job_id, int):
            raise ValueError(f"Account export ids are integers, got {job_id!r}")
    elif not isinstance(job_id, str) or not job_id:
        raise ValueError(f"Transactional export ids are non-empty strings, got {job_id!r}")


class ExportJob(BaseModel):
    """
    Snapshot of a remote export job.

    Invariants:
    - ``finished_at`` is set iff the state is terminal.
    - ``result_url`` is set only when the state is complete.
    - ``last_known_state`` is set only while the state is unknown, and is
      a recognized non-terminal state.
    """

    id: str | int = Field(..., description="Remote identifier, immutable")
    type: JobType
    created_at: datetime
    state: JobState
    state_raw: Optional[str] = Field(None, description="Remote tag when state is unknown")
    last_known_state: Optional[JobState] = Field(
        None, description="Last recognized state before the job turned unknown"
    )
    finished_at: Optional[datetime] = None
    size_in_bytes: Optional[int] = Field(None, ge=0)
    result_url: Optional[str] = None
    notify_email: Optional[str] = None

    model_config = {"frozen": True}

    @field_validator("created_at", "finished_at")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_invariants(self) -> "ExportJob":
        check_id_space(self.type.api, self.id)
        if self.state.is_terminal and self.finished_at is None:
            raise ValueError(f"Terminal state {self.state.value} requires finished_at")
        if not self.state.is_terminal and self.finished_at is not None:
            raise ValueError(f"Non-terminal state {self.state.value} cannot have finished_at")
        if self.result_url is not None and self.state is not JobState.COMPLETE:
            raise ValueError(f"result_url is only valid for complete jobs, not {self.state.value}")
        if self.last_known_state is not None and (
            self.state is not JobState.UNKNOWN
            or self.last_known_state in (JobState.UNKNOWN, *TERMINAL_STATES)
        ):
            raise ValueError(
                f"last_known_state {self.last_known_state.value} is invalid for {self.state.value}"
            )
        return self

    @property
    def api(self) -> ExportApi:
        return self.type.api

    @property
    def key(self) -> JobKey:
        return JobKey(api=self.api, id=self.id)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def expires_at(self, validity: timedelta) -> datetime | None:
        """End of the result URL's validity window, if the job finished."""
        if self.finished_at is None:
            return None
        return self.finished_at + validity

    def evaluated(self, now: datetime, validity: timedelta) -> "ExportJob":
        """Apply the time-driven ``complete -> expired`` transition.

        Returns self unless the job is complete and ``now - finished_at``
        exceeds ``validity``, in which case an expired copy without
        ``result_url`` is returned.
        """
        if self.state is not JobState.COMPLETE or self.finished_at is None:
            return self
        if now - self.finished_at <= validity:
            return self
        return self.model_copy(update={"state": JobState.EXPIRED, "result_url": None})


class AllowListEntry(BaseModel):
    """An allow-listed address as reported by the remote API."""

    email: str
    detail: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"frozen": True}

    @field_validator("created_at")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)


class AllowListDeleteResult(BaseModel):
    """Outcome of a remove; ``deleted=False`` means the address was not listed."""

    email: str
    deleted: bool

    model_config = {"frozen": True}


class ArtifactHandle(BaseModel):
    """A validated download URL and the instant it stops being valid."""

    job_key: JobKey
    url: str
    finished_at: datetime
    expires_at: datetime

    model_config = {"frozen": True}


class PollPolicy(BaseModel):
    """
    Backoff configuration for awaiting job completion.

    After each non-terminal status the poller sleeps ``interval`` and then
    sets ``interval = min(interval * backoff_multiplier, max_interval_ms)``.
    Polling stops with a timeout once the accumulated sleep would exceed
    ``max_total_wait_ms``.
    """

    initial_interval_ms: int = Field(1_000, gt=0)
    max_interval_ms: int = Field(30_000, gt=0)
    backoff_multiplier: float = Field(2.0, ge=1.0)
    max_total_wait_ms: int = Field(15 * 60 * 1_000, ge=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check_bounds(self) -> "PollPolicy":
        if self.initial_interval_ms > self.max_interval_ms:
            raise ValueError("initial_interval_ms cannot exceed max_interval_ms")
        return self

    @classmethod
    def from_settings(cls) -> "PollPolicy":
        from mailexport_core.config import settings

        return cls(
            initial_interval_ms=settings.POLL_INITIAL_INTERVAL_MS,
            max_interval_ms=settings.POLL_MAX_INTERVAL_MS,
            backoff_multiplier=settings.POLL_BACKOFF_MULTIPLIER,
            max_total_wait_ms=settings.POLL_MAX_TOTAL_WAIT_MS,
        )

    def next_interval(self, interval_ms: float) -> float:
        return min(interval_ms * self.backoff_multiplier, float(self.max_interval_ms))
