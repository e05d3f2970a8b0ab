"""
Wire codec: remote JSON shapes to domain models.

Both APIs return the job entity itself from creation, info and list
endpoints, so one parser per API covers every response.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping

from pydantic import ValidationError as PydanticValidationError

from mailexport_core.domain.models import (
    AllowListEntry,
    ExportJob,
    JobState,
    JobType,
    ensure_utc,
    utcnow,
)
from mailexport_core.runtime.errors import InconsistentStateError


def parse_timestamp(value: Any) -> datetime | None:
    """Parse remote timestamps.

    Accepts ``YYYY-MM-DD HH:MM:SS`` (UTC), ISO-8601 with or without ``Z``,
    datetimes, and empty values (returned as None).
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def _build_job(fields: dict[str, Any], operation: str) -> ExportJob:
    """Normalize terminal bookkeeping and construct the model."""
    state: JobState = fields["state"]
    observed_at: datetime = fields.pop("observed_at")

    if state.is_terminal:
        # Terminal without a finish time: the observation is the best bound
        if fields.get("finished_at") is None:
            fields["finished_at"] = observed_at
    else:
        fields["finished_at"] = None

    if state is not JobState.COMPLETE or not fields.get("result_url"):
        fields["result_url"] = None

    try:
        return ExportJob(**fields)
    except PydanticValidationError as e:
        raise InconsistentStateError(
            "Remote export job payload violates the job model",
            message_debug=str(e),
            operation=operation,
            job_id=fields.get("id"),
            cause=e,
        )


def job_from_transactional(
    data: Mapping[str, Any],
    observed_at: datetime | None = None,
    operation: str = "decode",
    fallback_type: JobType | None = None,
) -> ExportJob:
    """Parse a transactional ExportJob body.

    Args:
        data: ``{id, created_at, type, finished_at, state, result_url}``.
        observed_at: When the response was received.
        operation: Operation name for error context.
        fallback_type: Type to assume if the body omits ``type``.

    Raises:
        InconsistentStateError: The body is not a valid export job.
    """
    if not isinstance(data, Mapping) or not data.get("id"):
        raise InconsistentStateError(
            "Export job payload has no id",
            message_debug=repr(data)[:500],
            operation=operation,
        )
    observed_at = observed_at or utcnow()
    job_id = str(data["id"])

    try:
        job_type = JobType(str(data.get("type") or fallback_type.value).lower())
        created_at = parse_timestamp(data.get("created_at")) or observed_at
        finished_at = parse_timestamp(data.get("finished_at"))
    except (AttributeError, ValueError) as e:
        raise InconsistentStateError(
            "Export job payload has an invalid type or timestamp",
            message_debug=repr(data)[:500],
            operation=operation,
            job_id=job_id,
            cause=e,
        )
    if job_type is JobType.ACCOUNT:
        raise InconsistentStateError(
            "Transactional API reported an account export",
            operation=operation,
            job_id=job_id,
        )

    state, state_raw = JobState.parse(data.get("state"))
    return _build_job(
        {
            "id": job_id,
            "type": job_type,
            "created_at": created_at,
            "state": state,
            "state_raw": state_raw,
            "finished_at": finished_at,
            "size_in_bytes": data.get("size_in_bytes"),
            "result_url": data.get("result_url"),
            "notify_email": data.get("notify_email"),
            "observed_at": observed_at,
        },
        operation,
    )


def _account_state(data: Mapping[str, Any]) -> tuple[JobState, str | None]:
    """Account exports may omit ``state``; derive it from the timestamps."""
    if data.get("state"):
        return JobState.parse(data["state"])
    if not data.get("finished"):
        return JobState.WORKING, None
    if data.get("download_url"):
        return JobState.COMPLETE, None
    return JobState.EXPIRED, None


def job_from_account_export(
    data: Mapping[str, Any],
    observed_at: datetime | None = None,
    operation: str = "decode",
) -> ExportJob:
    """Parse a marketing AccountExport body.

    Args:
        data: ``{export_id, started, finished, size_in_bytes, download_url}``.
        observed_at: When the response was received.
        operation: Operation name for error context.

    Raises:
        InconsistentStateError: The body is not a valid account export.
    """
    raw_id = data.get("export_id") if isinstance(data, Mapping) else None
    if isinstance(raw_id, str) and raw_id.isdigit():
        raw_id = int(raw_id)
    if isinstance(raw_id, bool) or not isinstance(raw_id, int):
        raise InconsistentStateError(
            "Account export payload has no numeric export_id",
            message_debug=repr(data)[:500],
            operation=operation,
        )
    observed_at = observed_at or utcnow()

    try:
        created_at = parse_timestamp(data.get("started")) or observed_at
        finished_at = parse_timestamp(data.get("finished"))
    except ValueError as e:
        raise InconsistentStateError(
            "Account export payload has an invalid timestamp",
            message_debug=repr(data)[:500],
            operation=operation,
            job_id=raw_id,
            cause=e,
        )

    state, state_raw = _account_state(data)
    return _build_job(
        {
            "id": raw_id,
            "type": JobType.ACCOUNT,
            "created_at": created_at,
            "state": state,
            "state_raw": state_raw,
            "finished_at": finished_at,
            "size_in_bytes": data.get("size_in_bytes"),
            "result_url": data.get("download_url"),
            "observed_at": observed_at,
        },
        operation,
    )


def entry_from_wire(data: Mapping[str, Any]) -> AllowListEntry:
    """Parse an allow-list entry ``{email, detail, created_at}``."""
    return AllowListEntry(
        email=str(data["email"]),
        detail=data.get("detail") or None,
        created_at=parse_timestamp(data.get("created_at")),
    )
