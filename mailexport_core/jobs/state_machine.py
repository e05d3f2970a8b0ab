"""
Export job state machine.

    waiting ──► working ──► complete ──► expired
       │           │
       │           └──────► error
       └─► (any later state; polls are discrete and may skip states)

    unknown (unrecognized remote tag) may follow any non-terminal state.
    Leaving unknown is checked against the last recognized state, so
    working -> unknown -> waiting is as invalid as working -> waiting.
    A job first seen as unknown may go anywhere a waiting job may.

Invariants:
- Terminal states are final, except complete -> expired.
- finished_at is set once, on entry into a terminal state.
- Identity fields (id, type, created_at) never change.
"""

from __future__ import annotations

from loguru import logger

from mailexport_core.domain.models import ExportJob, JobState
from mailexport_core.runtime.errors import InconsistentStateError

_FORWARD_FROM_PENDING = {
    JobState.WORKING,
    JobState.COMPLETE,
    JobState.ERROR,
    JobState.EXPIRED,
    JobState.UNKNOWN,
}

# Valid transitions from each state (self-transitions are always allowed)
VALID_TRANSITIONS: dict[JobState, frozenset[JobState]] = {
    JobState.WAITING: frozenset(_FORWARD_FROM_PENDING),
    JobState.WORKING: frozenset(_FORWARD_FROM_PENDING - {JobState.WORKING}),
    JobState.UNKNOWN: frozenset(_FORWARD_FROM_PENDING | {JobState.WAITING}),
    JobState.COMPLETE: frozenset({JobState.EXPIRED}),
    # Terminal states - no transitions out
    JobState.ERROR: frozenset(),
    JobState.EXPIRED: frozenset(),
}


def can_transition(from_state: JobState, to_state: JobState) -> tuple[bool, str]:
    """
    Check if a transition is allowed.

    Args:
        from_state: Last observed state.
        to_state: Newly observed state.

    Returns:
        Tuple of (allowed, reason).
    """
    if from_state == to_state:
        return True, "Same state"

    if to_state in VALID_TRANSITIONS[from_state]:
        return True, "Valid transition"

    if from_state.is_terminal:
        return False, f"Cannot transition from terminal state {from_state.value}"

    return False, f"Invalid transition: {from_state.value} -> {to_state.value}"


def apply_transition(current: ExportJob, observed: ExportJob) -> ExportJob:
    """
    Merge a newly observed snapshot into the current record.

    Args:
        current: The record the store holds.
        observed: The snapshot just decoded from the remote API.

    Returns:
        The record to store.

    Raises:
        InconsistentStateError: The observation violates the state machine.
    """
    if observed.key != current.key:
        raise InconsistentStateError(
            f"Observed job {observed.key} does not match {current.key}",
            operation="transition",
            job_id=current.id,
        )
    if observed.type is not current.type:
        raise InconsistentStateError(
            f"Job type changed from {current.type.value} to {observed.type.value}",
            operation="transition",
            job_id=current.id,
        )

    basis = current.state
    if current.state is JobState.UNKNOWN and current.last_known_state is not None:
        basis = current.last_known_state
    allowed, reason = can_transition(basis, observed.state)
    if not allowed:
        raise InconsistentStateError(
            reason,
            message_debug=f"{current.key}: {basis.value} -> {observed.state_raw or observed.state.value}",
            operation="transition",
            job_id=current.id,
        )

    finished_at = observed.finished_at
    if current.finished_at is not None:
        if observed.finished_at != current.finished_at:
            logger.warning(
                f"[{current.key}] Remote finished_at changed "
                f"({current.finished_at} -> {observed.finished_at}); keeping the first value"
            )
        finished_at = current.finished_at

    last_known_state = None
    if observed.state is JobState.UNKNOWN:
        last_known_state = basis if basis is not JobState.UNKNOWN else None

    result_url = observed.result_url
    if observed.state is JobState.COMPLETE and result_url is None:
        result_url = current.result_url

    merged = observed.model_copy(
        update={
            "created_at": current.created_at,
            "finished_at": finished_at,
            "result_url": result_url,
            "last_known_state": last_known_state,
            "size_in_bytes": observed.size_in_bytes
            if observed.size_in_bytes is not None
            else current.size_in_bytes,
            "notify_email": current.notify_email or observed.notify_email,
        }
    )

    if merged.state != current.state:
        logger.info(f"[{current.key}] {current.state.value} -> {merged.state.value}")
    return merged
