"""
In-memory registry of known export jobs and their last observed state.

Reads are lock-free and return immutable snapshots. Writes go through a
per-job asyncio.Lock, so state transitions for one job are serialized while
different jobs proceed independently. A job keeps its lock for the life of
the store, including across discard, so every writer of a key contends on
the same lock.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Iterator

from loguru import logger

from mailexport_core.domain.models import ExportJob, JobKey, JobType, utcnow
from mailexport_core.jobs.state_machine import apply_transition
from mailexport_core.runtime.errors import InconsistentStateError, NotFoundError


class JobRecordStore:
    """
    Registry of export jobs owned for the lifetime of a polling session.

    Every read applies the time-driven ``complete -> expired`` transition,
    so a caller never sees a live result URL past its validity window.

    Usage:
        store = JobRecordStore()
        await store.register(job)
        await store.apply(observed)          # validated transition
        latest = store.get(job.key)
    """

    def __init__(
        self,
        validity: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Args:
            validity: Result URL validity window; defaults to settings.
            clock: Source of the current UTC time.
        """
        if validity is None:
            from mailexport_core.config import settings

            validity = timedelta(days=settings.ARTIFACT_VALIDITY_DAYS)
        self.validity = validity
        self.clock = clock
        self._records: dict[JobKey, ExportJob] = {}
        self._locks: dict[JobKey, asyncio.Lock] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[JobKey]:
        return iter(list(self._records))

    def lock_for(self, key: JobKey) -> asyncio.Lock:
        """Return the write lock for ``key``."""
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _evaluate(self, job: ExportJob) -> ExportJob:
        return job.evaluated(self.clock(), self.validity)

    def get(self, key: JobKey) -> ExportJob | None:
        """Latest snapshot for ``key``, or None if not registered."""
        job = self._records.get(key)
        if job is None:
            return None
        return self._evaluate(job)

    def require(self, key: JobKey) -> ExportJob:
        """Latest snapshot for ``key``.

        Raises:
            NotFoundError: The key is not registered.
        """
        job = self.get(key)
        if job is None:
            raise NotFoundError(
                f"Export job {key} is not registered",
                operation="lookup",
                job_id=key.id,
            )
        return job

    def list(self, job_type: JobType | None = None) -> list[ExportJob]:
        """Snapshots of all registered jobs, oldest first."""
        jobs = [self._evaluate(job) for job in self._records.values()]
        if job_type is not None:
            jobs = [job for job in jobs if job.type is job_type]
        return sorted(jobs, key=lambda job: job.created_at)

    async def register(self, job: ExportJob) -> ExportJob:
        """Register a newly created job.

        Raises:
            InconsistentStateError: A job with the same key already exists.
        """
        async with self.lock_for(job.key):
            if job.key in self._records:
                raise InconsistentStateError(
                    f"Export job {job.key} is already registered",
                    operation="register",
                    job_id=job.id,
                )
            self._records[job.key] = job
        logger.debug(f"[{job.key}] Registered in state {job.state.value}")
        return self._evaluate(job)

    async def apply(self, observed: ExportJob) -> ExportJob:
        """Record a remote observation, validating the transition.

        Unknown keys are registered as-is.

        Raises:
            InconsistentStateError: The observation violates the state machine.
        """
        async with self.lock_for(observed.key):
            current = self._records.get(observed.key)
            updated = observed if current is None else apply_transition(current, observed)
            self._records[observed.key] = updated
        return self._evaluate(updated)

    async def discard(self, key: JobKey) -> bool:
        """Forget a job. Returns True if it was registered."""
        async with self.lock_for(key):
            return self._records.pop(key, None) is not None
