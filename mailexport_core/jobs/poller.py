"""
JobPoller: drives status queries until an export job reaches a terminal state.

Polling backs off geometrically between queries and gives up once the
caller's wait budget would be exceeded. Concurrent pollers of the same job
share one in-flight status query, so the remote API never sees more than
one outstanding status request per job. Each shared query is a single
request; retries after a transient failure belong to the caller and stop
when that caller cancels.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

from loguru import logger

from mailexport_core.domain.codec import job_from_account_export, job_from_transactional
from mailexport_core.domain.models import ExportJob, JobKey, PollPolicy
from mailexport_core.jobs.store import JobRecordStore
from mailexport_core.runtime.errors import (
    PollCancelledError,
    PollTimeoutError,
    ServiceError,
)
from mailexport_core.runtime.protocols import Endpoints, ExportApi, RequestPerformer
from mailexport_core.runtime.retry import RetryPolicy, wait_or_cancel, with_retry

Sleep = Callable[[float], Awaitable[Any]]


class JobPoller:
    """
    Polls export jobs to completion.

    ``error`` and ``expired`` are returned as values: they are valid outcomes
    of a job, not failures of the poller. Only an exhausted budget
    (PollTimeoutError), cancellation (PollCancelledError) and transport or
    remote failures raise.

    Usage:
        poller = JobPoller(transport, store)
        job = await poller.await_completion(job.key, PollPolicy(max_total_wait_ms=60_000))
    """

    def __init__(
        self,
        transport: RequestPerformer,
        store: JobRecordStore,
        retry_policy: RetryPolicy | None = None,
        default_policy: PollPolicy | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Args:
            transport: Executes remote requests.
            store: Registry updated with every observation.
            retry_policy: Retries for transient status-query failures.
            default_policy: Poll policy used when a call passes none.
            sleep: Suspends between polls (injectable for tests).
        """
        self._transport = transport
        self._store = store
        self._retry_policy = retry_policy or RetryPolicy.from_settings()
        self._default_policy = default_policy
        self._sleep = sleep
        self._inflight: dict[JobKey, asyncio.Future[ExportJob]] = {}

    @property
    def default_policy(self) -> PollPolicy:
        if self._default_policy is None:
            self._default_policy = PollPolicy.from_settings()
        return self._default_policy

    @staticmethod
    def _key_of(job: ExportJob | JobKey) -> JobKey:
        return job.key if isinstance(job, ExportJob) else job

    # ------------------------------------------------------------------
    # Status queries
    # ------------------------------------------------------------------

    async def _fetch_status(self, key: JobKey) -> ExportJob:
        """One status request, decoded into a snapshot."""
        if key.api is ExportApi.MARKETING:
            endpoint = Endpoints.ACCOUNT_EXPORT_INFO.with_path(export_id=key.id)
            response = await self._transport.perform_request(endpoint, None)
            return job_from_account_export(response, operation="status")

        current = self._store.get(key)
        response = await self._transport.perform_request(
            Endpoints.EXPORT_INFO, {"id": key.id}
        )
        return job_from_transactional(
            response,
            operation="status",
            fallback_type=current.type if current else None,
        )

    async def _query_and_apply(self, key: JobKey) -> ExportJob:
        observed = await self._fetch_status(key)
        if observed.key != key:
            logger.warning(f"[{key}] Status response carried id {observed.id!r}")
        return await self._store.apply(observed)

    def _release(self, key: JobKey, task: asyncio.Future[ExportJob]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the exception retrieved when every waiter has gone away
        if not task.cancelled():
            task.exception()

    async def _query_once(self, key: JobKey) -> ExportJob:
        """One status request per job at a time, shared by every caller."""
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.ensure_future(self._query_and_apply(key))
            self._inflight[key] = task
            task.add_done_callback(lambda t, key=key: self._release(key, t))
        else:
            logger.debug(f"[{key}] Joining in-flight status query")
        return await asyncio.shield(task)

    async def refresh(
        self, job: ExportJob | JobKey, cancel_event: asyncio.Event | None = None
    ) -> ExportJob:
        """
        Query the job's status and update the store.

        Callers that arrive while a query for the same job is in flight
        wait for that query instead of issuing another. Transient failures
        are retried per the retry policy; setting ``cancel_event`` stops
        further attempts and re-raises the last failure.

        Returns:
            The updated snapshot.
        """
        key = self._key_of(job)
        query = with_retry(self._retry_policy, cancel_event=cancel_event)(self._query_once)
        try:
            return await query(key)
        except ServiceError as e:
            raise e.with_context(operation="status", job_id=key.id)

    # ------------------------------------------------------------------
    # Polling loop
    # ------------------------------------------------------------------

    def _cancelled(self, key: JobKey, snapshot: ExportJob | None) -> PollCancelledError:
        logger.info(f"[{key}] Polling cancelled by caller")
        return PollCancelledError(
            "Polling cancelled before the job finished",
            last_snapshot=snapshot,
            operation="await_completion",
            job_id=key.id,
        )

    async def await_completion(
        self,
        job: ExportJob | JobKey,
        policy: PollPolicy | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ExportJob:
        """
        Poll until the job is terminal.

        Args:
            job: The job (or its key) to wait for.
            policy: Backoff and budget; defaults to the poller's policy.
            cancel_event: Setting it stops polling promptly. Cancellation
                never marks the job terminal.

        Returns:
            The terminal snapshot (complete, error or expired).

        Raises:
            PollTimeoutError: The budget ran out while the job was non-terminal.
            PollCancelledError: ``cancel_event`` was set.
            ServiceError: Transport failure after retries, or an
                inconsistent remote state.
        """
        key = self._key_of(job)
        policy = policy or self.default_policy

        current = self._store.get(key)
        if current is not None and current.is_terminal:
            return current

        if policy.max_total_wait_ms <= 0:
            raise PollTimeoutError(
                "Polling budget is zero and the job is not finished",
                last_snapshot=current,
                operation="await_completion",
                job_id=key.id,
            )

        interval = float(policy.initial_interval_ms)
        waited = 0.0
        queries = 0

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise self._cancelled(key, current)

            cancelled, snapshot = await wait_or_cancel(
                self.refresh(key, cancel_event), cancel_event
            )
            if cancelled:
                raise self._cancelled(key, current)
            current = snapshot
            queries += 1

            if current.is_terminal:
                logger.info(
                    f"[{key}] Finished in state {current.state.value} "
                    f"after {queries} status queries ({waited:.0f}ms waited)"
                )
                return current

            if waited + interval > policy.max_total_wait_ms:
                logger.warning(
                    f"[{key}] Poll budget of {policy.max_total_wait_ms}ms exhausted "
                    f"in state {current.state.value}"
                )
                raise PollTimeoutError(
                    f"Job still {current.state.value} after waiting {waited:.0f}ms",
                    last_snapshot=current,
                    waited_ms=waited,
                    operation="await_completion",
                    job_id=key.id,
                )

            logger.debug(f"[{key}] State {current.state.value}, next poll in {interval:.0f}ms")
            cancelled, _ = await wait_or_cancel(self._sleep(interval / 1000), cancel_event)
            if cancelled:
                raise self._cancelled(key, current)
            waited += interval
            interval = policy.next_interval(interval)
