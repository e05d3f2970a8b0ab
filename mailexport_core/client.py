"""
ExportJobsClient: one entry point wiring the export components together.

Example:
    async with ApiHttpClient.from_settings() as http:
        client = ExportJobsClient(http)
        job = await client.submit(JobType.ACTIVITY, {"tags": ["promo"]})
        job = await client.await_completion(job)
        artifact = client.resolve(job)
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from pydantic import BaseModel

from mailexport_core.allowlist.manager import AllowListManager
from mailexport_core.domain.models import (
    ArtifactHandle,
    ExportJob,
    JobKey,
    JobType,
    PollPolicy,
    utcnow,
)
from mailexport_core.jobs.artifacts import ArtifactResolver
from mailexport_core.jobs.catalog import JobCatalog
from mailexport_core.jobs.poller import JobPoller, Sleep
from mailexport_core.jobs.store import JobRecordStore
from mailexport_core.jobs.submitter import JobSubmitter
from mailexport_core.runtime.protocols import ExportApi, RequestPerformer
from mailexport_core.runtime.retry import RetryPolicy


class ExportJobsClient:
    """Facade over submitter, poller, catalog, resolver and allow-list manager."""

    def __init__(
        self,
        transport: RequestPerformer,
        retry_policy: RetryPolicy | None = None,
        poll_policy: PollPolicy | None = None,
        validity: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Sleep = asyncio.sleep,
    ):
        retry_policy = retry_policy or RetryPolicy.from_settings()
        self.store = JobRecordStore(validity=validity, clock=clock)
        self.submitter = JobSubmitter(transport, self.store)
        self.poller = JobPoller(
            transport,
            self.store,
            retry_policy=retry_policy,
            default_policy=poll_policy,
            sleep=sleep,
        )
        self.catalog = JobCatalog(transport, self.store, retry_policy=retry_policy)
        self.resolver = ArtifactResolver(validity=self.store.validity, clock=clock)
        self.allowlist = AllowListManager(transport, retry_policy=retry_policy)

    async def submit(
        self,
        job_type: JobType | str,
        params: BaseModel | Mapping[str, Any] | None = None,
    ) -> ExportJob:
        return await self.submitter.submit(job_type, params)

    async def await_completion(
        self,
        job: ExportJob | JobKey,
        policy: PollPolicy | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> ExportJob:
        return await self.poller.await_completion(job, policy, cancel_event)

    async def refresh(self, job: ExportJob | JobKey) -> ExportJob:
        return await self.poller.refresh(job)

    def get(self, job: ExportJob | JobKey) -> ExportJob:
        """Latest stored snapshot, with lazy expiry applied."""
        key = job.key if isinstance(job, ExportJob) else job
        return self.store.require(key)

    def resolve(self, job: ExportJob | JobKey) -> ArtifactHandle:
        """Validated result URL for the job's latest snapshot."""
        return self.resolver.resolve(self.get(job))

    async def list_jobs(
        self, api: ExportApi | None = None, track: bool = False
    ) -> list[ExportJob]:
        return await self.catalog.list_jobs(api, track)
