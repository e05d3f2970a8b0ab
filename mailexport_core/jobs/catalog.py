"""
JobCatalog: lists every export job visible to the configured credentials.

The transactional API returns all jobs in one response; the marketing API
pages account exports and reports ``total_items`` independently of the page
size, so pages are followed until that total is reached.
"""

from __future__ import annotations

from typing import AsyncIterator

from loguru import logger

from mailexport_core.domain.codec import job_from_account_export, job_from_transactional
from mailexport_core.domain.models import ExportJob
from mailexport_core.jobs.store import JobRecordStore
from mailexport_core.runtime.errors import InconsistentStateError, ServiceError
from mailexport_core.runtime.protocols import Endpoints, ExportApi, RequestPerformer
from mailexport_core.runtime.retry import RetryPolicy, with_retry


class JobCatalog:
    """
    Remote job listing.

    Jobs the store already tracks are updated through the normal transition
    checks; untracked jobs are only returned, unless ``track`` is set.
    """

    def __init__(
        self,
        transport: RequestPerformer,
        store: JobRecordStore,
        retry_policy: RetryPolicy | None = None,
        page_size: int | None = None,
    ):
        if page_size is None:
            from mailexport_core.config import settings

            page_size = settings.ACCOUNT_EXPORTS_PAGE_SIZE
        self._transport = transport
        self._store = store
        self._retry_policy = retry_policy or RetryPolicy.from_settings()
        self.page_size = page_size

    async def _request(self, endpoint, payload):
        call = with_retry(self._retry_policy)(self._transport.perform_request)
        try:
            return await call(endpoint, payload)
        except ServiceError as e:
            raise e.with_context(operation="list_jobs")

    async def _sync(self, job: ExportJob, track: bool) -> ExportJob:
        if track or job.key in self._store:
            return await self._store.apply(job)
        return job.evaluated(self._store.clock(), self._store.validity)

    async def iter_transactional(self, track: bool = False) -> AsyncIterator[ExportJob]:
        """Yield every transactional export job."""
        response = await self._request(Endpoints.EXPORT_LIST, {})
        if not isinstance(response, list):
            raise InconsistentStateError(
                "Export list response is not a list", operation="list_jobs"
            )
        for item in response:
            yield await self._sync(job_from_transactional(item, operation="list_jobs"), track)

    async def iter_account_exports(self, track: bool = False) -> AsyncIterator[ExportJob]:
        """Yield every account export, following pages until ``total_items``."""
        offset = 0
        while True:
            response = await self._request(
                Endpoints.ACCOUNT_EXPORT_LIST,
                {"count": self.page_size, "offset": offset},
            )
            exports = response.get("exports") or []
            # A single export object instead of a list still counts as one item
            if isinstance(exports, dict):
                exports = [exports]
            total = int(response.get("total_items", 0))

            for item in exports:
                yield await self._sync(job_from_account_export(item, operation="list_jobs"), track)

            offset += len(exports)
            if not exports or offset >= total:
                logger.debug(f"Listed {offset} of {total} account exports")
                return

    async def list_jobs(
        self, api: ExportApi | None = None, track: bool = False
    ) -> list[ExportJob]:
        """
        Collect jobs from one or both APIs.

        Args:
            api: Restrict to one API; both when None.
            track: Register untracked jobs in the store.
        """
        jobs: list[ExportJob] = []
        if api in (None, ExportApi.TRANSACTIONAL):
            jobs.extend([job async for job in self.iter_transactional(track)])
        if api in (None, ExportApi.MARKETING):
            jobs.extend([job async for job in self.iter_account_exports(track)])
        return jobs
