"""
ArtifactResolver: turns a finished export job into a validated download URL.

Result URLs are valid for a fixed window (90 days by default) after the job
finishes. The resolver enforces that window itself, even when the remote
side still reports the job as complete. It never downloads anything.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from loguru import logger

from mailexport_core.domain.models import ArtifactHandle, ExportJob, JobState, utcnow
from mailexport_core.runtime.errors import ArtifactExpiredError, ArtifactNotReadyError


class ArtifactResolver:
    """Validates artifact access preconditions for export jobs."""

    def __init__(
        self,
        validity: timedelta | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        if validity is None:
            from mailexport_core.config import settings

            validity = timedelta(days=settings.ARTIFACT_VALIDITY_DAYS)
        self.validity = validity
        self.clock = clock

    def resolve(self, job: ExportJob) -> ArtifactHandle:
        """
        Return the job's result URL and its expiry instant.

        Args:
            job: A job snapshot.

        Returns:
            ArtifactHandle with ``url`` and ``expires_at``.

        Raises:
            ArtifactExpiredError: The job is expired, or its validity window
                has elapsed.
            ArtifactNotReadyError: The job is not complete or has no URL.
                Retryable only while the job is still running.
        """
        if job.state is JobState.EXPIRED:
            raise ArtifactExpiredError(
                "Export job is expired; its result is no longer available",
                operation="resolve",
                job_id=job.id,
            )

        if job.state is not JobState.COMPLETE:
            raise ArtifactNotReadyError(
                f"Export job is {job.state_raw or job.state.value}, not complete",
                retryable=not job.is_terminal,
                operation="resolve",
                job_id=job.id,
            )

        expires_at = job.expires_at(self.validity)
        now = self.clock()
        if now > expires_at:
            logger.info(f"[{job.key}] Result URL expired at {expires_at.isoformat()}")
            raise ArtifactExpiredError(
                f"Result URL expired at {expires_at.isoformat()}",
                operation="resolve",
                job_id=job.id,
            )

        if not job.result_url:
            raise ArtifactNotReadyError(
                "Export job is complete but reported no result URL",
                retryable=False,
                operation="resolve",
                job_id=job.id,
            )

        return ArtifactHandle(
            job_key=job.key,
            url=job.result_url,
            finished_at=job.finished_at,
            expires_at=expires_at,
        )
