"""
JobSubmitter: validates export parameters and creates remote export jobs.

Creation is not idempotent on the remote side, so every call issues exactly
one request and transport failures are surfaced instead of retried.
"""

from __future__ import annotations

from typing import Any, Mapping

from loguru import logger
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from mailexport_core.domain.codec import job_from_account_export, job_from_transactional
from mailexport_core.domain.models import ExportJob, JobType
from mailexport_core.domain.params import (
    AUDIENCES_STAGE,
    PARAMS_BY_TYPE,
    AccountExportParams,
    ActivityExportParams,
)
from mailexport_core.jobs.store import JobRecordStore
from mailexport_core.runtime.errors import ServiceError, ValidationError
from mailexport_core.runtime.protocols import Endpoint, Endpoints, RequestPerformer

CREATE_ENDPOINTS: dict[JobType, Endpoint] = {
    JobType.ACTIVITY: Endpoints.EXPORT_ACTIVITY,
    JobType.REJECT: Endpoints.EXPORT_REJECTS,
    JobType.ALLOWLIST: Endpoints.EXPORT_ALLOWLIST,
    JobType.ACCOUNT: Endpoints.ACCOUNT_EXPORT_CREATE,
}


class JobSubmitter:
    """
    Creates export jobs and registers them in the JobRecordStore.

    Usage:
        submitter = JobSubmitter(transport, store)
        job = await submitter.submit(
            JobType.ACTIVITY, ActivityExportParams(tags=["promo"])
        )
    """

    def __init__(
        self,
        transport: RequestPerformer,
        store: JobRecordStore,
        warn_on_unfiltered: bool | None = None,
    ):
        """
        Args:
            transport: Executes remote requests.
            store: Registry the new job is added to.
            warn_on_unfiltered: Log a warning for activity exports without
                any filter; defaults to settings.
        """
        if warn_on_unfiltered is None:
            from mailexport_core.config import settings

            warn_on_unfiltered = settings.WARN_ON_UNFILTERED_ACTIVITY_EXPORT
        self._transport = transport
        self._store = store
        self._warn_on_unfiltered = warn_on_unfiltered

    def validate(
        self, job_type: JobType | str, params: BaseModel | Mapping[str, Any] | None
    ) -> tuple[JobType, BaseModel]:
        """
        Check ``params`` against the shape required by ``job_type``.

        Args:
            job_type: Export kind (enum or its string value).
            params: A params model for that kind, a mapping of its fields,
                or None for kinds without required fields.

        Returns:
            (job_type, validated params model)

        Raises:
            ValidationError: Unknown kind, wrong params type or invalid fields.
        """
        try:
            job_type = JobType(job_type)
        except ValueError:
            raise ValidationError(
                f"Unknown export job type {job_type!r}", operation="submit"
            )

        model_cls = PARAMS_BY_TYPE[job_type]
        if isinstance(params, BaseModel):
            if not isinstance(params, model_cls):
                raise ValidationError(
                    f"{job_type.value} exports take {model_cls.__name__}, "
                    f"got {type(params).__name__}",
                    operation="submit",
                )
            return job_type, params

        try:
            return job_type, model_cls.model_validate(dict(params or {}))
        except PydanticValidationError as e:
            raise ValidationError(
                f"Invalid parameters for {job_type.value} export: "
                f"{e.errors()[0]['msg']}",
                message_debug=str(e),
                operation="submit",
                cause=e,
            )

    async def submit(
        self,
        job_type: JobType | str,
        params: BaseModel | Mapping[str, Any] | None = None,
    ) -> ExportJob:
        """
        Create a remote export job and register it.

        Args:
            job_type: Export kind.
            params: Creation parameters (see ``validate``).

        Returns:
            The registered job snapshot.

        Raises:
            ValidationError: Parameters rejected before any remote call.
            TransportError: Network failure during creation (not retried).
            InconsistentStateError: The remote response is not a valid job.
        """
        job_type, model = self.validate(job_type, params)
        self._warn_about_filters(job_type, model)

        endpoint = CREATE_ENDPOINTS[job_type]
        logger.info(f"Submitting {job_type.value} export via {endpoint.path}")
        try:
            response = await self._transport.perform_request(endpoint, model.to_payload())
        except ServiceError as e:
            logger.error(f"{job_type.value} export creation failed: {e}")
            raise e.with_context(operation="submit")

        if job_type is JobType.ACCOUNT:
            job = job_from_account_export(response, operation="submit")
        else:
            job = job_from_transactional(response, operation="submit", fallback_type=job_type)
            if job.type is not job_type:
                logger.warning(
                    f"[{job.key}] Requested {job_type.value} export, remote reported {job.type.value}"
                )
            if job.notify_email is None and getattr(model, "notify_email", None):
                job = job.model_copy(update={"notify_email": model.notify_email})

        job = await self._store.register(job)
        logger.info(f"[{job.key}] Created {job.type.value} export in state {job.state.value}")
        return job

    def _warn_about_filters(self, job_type: JobType, model: BaseModel) -> None:
        if (
            self._warn_on_unfiltered
            and isinstance(model, ActivityExportParams)
            and not model.has_filters
        ):
            logger.warning(
                "Activity export without date, tag, sender, state or api-key filters "
                "will export the full activity history"
            )
        if (
            isinstance(model, AccountExportParams)
            and model.since_timestamp is not None
            and AUDIENCES_STAGE in model.include_stages
        ):
            logger.debug("since_timestamp does not limit the audiences stage")
