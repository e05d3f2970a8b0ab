"""
Domain models for export jobs and the allow-list.

Exports:
    - ExportJob / JobKey: Job snapshots and their store key
    - JobType / JobState: Job kinds and the open state enumeration
    - AllowListEntry / AllowListDeleteResult: Allow-list shapes
    - ArtifactHandle: Validated result URL with its expiry instant
    - PollPolicy: Backoff configuration for awaiting completion
    - *ExportParams: Creation parameters per job kind
"""

from mailexport_core.domain.models import (
    TERMINAL_STATES,
    AllowListDeleteResult,
    AllowListEntry,
    ArtifactHandle,
    ExportJob,
    JobKey,
    JobState,
    JobType,
    PollPolicy,
    utcnow,
)
from mailexport_core.domain.params import (
    AccountExportParams,
    ActivityExportParams,
    AllowListExportParams,
    RejectExportParams,
)

__all__ = [
    "TERMINAL_STATES",
    "AccountExportParams",
    "ActivityExportParams",
    "AllowListDeleteResult",
    "AllowListEntry",
    "AllowListExportParams",
    "ArtifactHandle",
    "ExportJob",
    "JobKey",
    "JobState",
    "JobType",
    "PollPolicy",
    "RejectExportParams",
    "utcnow",
]
