"""
Export job orchestration.

Exports:
    - JobRecordStore: In-memory registry of observed job state
    - JobSubmitter: Validates parameters and creates remote jobs
    - JobPoller: Polls jobs to completion with bounded backoff
    - JobCatalog: Lists remote jobs across both APIs
    - ArtifactResolver: Validates result URLs against their expiry window
"""

from mailexport_core.jobs.artifacts import ArtifactResolver
from mailexport_core.jobs.catalog import JobCatalog
from mailexport_core.jobs.poller import JobPoller
from mailexport_core.jobs.state_machine import VALID_TRANSITIONS, can_transition
from mailexport_core.jobs.store import JobRecordStore
from mailexport_core.jobs.submitter import JobSubmitter

__all__ = [
    "ArtifactResolver",
    "JobCatalog",
    "JobPoller",
    "JobRecordStore",
    "JobSubmitter",
    "VALID_TRANSITIONS",
    "can_transition",
]
