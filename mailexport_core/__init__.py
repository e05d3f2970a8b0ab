"""
mailexport: client-side orchestration of asynchronous email export jobs.

Creates activity, rejection-list, allow-list and account export jobs, polls
them to completion, validates their time-limited result URLs and manages
the transactional allow-list.
"""

from mailexport_core.client import ExportJobsClient

__all__ = ["ExportJobsClient"]
