"""Background job tracking — status reconciliation and log polling."""

from clusterwatch.jobs.monitor import JOB_LIST_KEY, JobMonitor, job_log_key
from clusterwatch.jobs.reconciler import ChangeCallback, StatusReconciler, candidate_from_log

__all__ = [
    "ChangeCallback",
    "JOB_LIST_KEY",
    "JobMonitor",
    "StatusReconciler",
    "candidate_from_log",
    "job_log_key",
]
