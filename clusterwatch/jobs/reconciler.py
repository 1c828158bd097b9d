"""StatusReconciler — one current status per job from several polled signals.

Signals, in precedence order for a log poll:

1. ``metadata.final_status`` — only populated once the job is truly final;
2. ``process_status`` — coarser, reported while the job runs.

The job list's own status is applied as a signal on every list poll.  A
change is published only when the resolved status differs from the current
one, and COMPLETED/FAILED are sticky: nothing moves a job out of a terminal
state.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable

import structlog

from clusterwatch.core.types import (
    Job,
    JobLogPayload,
    JobStatus,
    JobStatusChange,
    StatusSource,
)

logger = structlog.stdlib.get_logger()

ChangeCallback = Callable[[JobStatusChange], Awaitable[None] | None]

# final_status only ever carries a terminal outcome.
_FINAL_STATUSES: dict[str, JobStatus] = {
    "completed": JobStatus.COMPLETED,
    "failed": JobStatus.FAILED,
}


def candidate_from_log(payload: JobLogPayload) -> tuple[JobStatus, StatusSource] | None:
    """Resolve the candidate status carried by one log-stream response."""
    final = payload.metadata.get("final_status")
    if isinstance(final, str):
        status = _FINAL_STATUSES.get(final.strip().lower())
        if status is not None:
            return status, StatusSource.FINAL_STATUS

    if payload.process_status:
        status = JobStatus.parse(payload.process_status)
        if status is not None:
            return status, StatusSource.PROCESS_STATUS

    return None


class StatusReconciler:
    """Holds the canonical status per job id and publishes diffs.

    Usage::

        reconciler = StatusReconciler()
        reconciler.on_change(dispatcher.on_job_change)
        await reconciler.observe_job_list(jobs)
        await reconciler.observe_log(job_id, payload)
    """

    def __init__(self) -> None:
        self._statuses: dict[str, JobStatus] = {}
        self._callbacks: list[ChangeCallback] = []

    # ── Read model ──────────────────────────────────────────────

    def status(self, job_id: str) -> JobStatus | None:
        return self._statuses.get(job_id)

    def statuses(self) -> dict[str, JobStatus]:
        """Copy of the reconciled status per job id."""
        return dict(self._statuses)

    def is_terminal(self, job_id: str) -> bool:
        status = self._statuses.get(job_id)
        return status is not None and status.terminal

    def on_change(self, callback: ChangeCallback) -> None:
        """Register a callback for status changes."""
        self._callbacks.append(callback)

    # ── Signals ─────────────────────────────────────────────────

    def track(self, job_id: str, status: object) -> JobStatus | None:
        """Register a job with its initial job-list status (no change event).

        Already-tracked jobs are left untouched.
        """
        if job_id in self._statuses:
            return self._statuses[job_id]
        parsed = JobStatus.parse(status)
        if parsed is not None:
            self._statuses[job_id] = parsed
        return parsed

    def reconcile(
        self,
        job_id: str,
        candidate: JobStatus,
        source: StatusSource,
    ) -> JobStatusChange | None:
        """Apply one candidate status; returns the change, or None for a no-op."""
        current = self._statuses.get(job_id)
        if current == candidate:
            return None
        if current is not None and current.terminal:
            logger.debug(
                "job_status_conflict_ignored",
                job_id=job_id,
                current=current.name,
                candidate=candidate.name,
                source=source,
            )
            return None

        self._statuses[job_id] = candidate
        change = JobStatusChange(
            job_id=job_id,
            previous=current,
            current=candidate,
            source=source,
        )
        logger.info(
            "job_status_changed",
            job_id=job_id,
            previous=current.name if current is not None else None,
            current=candidate.name,
            source=source,
        )
        return change

    async def observe_job_list(self, jobs: Iterable[Job]) -> list[JobStatusChange]:
        """Apply the job list: new jobs are tracked, known jobs reconciled."""
        changes: list[JobStatusChange] = []
        for job in jobs:
            if job.job_id not in self._statuses:
                self.track(job.job_id, job.status)
                continue
            candidate = JobStatus.parse(job.status)
            if candidate is None:
                continue
            change = self.reconcile(job.job_id, candidate, StatusSource.JOB_LIST)
            if change is not None:
                changes.append(change)

        for change in changes:
            await self._emit(change)
        return changes

    async def observe_log(self, job_id: str, payload: JobLogPayload) -> JobStatusChange | None:
        """Apply one log-stream poll for *job_id*."""
        resolved = candidate_from_log(payload)
        if resolved is None:
            return None
        candidate, source = resolved
        change = self.reconcile(job_id, candidate, source)
        if change is not None:
            await self._emit(change)
        return change

    async def _emit(self, change: JobStatusChange) -> None:
        for cb in self._callbacks:
            try:
                result = cb(change)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("job_change_callback_error", job_id=change.job_id)
