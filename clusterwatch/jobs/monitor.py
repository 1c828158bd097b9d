"""JobMonitor — job list polling plus log polling for the open job."""

from __future__ import annotations

from functools import partial

import structlog

from clusterwatch.api.client import ClusterApiClient
from clusterwatch.core.config import PollingConfig
from clusterwatch.core.types import FetchWarning, Job, JobLogPayload, JobStatus
from clusterwatch.jobs.reconciler import StatusReconciler
from clusterwatch.monitor.dispatcher import AlertDispatcher
from clusterwatch.polling.poller import Poller

logger = structlog.stdlib.get_logger()

JOB_LIST_KEY = "jobs.list"


def job_log_key(job_id: str) -> str:
    return f"jobs.logs.{job_id}"


class JobMonitor:
    """Jobs view state.

    The job list refreshes on its own interval.  Opening a job starts a
    faster log poll for it; the poll stops when the job is closed, another
    job is opened, or the reconciler reports the job as terminal.  All
    pollers are registered under one owner so the view tears down with a
    single :meth:`stop`.
    """

    def __init__(
        self,
        client: ClusterApiClient,
        poller: Poller,
        reconciler: StatusReconciler,
        dispatcher: AlertDispatcher | None = None,
        polling_config: PollingConfig | None = None,
        owner: str = "jobs",
    ) -> None:
        self._client = client
        self._poller = poller
        self._reconciler = reconciler
        self._dispatcher = dispatcher
        self._cfg = polling_config or PollingConfig()
        self._owner = owner
        self._jobs: list[Job] = []
        self._selected: str | None = None
        self._logs: list[str] = []
        self._metadata: dict[str, object] = {}

    # ── Read model ──────────────────────────────────────────────

    @property
    def jobs(self) -> list[Job]:
        """Latest job list with the reconciled status applied."""
        statuses = self._reconciler.statuses()
        return [
            job.model_copy(update={"status": int(statuses[job.job_id])})
            if job.job_id in statuses
            else job
            for job in self._jobs
        ]

    @property
    def selected_job(self) -> str | None:
        return self._selected

    @property
    def logs(self) -> list[str]:
        return list(self._logs)

    @property
    def metadata(self) -> dict[str, object]:
        return dict(self._metadata)

    def status(self, job_id: str) -> JobStatus | None:
        return self._reconciler.status(job_id)

    # ── Lifecycle ───────────────────────────────────────────────

    def start(self) -> None:
        self._poller.start(
            JOB_LIST_KEY,
            self._cfg.job_list_interval_ms,
            self._client.list_jobs,
            on_result=self._apply_jobs,
            on_error=partial(self._warn, JOB_LIST_KEY),
            initial_delay_ms=0,
            owner=self._owner,
        )

    def stop(self) -> None:
        """Tear down the view: list poll and any log poll."""
        self._poller.stop_owner(self._owner)
        self._selected = None

    def open_job(self, job_id: str) -> None:
        """Show *job_id*'s logs, polling them until it reaches a terminal state."""
        self.close_job()
        self._selected = job_id
        self._logs = []
        self._metadata = {}
        self._poller.start(
            job_log_key(job_id),
            self._cfg.job_log_interval_ms,
            partial(self._client.get_process_logs, job_id),
            on_result=partial(self._apply_logs, job_id),
            on_error=partial(self._warn, job_log_key(job_id)),
            initial_delay_ms=0,
            owner=self._owner,
        )

    def close_job(self) -> None:
        if self._selected is not None:
            self._poller.stop(job_log_key(self._selected))
            self._selected = None

    # ── Poll results ────────────────────────────────────────────

    async def _apply_jobs(self, jobs: list[Job]) -> None:
        self._jobs = list(jobs)
        await self._reconciler.observe_job_list(jobs)

    async def _apply_logs(self, job_id: str, payload: JobLogPayload) -> None:
        if job_id != self._selected:
            return
        self._logs = list(payload.logs)
        self._metadata = dict(payload.metadata)
        await self._reconciler.observe_log(job_id, payload)

        if self._reconciler.is_terminal(job_id):
            logger.info("job_log_polling_finished", job_id=job_id, status=self.status(job_id))
            self._poller.stop(job_log_key(job_id))

    async def _warn(self, source: str, exc: Exception) -> None:
        if self._dispatcher is None:
            return
        await self._dispatcher.on_fetch_warning(FetchWarning(
            source=source,
            message=f"Could not refresh {source}: {exc}",
            error_type=type(exc).__name__,
        ))
