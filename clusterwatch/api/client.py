"""ClusterEye REST client — Telemetry, Alarm and Job endpoints.

Only the boundary: every method performs one GET, maps transport and status
failures onto :mod:`clusterwatch.api.exceptions`, and parses the payload into
domain types.  Shape problems (missing keys, malformed items) are logged and
yield empty results instead of raising.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import TracebackType
from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from clusterwatch.api.exceptions import ApiConnectionError, ApiParseError, ApiStatusError
from clusterwatch.core.config import ApiConfig, get_settings
from clusterwatch.core.types import AlarmEvent, AlarmSeverity, Job, JobLogPayload, Sample

logger = structlog.stdlib.get_logger()

# Influx bookkeeping columns that are neither the point nor a tag.
_RESERVED_POINT_KEYS = frozenset({"result", "table"})

_DATE_FMT = "%Y-%m-%d %H:%M:%S"

_SEVERITIES = frozenset(s.value for s in AlarmSeverity)


def _parse_sample(point: dict[str, Any]) -> Sample | None:
    """Parse one Influx-style point into a Sample, or None if malformed.

    Expected structure::

        {"_time": "2024-05-01T10:00:00Z", "_field": "cpu_usage", "_value": 42.0,
         "_measurement": "mongodb_system", "agent_id": "agent_db1", ...}
    """
    raw_value = point.get("_value")
    if isinstance(raw_value, bool) or not isinstance(raw_value, (int, float, str)):
        return None
    try:
        value = float(raw_value)
    except ValueError:
        return None

    tags = {
        k: v
        for k, v in point.items()
        if isinstance(v, str) and not k.startswith("_") and k not in _RESERVED_POINT_KEYS
    }
    measurement = point.get("_measurement")
    if isinstance(measurement, str):
        tags["measurement"] = measurement

    try:
        return Sample(
            timestamp=point.get("_time"),  # type: ignore[arg-type]
            field=point.get("_field"),  # type: ignore[arg-type]
            value=value,
            tags=tags,
        )
    except ValidationError:
        return None


def _parse_samples(data: object) -> list[Sample]:
    """Accept either ``data: [...]`` or ``data: {all_data: [...], summary}``."""
    if isinstance(data, dict):
        data = data.get("all_data")
    if not isinstance(data, list):
        logger.warning("metrics_response_missing_points", data_type=type(data).__name__)
        return []

    samples: list[Sample] = []
    skipped = 0
    for point in data:
        sample = _parse_sample(point) if isinstance(point, dict) else None
        if sample is None:
            skipped += 1
            continue
        samples.append(sample)

    if skipped:
        logger.debug("metrics_points_skipped", skipped=skipped, kept=len(samples))
    return samples


def _parse_alarm(raw: dict[str, Any]) -> AlarmEvent | None:
    """Parse one alarm; the wire id is ``event_id`` (``id`` also accepted)."""
    alarm_id = raw.get("event_id") or raw.get("id")
    severity = str(raw.get("severity", "")).lower()
    if not alarm_id or severity not in _SEVERITIES:
        return None
    try:
        return AlarmEvent(
            id=str(alarm_id),
            severity=AlarmSeverity(severity),
            message=str(raw.get("message", "")),
            timestamp=raw.get("timestamp") or None,
            host=str(raw.get("host", "") or ""),
            type=str(raw.get("type", "") or raw.get("alarm_type", "") or ""),
        )
    except ValidationError:
        return None


def _parse_job_logs(body: dict[str, Any]) -> JobLogPayload:
    logs = body.get("logs")
    metadata = body.get("metadata")
    process_status = body.get("process_status")
    return JobLogPayload(
        status=str(body.get("status", "")),
        logs=[str(line) for line in logs] if isinstance(logs, list) else [],
        metadata=metadata if isinstance(metadata, dict) else {},
        process_status=process_status if isinstance(process_status, str) else None,
    )


def _check_status(body: dict[str, Any], endpoint: str) -> None:
    status = body.get("status")
    if status != "success":
        raise ApiStatusError(f"{endpoint} returned status {status!r}")


class ClusterApiClient:
    """Async client over ``httpx.AsyncClient``.

    Usage::

        async with ClusterApiClient(config) as client:
            samples = await client.get_metrics("mongodb", "system/cpu", "agent_db1", "1h")
    """

    def __init__(self, config: ApiConfig | None = None) -> None:
        self._config = config or get_settings().api
        self._http: httpx.AsyncClient | None = None

    @property
    def connected(self) -> bool:
        """Whether the HTTP client is active."""
        return self._http is not None and not self._http.is_closed

    async def connect(self) -> None:
        """Create the httpx async client."""
        headers = {"Accept": "application/json"}
        token = self._config.token.get_secret_value()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._http = httpx.AsyncClient(
            base_url=self._config.base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(self._config.timeout_secs),
        )

    async def close(self) -> None:
        """Close the httpx async client."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> ClusterApiClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ── Endpoints ───────────────────────────────────────────────

    async def get_metrics(
        self,
        system: str,
        category: str,
        agent_id: str,
        range: str,  # noqa: A002
    ) -> list[Sample]:
        """``GET /metrics/{system}/{category}?agent_id&range``."""
        endpoint = f"/metrics/{system}/{category}"
        body = await self._get_json(endpoint, {"agent_id": agent_id, "range": range})
        _check_status(body, endpoint)
        return _parse_samples(body.get("data"))

    async def get_recent_alarms(self, limit: int = 4) -> list[AlarmEvent]:
        """``GET /status/alarms/recent?limit&unacknowledged=true``."""
        body = await self._get_json(
            "/status/alarms/recent",
            {"limit": limit, "unacknowledged": "true"},
        )
        data = body.get("data")
        raw_alarms = data.get("alarms") if isinstance(data, dict) else None
        if not isinstance(raw_alarms, list):
            logger.warning("alarms_response_missing_alarms", keys=list(body.keys()))
            return []

        alarms: list[AlarmEvent] = []
        for raw in raw_alarms:
            alarm = _parse_alarm(raw) if isinstance(raw, dict) else None
            if alarm is not None:
                alarms.append(alarm)
        return alarms

    async def get_alarm_count(
        self,
        severity: AlarmSeverity | None = None,
        hours: int = 24,
    ) -> int:
        """Unacknowledged alarm count over the last *hours* (``limit=1`` page)."""
        now = datetime.now(UTC)
        params: dict[str, Any] = {
            "date_from": (now - timedelta(hours=hours)).strftime(_DATE_FMT),
            "date_to": now.strftime(_DATE_FMT),
            "page": 1,
            "limit": 1,
            "unacknowledged": "true",
        }
        if severity is not None:
            params["severity"] = severity.value

        body = await self._get_json("/status/alarms", params)
        data = body.get("data")
        pagination = data.get("pagination") if isinstance(data, dict) else None
        if not isinstance(pagination, dict):
            logger.warning("alarm_count_missing_pagination", keys=list(body.keys()))
            return 0
        try:
            return int(pagination.get("total_count") or 0)
        except (TypeError, ValueError):
            return 0

    async def list_jobs(self) -> list[Job]:
        """``GET /jobs``."""
        body = await self._get_json("/jobs")
        data = body.get("data")
        raw_jobs = data.get("jobs") if isinstance(data, dict) else None
        if not isinstance(raw_jobs, list):
            logger.warning("jobs_response_missing_jobs", keys=list(body.keys()))
            return []

        jobs: list[Job] = []
        for raw in raw_jobs:
            if not isinstance(raw, dict):
                continue
            try:
                jobs.append(Job.model_validate(raw))
            except ValidationError:
                logger.debug("job_entry_skipped", job_id=raw.get("job_id"))
        return jobs

    async def get_process_logs(self, process_id: str) -> JobLogPayload:
        """``GET /process-logs?process_id``."""
        endpoint = "/process-logs"
        body = await self._get_json(endpoint, {"process_id": process_id})
        _check_status(body, endpoint)
        return _parse_job_logs(body)

    # ── Transport ───────────────────────────────────────────────

    async def _get_json(
        self,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if self._http is None:
            raise ApiConnectionError("HTTP client not connected")

        try:
            response = await self._http.get(path, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ApiConnectionError(
                f"{path} returned {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise ApiConnectionError(f"{path} request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise ApiParseError(f"{path} returned invalid JSON") from exc

        if not isinstance(body, dict):
            logger.warning("api_response_not_object", path=path, body_type=type(body).__name__)
            return {}
        return body
