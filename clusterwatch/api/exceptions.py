"""Exception hierarchy for the ClusterEye API boundary."""

from __future__ import annotations


class ClusterWatchError(Exception):
    """Base exception for all engine errors."""


class ApiError(ClusterWatchError):
    """Base exception for API errors."""


class ApiConnectionError(ApiError):
    """Transport failure or non-2xx HTTP response."""


class ApiParseError(ApiError):
    """Response body was not valid JSON."""


class ApiStatusError(ApiError):
    """Response body carried a non-"success" status."""
