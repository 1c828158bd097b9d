"""ClusterEye REST API boundary — client and exception hierarchy."""

from clusterwatch.api.client import ClusterApiClient
from clusterwatch.api.exceptions import (
    ApiConnectionError,
    ApiError,
    ApiParseError,
    ApiStatusError,
    ClusterWatchError,
)

__all__ = [
    "ApiConnectionError",
    "ApiError",
    "ApiParseError",
    "ApiStatusError",
    "ClusterApiClient",
    "ClusterWatchError",
]
