"""Custom exception hierarchy for EIPsInsight."""

from __future__ import annotations


class EIPsInsightError(Exception):
    """Base exception for EIPsInsight."""

    kind = "error"


class NotFoundError(EIPsInsightError):
    """A requested entity does not exist."""

    kind = "not_found"

    def __init__(self, entity: str, key: object):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found: {key}")


class InvalidFilterError(EIPsInsightError):
    """A filter value cannot be used for querying."""

    kind = "invalid_filter"

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(f"Invalid filter {field!r}: {message}")


class UpstreamDataError(EIPsInsightError):
    """The event store is unreachable or a query failed."""

    kind = "upstream_data"

    def __init__(self, message: str, query: str | None = None):
        self.query = query
        super().__init__(message)


class AuthorizationError(EIPsInsightError):
    """Raised by the request-context collaborator when access is denied."""

    kind = "unauthorized"


class ConfigError(EIPsInsightError):
    """Error with configuration."""

    kind = "config"
