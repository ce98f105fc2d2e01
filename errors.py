"""
errors.py - Exception types shared by the HomeHarbor Lambda handlers

Handlers map these to HTTP responses at the boundary:
- ValidationError -> 400 (missing or malformed request fields)
- NotFoundError   -> 404 for direct lookups, cache-miss for cache reads
- UpstreamError   -> 500 with a generic message (details are logged only)
"""


class HomeHarborError(Exception):
    """Base class for all application errors."""


class ValidationError(HomeHarborError):
    """A required request field is missing or malformed."""


class NotFoundError(HomeHarborError):
    """A record or cache entry does not exist."""


class UpstreamError(HomeHarborError):
    """A call to DynamoDB, Secrets Manager or an external HTTP API failed."""
