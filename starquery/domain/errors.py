"""
Error taxonomy shared by every layer.

Adapters translate library exceptions (httpx, psycopg2, json) into these
types with ``raise ... from exc`` so callers only ever handle the classes
below.
"""

from __future__ import annotations


class StarqueryError(Exception):
    """Base class for all errors raised by this package."""


class ConfigError(StarqueryError):
    """Startup configuration is missing or invalid."""


class ValidationError(StarqueryError):
    """Bad signature, malformed payload or unsupported event. Never retried."""


class UpstreamError(StarqueryError):
    """A GitHub API call failed (transport, non-2xx, malformed response)."""


class FetchError(UpstreamError):
    """A single stargazer page fetch failed."""


class StoreError(StarqueryError):
    """The backing key-value store failed a command."""
