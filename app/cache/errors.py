"""
Exception hierarchy for the cache.

None of these is fatal to the process. ``UpstreamUnavailable`` is the only
one that reaches a caller, and only when a genuine miss cannot be filled::

    CacheError
    +-- UpstreamUnavailable   (transport failure, timeout, unusable body)
    +-- MalformedPayload      (merge skipped, entries retained)
    +-- SnapshotUnavailable   (treated as an empty site)
    +-- SnapshotWriteFailure  (logged, in-memory state stays authoritative)
"""
from typing import Optional


class CacheError(Exception):
    """Base exception for all cache errors."""


class UpstreamUnavailable(CacheError):
    """
    Raised when the upstream API cannot produce a usable response.

    Args:
        message: Human-readable description.
        status_code: HTTP status to surface to the caller, if one is known.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedPayload(CacheError):
    """Raised when a payload lacks the record collection a merge needs."""


class SnapshotUnavailable(CacheError):
    """Raised when a snapshot is missing, unreadable or unparseable."""


class SnapshotWriteFailure(CacheError):
    """Raised when a snapshot cannot be written to disk."""
