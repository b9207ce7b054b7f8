"""
Site-scoped response cache with stale-while-revalidate, snapshot
persistence, and pagination reassembly.
"""
from .core import (
    CONTINUATION_PARAM,
    RECORDS_FIELD,
    CacheEntry,
    CacheResult,
    CacheSource,
    Payload,
    continuation_token,
    fragment_token,
    is_paginated_fragment,
    is_paginated_head,
    with_continuation,
)
from .errors import (
    CacheError,
    MalformedPayload,
    SnapshotUnavailable,
    SnapshotWriteFailure,
    UpstreamUnavailable,
)
from .policies import CachePolicy
from .store import EntryStore, SiteStore
from .snapshot import SnapshotStore
from .pagination import merge_paginated_entries, merge_payloads
from .refresher import RefreshCoordinator
from .manager import CacheManager, get_cache_manager, shutdown_cache_manager

__all__ = [
    # Core types
    "CONTINUATION_PARAM",
    "RECORDS_FIELD",
    "CacheEntry",
    "CacheResult",
    "CacheSource",
    "Payload",
    "continuation_token",
    "fragment_token",
    "is_paginated_fragment",
    "is_paginated_head",
    "with_continuation",
    # Errors
    "CacheError",
    "MalformedPayload",
    "SnapshotUnavailable",
    "SnapshotWriteFailure",
    "UpstreamUnavailable",
    # Policy
    "CachePolicy",
    # Storage
    "EntryStore",
    "SiteStore",
    "SnapshotStore",
    # Pagination
    "merge_paginated_entries",
    "merge_payloads",
    # Refresh
    "RefreshCoordinator",
    # Manager
    "CacheManager",
    "get_cache_manager",
    "shutdown_cache_manager",
]
