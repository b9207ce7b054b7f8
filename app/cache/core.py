"""
Core cache data structures.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import parse_qs, quote_plus, unquote_plus, urlsplit, urlunsplit

# Upstream documents are caller-defined; only these two fields are interpreted.
Payload = Dict[str, Any]

CONTINUATION_PARAM = "offset"
RECORDS_FIELD = "records"


def utcnow() -> datetime:
    """Timezone-aware current time, the default cache clock."""
    return datetime.now(timezone.utc)


class CacheSource(Enum):
    """Source of a served payload."""
    FRESH = "fresh"       # Within refresh interval
    STALE = "stale"       # Past refresh interval, revalidating in background
    UPSTREAM = "upstream" # Fetched from API during this request


@dataclass
class CacheEntry:
    """
    A cached upstream payload and the time it was last fetched.
    """
    payload: Payload
    last_updated: datetime

    def age_seconds(self, now: datetime) -> float:
        """Seconds since the payload was fetched."""
        return (now - self.last_updated).total_seconds()


@dataclass
class CacheResult:
    """
    Outcome of a cache lookup, handed back to the HTTP layer.
    """
    payload: Payload
    source: CacheSource
    status_code: int = 200

    @property
    def served_from_cache(self) -> bool:
        return self.source is not CacheSource.UPSTREAM


def continuation_token(payload: Any) -> Optional[str]:
    """Token announcing more pages upstream, or None."""
    if not isinstance(payload, dict):
        return None
    token = payload.get(CONTINUATION_PARAM)
    return token if token else None


def fragment_token(identifier: str) -> Optional[str]:
    """Token this identifier was fetched with, or None if it is a first page."""
    values = parse_qs(urlsplit(identifier).query).get(CONTINUATION_PARAM)
    if not values or not values[0]:
        return None
    return values[0]


def is_paginated_head(payload: Any) -> bool:
    return continuation_token(payload) is not None


def is_paginated_fragment(identifier: str) -> bool:
    return fragment_token(identifier) is not None


def with_continuation(identifier: str, token: str) -> str:
    """
    Return the identifier of the page fetched with ``token``.

    Any existing continuation parameter is replaced; every other query
    parameter is kept exactly as written so the result matches keys built
    by the request router.
    """
    parts = urlsplit(identifier)
    kept = [
        pair for pair in parts.query.split("&")
        if pair and unquote_plus(pair.split("=", 1)[0]) != CONTINUATION_PARAM
    ]
    kept.append(f"{CONTINUATION_PARAM}={quote_plus(token)}")
    return urlunsplit(parts._replace(query="&".join(kept)))
