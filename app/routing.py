"""
Inbound request resolution: which site, which upstream URL, forced or not.
"""
import logging
import re
from dataclasses import dataclass
from typing import Iterable, Optional, Tuple
from urllib.parse import urlencode, urlsplit

logger = logging.getLogger("routing")

# Cache-control parameters; never forwarded upstream or part of a cache key
SITE_PARAM = "ref"
REFRESH_PARAM = "refresh"

_UNSAFE_SLUG_CHARS = re.compile(r"[^A-Za-z0-9._:-]")


@dataclass
class ResolvedRequest:
    """Target of one inbound lookup."""
    site: str
    identifier: str
    force_refresh: bool = False


def normalize_site(slug: str, default_site: str = "unknown") -> str:
    """Collapse a caller-supplied slug to a safe, non-empty form."""
    slug = _UNSAFE_SLUG_CHARS.sub("_", (slug or "").strip())
    return slug or default_site


def site_from_referer(referer: Optional[str]) -> Optional[str]:
    """Host (with port) of the page that made the request."""
    if not referer:
        return None
    return urlsplit(referer).netloc or None


def build_identifier(base_url: str, path: str, query_items: Iterable[Tuple[str, str]]) -> str:
    """Fully-qualified upstream URL used as the cache key."""
    url = f"{base_url.rstrip('/')}/{path.strip('/')}"
    query = urlencode(list(query_items))
    return f"{url}?{query}" if query else url


def resolve_request(
    path: str,
    query_items: Iterable[Tuple[str, str]],
    referer: Optional[str],
    base_url: str,
    default_site: str = "unknown",
) -> ResolvedRequest:
    """
    Strip cache-control parameters and resolve site and upstream URL.

    Site comes from ``?ref=`` when given, else the Referer host, else
    ``default_site``. ``?refresh=true`` forces a live fetch.
    """
    site = site_from_referer(referer)
    force_refresh = False
    forwarded = []

    for key, value in query_items:
        if key == SITE_PARAM:
            site = value or site
        elif key == REFRESH_PARAM:
            force_refresh = value.lower() == "true"
        else:
            forwarded.append((key, value))

    resolved = ResolvedRequest(
        site=normalize_site(site or "", default_site),
        identifier=build_identifier(base_url, path, forwarded),
        force_refresh=force_refresh,
    )
    logger.debug(f"Resolved request: {resolved}")
    return resolved
