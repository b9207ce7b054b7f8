"""
Main cache orchestration: per-site read-through with stale-while-revalidate.
"""
import logging
import threading
from concurrent.futures import Executor
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional
from urllib.parse import unquote

from .core import RECORDS_FIELD, CacheResult, CacheSource, is_paginated_fragment, utcnow
from .errors import UpstreamUnavailable
from .pagination import merge_paginated_entries
from .policies import CachePolicy
from .refresher import RefreshCoordinator
from .snapshot import SnapshotStore
from .store import EntryStore, SiteStore

if TYPE_CHECKING:
    from app.upstream import UpstreamClient

logger = logging.getLogger("cache.manager")


class CacheManager:
    """
    Single entry point used by the request router.

    - One isolated entry store per site, preloaded from its snapshot
    - Hits are served immediately; stale hits refresh in the background
    - Misses fetch synchronously, store, merge pagination, and persist
    - Explicit page requests trigger a merge so reassembled state shows up
      promptly
    """

    def __init__(
        self,
        upstream: "UpstreamClient",
        snapshots: SnapshotStore,
        policy: Optional[CachePolicy] = None,
        clock: Callable[[], datetime] = utcnow,
        executor: Optional[Executor] = None,
        max_refresh_workers: int = 4,
    ):
        """
        Initialize the cache manager.

        Args:
            upstream: Client for live fetches
            snapshots: Snapshot persistence for every site
            policy: Refresh/forget intervals
            clock: Source of "now" (injectable for tests)
            executor: Background executor for refresh tasks
            max_refresh_workers: Thread pool size when no executor is given
        """
        self._upstream = upstream
        self._snapshots = snapshots
        self._store = EntryStore(clock=clock)
        self._refresher = RefreshCoordinator(
            upstream=upstream,
            snapshots=snapshots,
            policy=policy,
            clock=clock,
            executor=executor,
            max_workers=max_refresh_workers,
        )

        # Stats tracking
        self._stats_lock = threading.Lock()
        self._stats = {
            "hits_fresh": 0,
            "hits_stale": 0,
            "misses": 0,
            "forced": 0,
            "upstream_errors": 0,
        }

    @property
    def refresher(self) -> RefreshCoordinator:
        return self._refresher

    def site(self, slug: str) -> SiteStore:
        """Get a site's store, loading its snapshot on first reference."""
        return self._store.site(slug, loader=lambda: self._snapshots.load(slug))

    def fetch(
        self,
        slug: str,
        identifier: str,
        force_refresh: bool = False,
    ) -> CacheResult:
        """
        Get a payload from cache or upstream.

        Args:
            slug: Site the request belongs to
            identifier: Fully-qualified upstream URL
            force_refresh: Bypass the cache read entirely

        Returns:
            CacheResult with the payload, its source and the status to serve

        Raises:
            UpstreamUnavailable: A miss could not be filled
        """
        site = self.site(slug)

        if force_refresh:
            logger.info(f"FORCE REFRESH: {unquote(identifier)}")
            self._incr("forced")
            return self._fetch_and_store(site, identifier)

        entry = site.get(identifier)
        if entry is None:
            logger.info(f"CACHE MISS: {unquote(identifier)}")
            self._incr("misses")
            return self._fetch_and_store(site, identifier)

        stale = self._refresher.check(site, identifier, entry)
        records = entry.payload.get(RECORDS_FIELD) if isinstance(entry.payload, dict) else None
        logger.info(
            f"CACHE HIT ({'stale, revalidating' if stale else 'fresh'}): "
            f"{unquote(identifier)} [records={len(records) if isinstance(records, list) else 'N/A'}]"
        )
        self._incr("hits_stale" if stale else "hits_fresh")

        if is_paginated_fragment(identifier):
            self._merge(site)

        return CacheResult(
            payload=entry.payload,
            source=CacheSource.STALE if stale else CacheSource.FRESH,
        )

    def _fetch_and_store(self, site: SiteStore, identifier: str) -> CacheResult:
        try:
            response = self._upstream.fetch(identifier)
        except UpstreamUnavailable:
            self._incr("upstream_errors")
            raise

        if response.ok:
            site.put(identifier, response.payload)
            if is_paginated_fragment(identifier):
                logger.info("Response includes 'offset' for pagination.")
                merge_paginated_entries(site)
            self._snapshots.persist(site)
        else:
            self._incr("upstream_errors")
            logger.warning(
                f"Upstream returned {response.status_code} for {unquote(identifier)}; not cached"
            )

        return CacheResult(
            payload=response.payload,
            source=CacheSource.UPSTREAM,
            status_code=response.status_code,
        )

    def _merge(self, site: SiteStore) -> int:
        merged = merge_paginated_entries(site)
        if merged:
            self._snapshots.persist(site)
        return merged

    def _incr(self, name: str) -> None:
        with self._stats_lock:
            self._stats[name] += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._stats_lock:
            stats = dict(self._stats)

        total_hits = stats["hits_fresh"] + stats["hits_stale"]
        total_requests = total_hits + stats["misses"]
        hit_rate = (total_hits / total_requests * 100) if total_requests > 0 else 0

        stats["hit_rate_percent"] = round(hit_rate, 1)
        stats["sites"] = {
            slug: len(self._store.site(slug)) for slug in self._store.slugs()
        }
        stats["refresher"] = self._refresher.get_stats()
        return stats

    def shutdown(self, wait: bool = True) -> None:
        self._refresher.shutdown(wait=wait)
        self._upstream.close()


# Global cache manager instance
_cache_manager: Optional[CacheManager] = None
_cache_manager_lock = threading.Lock()


def get_cache_manager() -> CacheManager:
    """Get or create the global cache manager."""
    global _cache_manager
    with _cache_manager_lock:
        if _cache_manager is None:
            from app.upstream import UpstreamClient
            from config.settings import settings

            _cache_manager = CacheManager(
                upstream=UpstreamClient(
                    api_key=settings.airtable_api_key,
                    timeout=settings.upstream_timeout_seconds,
                ),
                snapshots=SnapshotStore(
                    settings.snapshot_directory,
                    global_name=settings.snapshot_global_name,
                ),
                policy=CachePolicy.from_settings(settings),
                max_refresh_workers=settings.max_refresh_workers,
            )
        return _cache_manager


def shutdown_cache_manager(wait: bool = False) -> None:
    """Stop the global cache manager's refresh pool and upstream session, if built."""
    global _cache_manager
    with _cache_manager_lock:
        manager = _cache_manager
        _cache_manager = None
    if manager is not None:
        logger.info("Shutting down cache manager")
        manager.shutdown(wait=wait)
