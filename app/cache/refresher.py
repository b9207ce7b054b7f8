"""
Background refresh (stale-while-revalidate) and time-based forgetting.
"""
import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Set, Tuple
from urllib.parse import unquote

from .core import CacheEntry, continuation_token, is_paginated_fragment, utcnow, with_continuation
from .errors import UpstreamUnavailable
from .pagination import merge_paginated_entries
from .policies import CachePolicy
from .snapshot import SnapshotStore
from .store import SiteStore

if TYPE_CHECKING:
    from app.upstream import UpstreamClient

logger = logging.getLogger("cache.refresher")


class RefreshCoordinator:
    """
    Decides when a hit needs refreshing and runs the refresh off the read path.

    - A hit older than the refresh interval schedules one background task
    - A pending-refresh set keeps concurrent stale hits on the same
      identifier from launching duplicate upstream calls
    - Each cycle refetches, walks any pagination chain, merges, forgets
      expired entries, and persists the site
    """

    def __init__(
        self,
        upstream: "UpstreamClient",
        snapshots: SnapshotStore,
        policy: Optional[CachePolicy] = None,
        clock: Callable[[], datetime] = utcnow,
        executor: Optional[Executor] = None,
        max_workers: int = 4,
    ):
        """
        Args:
            upstream: Client used for refetches
            snapshots: Where refreshed sites are persisted
            policy: Refresh/forget intervals
            clock: Source of "now"
            executor: Runs refresh tasks; a thread pool is created if omitted
            max_workers: Thread pool size when no executor is given
        """
        self._upstream = upstream
        self._snapshots = snapshots
        self._policy = policy or CachePolicy()
        self._clock = clock
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="cache-refresh",
        )
        self._pending: Set[Tuple[str, str]] = set()
        self._pending_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._stats = {
            "scheduled": 0,
            "deduplicated": 0,
            "refreshed": 0,
            "failed": 0,
            "pages_fetched": 0,
            "forgotten": 0,
        }

    def check(self, site: SiteStore, identifier: str, entry: CacheEntry) -> bool:
        """
        Schedule a refresh if ``entry`` is stale.

        Returns:
            True if the entry is stale (whether or not a new task started)
        """
        if not self._policy.is_stale(entry, self._clock()):
            return False
        self.schedule(site, identifier)
        return True

    def schedule(self, site: SiteStore, identifier: str) -> bool:
        """
        Submit a refresh task unless one is already pending.

        Returns:
            True if a new task was submitted
        """
        key = (site.slug, identifier)
        with self._pending_lock:
            if key in self._pending:
                logger.debug(f"Already refreshing: {unquote(identifier)}")
                self._incr("deduplicated")
                return False
            self._pending.add(key)

        self._incr("scheduled")
        try:
            self._executor.submit(self._run, site, identifier)
        except RuntimeError:
            # Executor shut down
            with self._pending_lock:
                self._pending.discard(key)
            logger.warning(f"Refresh pool unavailable, skipping: {unquote(identifier)}")
            return False
        return True

    def _run(self, site: SiteStore, identifier: str) -> None:
        try:
            self.refresh(site, identifier)
        except Exception:
            logger.exception(f"Background refresh crashed: {unquote(identifier)}")
        finally:
            with self._pending_lock:
                self._pending.discard((site.slug, identifier))

    def refresh(self, site: SiteStore, identifier: str) -> bool:
        """
        Run one refresh cycle synchronously.

        Returns:
            True if the identifier was refetched successfully
        """
        if is_paginated_fragment(identifier):
            # Fragments only change through merges
            logger.info(f"Skipping refresh for paginated request: {unquote(identifier)}")
            refreshed = False
        else:
            refreshed = self._refetch(site, identifier)

        self.forget(site)
        self._snapshots.persist(site)
        return refreshed

    def _refetch(self, site: SiteStore, identifier: str) -> bool:
        try:
            response = self._upstream.fetch(identifier)
        except UpstreamUnavailable as e:
            logger.warning(f"Refresh failed, keeping stale entry: {e}")
            self._incr("failed")
            return False

        if not response.ok:
            logger.warning(
                f"Refresh failed with status {response.status_code}, "
                f"keeping stale entry: {unquote(identifier)}"
            )
            self._incr("failed")
            return False

        site.put(identifier, response.payload)
        self._incr("refreshed")
        logger.info(f"Cache refreshed for URL: {unquote(identifier)}")

        token = continuation_token(response.payload)
        if token is not None:
            logger.info("Refreshed response includes 'offset' for pagination. Continuing fetching.")
            self._walk_pages(site, identifier, token)
            merge_paginated_entries(site)
        return True

    def _walk_pages(self, site: SiteStore, identifier: str, token: str) -> int:
        """Fetch and store every remaining page; stop at the first failure."""
        pages = 0
        while token:
            page_id = with_continuation(identifier, token)
            try:
                response = self._upstream.fetch(page_id)
            except UpstreamUnavailable as e:
                logger.error(f"Aborting pagination walk: {e}")
                break
            if not response.ok:
                logger.error(
                    f"Failed to fetch paginated data for URL: {unquote(page_id)} "
                    f"({response.status_code})"
                )
                break

            site.put(page_id, response.payload)
            pages += 1
            self._incr("pages_fetched")
            logger.info(f"Cached paginated data for URL: {unquote(page_id)}")
            token = continuation_token(response.payload)
        return pages

    def forget(self, site: SiteStore) -> int:
        """Delete every entry of ``site`` older than the forget interval."""
        now = self._clock()
        forgotten = 0
        with site.lock:
            for identifier, entry in site.items():
                if self._policy.is_forgotten(entry, now):
                    logger.info(f"Forgetting cache for URL: {unquote(identifier)}")
                    site.delete(identifier)
                    forgotten += 1
        if forgotten:
            self._incr("forgotten", forgotten)
        return forgotten

    def _incr(self, name: str, amount: int = 1) -> None:
        with self._stats_lock:
            self._stats[name] += amount

    @property
    def pending_count(self) -> int:
        with self._pending_lock:
            return len(self._pending)

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats = dict(self._stats)
        stats["pending"] = self.pending_count
        return stats

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
