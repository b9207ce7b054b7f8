"""
In-memory entry store, one isolated namespace per site.

Pure data structure: no network or disk access. Snapshot loading is
injected by the caller through ``EntryStore.site(slug, loader)``.
"""
import logging
import threading
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple

from .core import CacheEntry, Payload, utcnow

logger = logging.getLogger("cache.store")


class SiteStore:
    """
    Entries for a single site.

    ``lock`` is re-entrant so multi-step passes (merge, forget) can hold it
    across several get/put/delete calls. ``version`` increases on every
    mutation and lets the snapshot writer skip out-of-date copies.
    """

    def __init__(self, slug: str, clock: Callable[[], datetime] = utcnow):
        self.slug = slug
        self.lock = threading.RLock()
        self.version = 0
        self._entries: Dict[str, CacheEntry] = {}
        self._clock = clock

    def get(self, identifier: str) -> Optional[CacheEntry]:
        with self.lock:
            return self._entries.get(identifier)

    def put(
        self,
        identifier: str,
        payload: Payload,
        last_updated: Optional[datetime] = None,
    ) -> CacheEntry:
        """Store ``payload``; ``last_updated`` never moves backwards."""
        stamp = last_updated or self._clock()
        with self.lock:
            existing = self._entries.get(identifier)
            if existing is not None and existing.last_updated > stamp:
                stamp = existing.last_updated
            entry = CacheEntry(payload=payload, last_updated=stamp)
            self._entries[identifier] = entry
            self.version += 1
            return entry

    def delete(self, identifier: str) -> bool:
        with self.lock:
            if identifier not in self._entries:
                return False
            del self._entries[identifier]
            self.version += 1
            return True

    def keys(self) -> Set[str]:
        with self.lock:
            return set(self._entries)

    def items(self) -> List[Tuple[str, CacheEntry]]:
        """Entries in insertion order, copied so callers may mutate the store."""
        with self.lock:
            return list(self._entries.items())

    def payloads(self) -> Dict[str, Payload]:
        with self.lock:
            return {key: entry.payload for key, entry in self._entries.items()}

    def load(self, mapping: Mapping[str, Payload]) -> int:
        """Populate from a snapshot. Snapshots carry no timestamps, so all are now."""
        now = self._clock()
        with self.lock:
            for identifier, payload in mapping.items():
                self._entries[identifier] = CacheEntry(payload=payload, last_updated=now)
            return len(mapping)

    def __len__(self) -> int:
        with self.lock:
            return len(self._entries)

    def __contains__(self, identifier: str) -> bool:
        with self.lock:
            return identifier in self._entries


class EntryStore:
    """
    Registry of site stores keyed by slug. Sites never share entries.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._sites: Dict[str, SiteStore] = {}
        self._loading: Dict[str, threading.Lock] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def site(
        self,
        slug: str,
        loader: Optional[Callable[[], Mapping[str, Payload]]] = None,
    ) -> SiteStore:
        """
        Get the store for ``slug``, creating it on first reference.

        ``loader`` runs once, before the new site becomes visible to any
        other caller, so no request ever observes a half-loaded site. Only
        callers asking for the same new slug wait on it.
        """
        with self._lock:
            site = self._sites.get(slug)
            if site is not None:
                return site
            load_lock = self._loading.setdefault(slug, threading.Lock())

        with load_lock:
            with self._lock:
                site = self._sites.get(slug)
            if site is not None:
                return site

            site = SiteStore(slug, clock=self._clock)
            if loader is not None:
                count = site.load(loader())
                logger.info(f"Site '{slug}' created with {count} preloaded entries")

            with self._lock:
                self._sites[slug] = site
                self._loading.pop(slug, None)
            return site

    def get(self, slug: str, identifier: str) -> Optional[CacheEntry]:
        return self.site(slug).get(identifier)

    def put(self, slug: str, identifier: str, payload: Payload) -> CacheEntry:
        return self.site(slug).put(identifier, payload)

    def delete(self, slug: str, identifier: str) -> bool:
        return self.site(slug).delete(identifier)

    def keys(self, slug: str) -> Set[str]:
        return self.site(slug).keys()

    def slugs(self) -> List[str]:
        with self._lock:
            return list(self._sites)
