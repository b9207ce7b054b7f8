"""
Per-site snapshot artifacts.

Each site's identifier -> payload mapping is written to
``cache-<slug>.js`` as an ES module that also publishes the mapping on
``window`` so pages can preload it::

    export const cache = {...};
    window.airtableCache = cache;

Timestamps are not persisted; a loaded site treats every entry as just
fetched.
"""
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, Mapping
from urllib.parse import quote

from .core import Payload
from .errors import SnapshotUnavailable, SnapshotWriteFailure
from .store import SiteStore

logger = logging.getLogger("cache.snapshot")

SNAPSHOT_PREFIX = "export const cache = "
SNAPSHOT_SUFFIX = ";\nwindow.{global_name} = cache;"
DEFAULT_GLOBAL_NAME = "airtableCache"


class SnapshotStore:
    """
    Reads and writes snapshot artifacts under one directory.

    Usage:
        snapshots = SnapshotStore(Path("./public"))
        snapshots.save("example.com", {"https://...": {"records": []}})
        mapping = snapshots.load("example.com")
    """

    def __init__(self, directory: Path, global_name: str = DEFAULT_GLOBAL_NAME):
        self.directory = Path(directory)
        self.global_name = global_name
        self._write_locks: Dict[str, threading.Lock] = {}
        self._written_versions: Dict[str, int] = {}
        self._locks_lock = threading.Lock()

    @property
    def suffix(self) -> str:
        return SNAPSHOT_SUFFIX.format(global_name=self.global_name)

    def path_for(self, slug: str) -> Path:
        """Snapshot file for a slug; distinct slugs always get distinct files."""
        safe = quote(slug, safe="._-")
        return self.directory / f"cache-{safe}.js"

    def render(self, mapping: Mapping[str, Payload]) -> str:
        return SNAPSHOT_PREFIX + json.dumps(mapping) + self.suffix

    def parse(self, text: str) -> Dict[str, Payload]:
        """
        Extract the mapping embedded in a snapshot.

        The data region ends at the last closing brace before the suffix,
        so payloads containing the suffix text as data still parse.

        Raises:
            SnapshotUnavailable: If the text is not a snapshot.
        """
        text = text.rstrip()
        if not text.startswith(SNAPSHOT_PREFIX):
            raise SnapshotUnavailable("Snapshot does not start with the export prefix")

        region_end = len(text)
        if text.endswith(self.suffix):
            region_end -= len(self.suffix)

        brace = text.rfind("}", len(SNAPSHOT_PREFIX), region_end)
        if brace == -1:
            raise SnapshotUnavailable("Snapshot has no data region")

        try:
            mapping = json.loads(text[len(SNAPSHOT_PREFIX):brace + 1])
        except (ValueError, RecursionError) as e:
            raise SnapshotUnavailable(f"Snapshot data is not valid JSON: {e}") from e

        if not isinstance(mapping, dict):
            raise SnapshotUnavailable("Snapshot data is not a mapping")
        return mapping

    def load(self, slug: str) -> Dict[str, Payload]:
        """Load a site's mapping. Any failure yields an empty mapping."""
        path = self.path_for(slug)
        if not path.exists():
            logger.info(f"No existing snapshot found for '{slug}'")
            return {}

        try:
            mapping = self.parse(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, SnapshotUnavailable) as e:
            logger.warning(f"Ignoring unusable snapshot {path}: {e}")
            return {}

        logger.info(f"Snapshot loaded from {path} ({len(mapping)} entries)")
        return mapping

    def save(self, slug: str, mapping: Mapping[str, Payload]) -> bool:
        """Atomically write a site's mapping. Returns False on failure."""
        path = self.path_for(slug)
        try:
            self._write(path, self.render(mapping))
        except SnapshotWriteFailure as e:
            logger.error(f"Snapshot write failed for '{slug}': {e}")
            return False
        logger.info(f"Snapshot saved to {path}")
        return True

    def persist(self, site: SiteStore) -> bool:
        """
        Save the current state of ``site``.

        Concurrent tasks may persist the same site; a copy that is not
        newer than the last one written is dropped instead of overwriting
        it.
        """
        with site.lock:
            version = site.version
            mapping = site.payloads()

        with self._write_lock(site.slug):
            if version <= self._written_versions.get(site.slug, -1):
                return True
            saved = self.save(site.slug, mapping)
            if saved:
                self._written_versions[site.slug] = version
            return saved

    def _write_lock(self, slug: str) -> threading.Lock:
        with self._locks_lock:
            if slug not in self._write_locks:
                self._write_locks[slug] = threading.Lock()
            return self._write_locks[slug]

    def _write(self, path: Path, content: str) -> None:
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=".tmp-", suffix=".js"
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise SnapshotWriteFailure(str(e)) from e
