"""
Unit tests for the in-memory entry store.
"""
import threading
from datetime import timedelta

import pytest

from app.cache import EntryStore, SiteStore


class TestSiteStore:
    """Tests for a single site's entries."""

    def test_put_then_get(self, clock):
        site = SiteStore("example.com", clock=clock)
        entry = site.put("https://x/a", {"records": [1]})

        assert site.get("https://x/a") is entry
        assert entry.payload == {"records": [1]}
        assert entry.last_updated == clock.now

    def test_missing_identifier_is_none(self, clock):
        site = SiteStore("example.com", clock=clock)
        assert site.get("https://x/missing") is None
        assert "https://x/missing" not in site

    def test_put_never_moves_timestamp_backwards(self, clock):
        site = SiteStore("example.com", clock=clock)
        site.put("https://x/a", {"v": 1})
        earlier = clock.now - timedelta(minutes=5)

        entry = site.put("https://x/a", {"v": 2}, last_updated=earlier)

        assert entry.payload == {"v": 2}
        assert entry.last_updated == clock.now

    def test_delete(self, clock):
        site = SiteStore("example.com", clock=clock)
        site.put("https://x/a", {})

        assert site.delete("https://x/a") is True
        assert site.delete("https://x/a") is False
        assert len(site) == 0

    def test_version_counts_mutations(self, clock):
        site = SiteStore("example.com", clock=clock)
        site.put("https://x/a", {})
        site.put("https://x/b", {})
        site.delete("https://x/a")
        site.delete("https://x/missing")
        assert site.version == 3

    def test_load_stamps_everything_now(self, clock):
        site = SiteStore("example.com", clock=clock)
        count = site.load({"https://x/a": {"records": []}, "https://x/b": {"records": []}})

        assert count == 2
        assert site.keys() == {"https://x/a", "https://x/b"}
        assert all(entry.last_updated == clock.now for _, entry in site.items())

    def test_payloads(self, clock):
        site = SiteStore("example.com", clock=clock)
        site.put("https://x/a", {"records": ["a"]})
        assert site.payloads() == {"https://x/a": {"records": ["a"]}}


class TestEntryStore:
    """Tests for the site registry."""

    def test_loader_runs_once_per_site(self, clock):
        store = EntryStore(clock=clock)
        calls = []

        def loader():
            calls.append(1)
            return {"https://x/a": {"records": []}}

        first = store.site("example.com", loader=loader)
        second = store.site("example.com", loader=loader)

        assert first is second
        assert len(calls) == 1
        assert "https://x/a" in first

    def test_sites_are_isolated(self, clock):
        store = EntryStore(clock=clock)
        store.put("one.com", "https://x/a", {"site": 1})
        store.put("two.com", "https://x/a", {"site": 2})

        assert store.get("one.com", "https://x/a").payload == {"site": 1}
        assert store.get("two.com", "https://x/a").payload == {"site": 2}

        store.delete("one.com", "https://x/a")
        assert store.keys("one.com") == set()
        assert store.keys("two.com") == {"https://x/a"}

    def test_slugs(self, clock):
        store = EntryStore(clock=clock)
        store.site("one.com")
        store.site("two.com")
        assert sorted(store.slugs()) == ["one.com", "two.com"]

    def test_slow_loader_does_not_block_other_sites(self, clock):
        store = EntryStore(clock=clock)
        ready = store.site("ready.com")
        started = threading.Event()
        release = threading.Event()

        def slow_loader():
            started.set()
            release.wait(5)
            return {"https://x/a": {"records": []}}

        loading = threading.Thread(target=store.site, args=("slow.com", slow_loader))
        loading.start()
        assert started.wait(5)

        found = []
        lookup = threading.Thread(target=lambda: found.append(store.site("ready.com")))
        lookup.start()
        lookup.join(timeout=2)
        blocked = lookup.is_alive()

        release.set()
        loading.join(timeout=5)
        lookup.join(timeout=5)

        assert not blocked
        assert found == [ready]
        assert "https://x/a" in store.site("slow.com")

    def test_failed_loader_is_retried(self, clock):
        store = EntryStore(clock=clock)

        def broken_loader():
            raise OSError("disk unavailable")

        with pytest.raises(OSError):
            store.site("example.com", loader=broken_loader)

        site = store.site("example.com", loader=lambda: {"https://x/a": {"records": []}})
        assert "https://x/a" in site
