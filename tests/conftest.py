"""
Shared fixtures: fake upstream, controllable clock, and executors that run
background refreshes either immediately or on demand.
"""
import os
import tempfile
from concurrent.futures import Executor, Future
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Tuple, Union

import pytest

# Keep snapshot files written through the app out of the working tree
os.environ.setdefault("SNAPSHOT_DIRECTORY", tempfile.mkdtemp(prefix="site-cache-"))

from app.cache import CacheManager, CachePolicy, SnapshotStore  # noqa: E402
from app.upstream import UpstreamResponse  # noqa: E402


BASE = "https://api.airtable.com/v0/appTest/tblTest"


class FakeUpstream:
    """Canned upstream responses keyed by identifier; records every call."""

    def __init__(self):
        self.responses: Dict[str, Union[UpstreamResponse, Exception]] = {}
        self.calls: List[str] = []
        self.closed = False

    def add(self, identifier: str, payload, status_code: int = 200) -> None:
        self.responses[identifier] = UpstreamResponse(status_code=status_code, payload=payload)

    def fail(self, identifier: str, error: Exception) -> None:
        self.responses[identifier] = error

    def fetch(self, identifier: str) -> UpstreamResponse:
        self.calls.append(identifier)
        response = self.responses.get(identifier)
        if response is None:
            return UpstreamResponse(status_code=404, payload={"error": "NOT_FOUND"})
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class ImmediateExecutor(Executor):
    """Runs submitted work inline."""

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        future: Future = Future()
        future.set_result(fn(*args, **kwargs))
        return future


class DeferredExecutor(Executor):
    """Queues submitted work until ``run_all`` is called."""

    def __init__(self):
        self.tasks: List[Tuple[Callable, tuple, dict]] = []

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        self.tasks.append((fn, args, kwargs))
        return Future()

    def run_all(self) -> int:
        tasks, self.tasks = self.tasks, []
        for fn, args, kwargs in tasks:
            fn(*args, **kwargs)
        return len(tasks)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def snapshot_dir(tmp_path) -> Path:
    return tmp_path / "public"


@pytest.fixture
def snapshots(snapshot_dir) -> SnapshotStore:
    return SnapshotStore(snapshot_dir)


@pytest.fixture
def policy() -> CachePolicy:
    return CachePolicy(refresh_interval_seconds=900, forget_interval_seconds=7 * 24 * 3600)


@pytest.fixture
def deferred() -> DeferredExecutor:
    return DeferredExecutor()


@pytest.fixture
def manager(upstream, snapshots, policy, clock) -> CacheManager:
    """Manager whose background refreshes run inline."""
    return CacheManager(
        upstream=upstream,
        snapshots=snapshots,
        policy=policy,
        clock=clock,
        executor=ImmediateExecutor(),
    )


@pytest.fixture
def deferred_manager(upstream, snapshots, policy, clock, deferred) -> CacheManager:
    """Manager whose background refreshes wait for ``deferred.run_all()``."""
    return CacheManager(
        upstream=upstream,
        snapshots=snapshots,
        policy=policy,
        clock=clock,
        executor=deferred,
    )
