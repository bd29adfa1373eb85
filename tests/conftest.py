"""Shared pytest fixtures for wainbound tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from helpers import (  # noqa: E402
    FakeMediaFetcher,
    InMemoryLockStore,
    MemoryInboxRepository,
    RecordingAvatarUpdater,
    RecordingNotifier,
)
from wainbound.domain.ingest import IngestService  # noqa: E402


@pytest.fixture
def repo():
    return MemoryInboxRepository()


@pytest.fixture
def lock_store():
    return InMemoryLockStore()


@pytest.fixture
def media_fetcher():
    return FakeMediaFetcher()


@pytest.fixture
def avatar_updater():
    return RecordingAvatarUpdater()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def service(repo, lock_store, media_fetcher, avatar_updater, notifier):
    """IngestService wired to in-memory fakes; spin lock never sleeps."""
    return IngestService(
        repo,
        lock_store,
        media_fetcher,
        avatar_updater=avatar_updater,
        notifier=notifier,
        lock_timeout=0.05,
        lock_interval=0.01,
        sleep=lambda _: None,
    )
