"""Key-value locks for webhook idempotency and echo serialization.

Two mechanisms share one LockStore:

- Event lock: "{inbox_id}_{source_id}", SET NX with a 24h TTL. Acquisition
  never waits; a failed acquire means another worker owns the event.
- Destination lock: spin-wait on SET NX with a short TTL. After the timeout
  the caller proceeds without the lock (best-effort serialization of a sent
  message's echo against the send path's own contact creation).
"""

from __future__ import annotations

import os
import time
from contextlib import contextmanager
from typing import Callable, Iterator, Protocol

import redis

from wainbound.observability.logging import get_logger
from wainbound.observability.redaction import safe_log_context

logger = get_logger(__name__)

REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
PROCESSING_LOCK_TTL = int(os.environ.get("PROCESSING_LOCK_TTL_SECONDS", "86400"))
CONTACT_LOCK_TIMEOUT = float(os.environ.get("CONTACT_LOCK_TIMEOUT_SECONDS", "5"))
CONTACT_LOCK_RETRY_INTERVAL = float(
    os.environ.get("CONTACT_LOCK_RETRY_INTERVAL_SECONDS", "0.1")
)

MESSAGE_SOURCE_KEY = "MESSAGE_SOURCE_KEY::{id}"
CHANNEL_LOCK_KEY = "BAILEYS::CHANNEL_LOCK::{inbox_id}"
CONTACT_LOCK_KEY = "ZAPI::CONTACT_LOCK::{phone}"


class LockStore(Protocol):
    """Shared key-value store with atomic set-if-absent."""

    def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        """Set key only if it does not exist. Returns True when set."""
        ...

    def get(self, key: str) -> str | None:
        ...

    def delete(self, key: str) -> None:
        ...


class RedisLockStore:
    """LockStore backed by redis-py (SET key value NX PX ttl)."""

    def __init__(self, client: redis.Redis | None = None) -> None:
        self._client = client or redis.Redis.from_url(REDIS_URL, decode_responses=True)

    def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        return bool(self._client.set(key, value, nx=True, px=int(ttl * 1000)))

    def get(self, key: str) -> str | None:
        return self._client.get(key)

    def delete(self, key: str) -> None:
        self._client.delete(key)


def processing_lock_key(inbox_id: str, source_id: str) -> str:
    """Key of the event lock for one provider message in one inbox."""
    return MESSAGE_SOURCE_KEY.format(id=f"{inbox_id}_{source_id}")


class ProcessingLock:
    """Event-level mutual exclusion for one (inbox, provider message id).

    Holding the key means the event is being processed (or was, within the
    TTL window). Releasing it without a stored message lets a provider
    retry go through.
    """

    def __init__(
        self,
        store: LockStore,
        inbox_id: str,
        source_id: str,
        ttl: float = PROCESSING_LOCK_TTL,
    ) -> None:
        self.store = store
        self.key = processing_lock_key(inbox_id, source_id)
        self.ttl = ttl
        self.acquired = False

    def acquire(self) -> bool:
        self.acquired = self.store.set_if_absent(self.key, "1", self.ttl)
        return self.acquired

    def under_process(self) -> bool:
        return self.store.get(self.key) is not None

    def release(self) -> None:
        # Only the owner clears the key; a contended attempt leaves it alone.
        if self.acquired:
            self.store.delete(self.key)
            self.acquired = False


@contextmanager
def spin_lock(
    store: LockStore,
    key: str,
    *,
    timeout: float = CONTACT_LOCK_TIMEOUT,
    interval: float = CONTACT_LOCK_RETRY_INTERVAL,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Iterator[bool]:
    """Best-effort lock: retry SET NX until timeout, then run the block anyway.

    Yields True when the lock was obtained. The key is deleted on exit only
    if this caller set it.
    """
    acquired = False
    start = clock()
    while (clock() - start) < timeout:
        if store.set_if_absent(key, "1", timeout):
            acquired = True
            break
        sleep(interval)

    if not acquired:
        logger.warning(
            "destination lock timeout, proceeding without lock",
            extra={"extra_fields": safe_log_context(lock_key=key, timeout=timeout)},
        )

    try:
        yield acquired
    finally:
        if acquired:
            store.delete(key)


_default_store: LockStore | None = None


def get_lock_store() -> LockStore:
    """Process-wide Redis lock store, created on first use."""
    global _default_store
    if _default_store is None:
        _default_store = RedisLockStore()
    return _default_store
