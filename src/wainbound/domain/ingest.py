"""Webhook ingestion - apply each provider event at most once.

Per event:
1. Filter events without contact/message semantics, classify the rest.
2. Drop edit markers, protocol messages and emptied reactions.
3. Dedup: skip events whose message is already stored.
4. Take the event lock; a held lock means another worker owns the event.
5. Under the destination spin lock: resolve the contact, store the
   message(s) (one per contact-card number) or apply the edit.
6. Release the event lock, whatever happened in 5.

Errors never cross the event boundary: a failing event is logged and
reported as FAILED while the rest of the batch goes on.
"""

from __future__ import annotations

import time
from contextlib import nullcontext
from enum import Enum
from typing import Any, Callable, Mapping

from wainbound.domain.assembler import MessageAssembler
from wainbound.domain.entities import Inbox
from wainbound.domain.identity import IdentityResolver
from wainbound.domain.notifications import AvatarUpdater, OutboundNotifier
from wainbound.infra.locks import (
    CONTACT_LOCK_RETRY_INTERVAL,
    CONTACT_LOCK_TIMEOUT,
    LockStore,
    ProcessingLock,
    spin_lock,
)
from wainbound.infra.media import MediaFetcher
from wainbound.infra.repositories.inbox_repository import InboxRepository
from wainbound.observability.correlation import ensure_correlation_id
from wainbound.observability.logging import get_logger, source_id_prefix
from wainbound.observability.redaction import safe_log_context
from wainbound.whatsapp.adapter import InboundAdapter, get_adapter
from wainbound.whatsapp.models import MessageDescriptor

logger = get_logger(__name__)


class EventOutcome(str, Enum):
    CREATED = "created"
    EDITED = "edited"
    DUPLICATE = "duplicate"
    LOCKED = "locked"
    IGNORED = "ignored"
    FILTERED = "filtered"
    CONTACT_NOT_FOUND = "contact_not_found"
    EDIT_TARGET_MISSING = "edit_target_missing"
    FAILED = "failed"


_EDIT_OUTCOMES = {
    "edited": EventOutcome.EDITED,
    "missing": EventOutcome.EDIT_TARGET_MISSING,
    "duplicate": EventOutcome.DUPLICATE,
}


class IngestService:
    """Ingestion core shared by every provider; adapters supply the reading."""

    def __init__(
        self,
        repo: InboxRepository,
        lock_store: LockStore,
        media_fetcher: MediaFetcher,
        *,
        avatar_updater: AvatarUpdater | None = None,
        notifier: OutboundNotifier | None = None,
        adapters: Mapping[str, InboundAdapter] | None = None,
        lock_timeout: float = CONTACT_LOCK_TIMEOUT,
        lock_interval: float = CONTACT_LOCK_RETRY_INTERVAL,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.repo = repo
        self.lock_store = lock_store
        self.avatar_updater = avatar_updater
        self.resolver = IdentityResolver(repo)
        self.assembler = MessageAssembler(repo, media_fetcher, notifier)
        self._adapters = dict(adapters or {})
        self._lock_timeout = lock_timeout
        self._lock_interval = lock_interval
        self._sleep = sleep

    def adapter_for(self, inbox: Inbox) -> InboundAdapter:
        """Raises UnknownProviderError for providers without an adapter."""
        return self._adapters.get(inbox.provider) or get_adapter(inbox.provider)

    def process_batch(self, payload: dict[str, Any], inbox: Inbox) -> list[EventOutcome]:
        """Process every event of one webhook body, in order."""
        ensure_correlation_id()
        adapter = self.adapter_for(inbox)

        outcomes: list[EventOutcome] = []
        for raw in adapter.events(payload):
            try:
                outcome = self.process_event(adapter, raw, inbox)
            except Exception:
                logger.exception(
                    "webhook event processing failed",
                    extra={"extra_fields": {"inbox_id": inbox.id, "provider": inbox.provider}},
                )
                outcome = EventOutcome.FAILED
            outcomes.append(outcome)
        return outcomes

    def process_event(
        self, adapter: InboundAdapter, raw: dict[str, Any], inbox: Inbox
    ) -> EventOutcome:
        """Apply a single raw event.

        Raises:
            InvalidPayloadError: If the event has no usable message id.
        """
        if not adapter.accepts(raw):
            return EventOutcome.FILTERED

        descriptors = adapter.descriptors(raw, inbox)
        head = descriptors[0]
        if not head.is_edit and head.should_ignore:
            return EventOutcome.IGNORED

        source_id = head.provider_source_id
        log_ctx = {"inbox_id": inbox.id, "source_id": source_id_prefix(source_id)}

        if self._already_stored(inbox, source_id):
            logger.info("message already stored", extra={"extra_fields": log_ctx})
            return EventOutcome.DUPLICATE

        lock = ProcessingLock(self.lock_store, inbox.id, source_id)
        if not lock.acquire():
            logger.info("message under process", extra={"extra_fields": log_ctx})
            return EventOutcome.LOCKED

        try:
            # A concurrent owner may have committed between check and acquire.
            if self._already_stored(inbox, source_id):
                return EventOutcome.DUPLICATE
            with self._destination_lock(adapter, raw, head, inbox):
                if head.is_edit:
                    status, _ = self.assembler.apply_edit(head, inbox)
                    return _EDIT_OUTCOMES[status]
                return self._create(adapter, raw, inbox, descriptors)
        finally:
            lock.release()

    def _already_stored(self, inbox: Inbox, source_id: str) -> bool:
        with self.repo.atomic() as session:
            return session.message_exists(inbox.id, source_id)

    def _destination_lock(
        self,
        adapter: InboundAdapter,
        raw: dict[str, Any],
        descriptor: MessageDescriptor,
        inbox: Inbox,
    ):
        key = adapter.destination_lock_key(raw, descriptor, inbox)
        if key is None:
            return nullcontext(False)
        return spin_lock(
            self.lock_store,
            key,
            timeout=self._lock_timeout,
            interval=self._lock_interval,
            sleep=self._sleep,
        )

    def _create(
        self,
        adapter: InboundAdapter,
        raw: dict[str, Any],
        inbox: Inbox,
        descriptors: list[MessageDescriptor],
    ) -> EventOutcome:
        identity = adapter.extract_identity(raw, inbox)
        if identity.is_empty:
            logger.warning(
                "contact identifiers not found, event skipped",
                extra={
                    "extra_fields": {
                        "inbox_id": inbox.id,
                        "source_id": source_id_prefix(descriptors[0].provider_source_id),
                    }
                },
            )
            return EventOutcome.CONTACT_NOT_FOUND

        contact, link = self.resolver.resolve(identity, inbox)

        avatar_url = adapter.avatar_url(raw, identity, contact)
        if avatar_url and self.avatar_updater is not None:
            self.avatar_updater.schedule(contact, avatar_url)

        for descriptor in descriptors:
            self.assembler.create(descriptor, inbox, contact, link)

        if len(descriptors) > 1:
            logger.info(
                "contact card fanned out",
                extra={
                    "extra_fields": safe_log_context(
                        inbox_id=inbox.id, messages=len(descriptors)
                    )
                },
            )
        return EventOutcome.CREATED
