"""InboundAdapter - the per-provider capability the ingestion core relies on.

Each gateway provider implements classification, identity extraction and
media reference building for its own payload shape. The core never branches
on the provider.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any

from wainbound.domain.entities import Contact, Inbox, Provider

from .models import CONTACT_PHONE_UNAVAILABLE, IdentityTuple, MediaRef, MessageDescriptor


class InvalidPayloadError(Exception):
    """Raised when a webhook event lacks the minimal shape (a message id)."""

    pass


class UnknownProviderError(Exception):
    """Raised when no adapter exists for an inbox provider."""

    pass


class InboundAdapter(ABC):
    """Provider-specific reading of webhook events."""

    provider: Provider

    @abstractmethod
    def events(self, payload: dict[str, Any]) -> list[dict[str, Any]]:
        """Split one webhook body into raw message events."""

    @abstractmethod
    def accepts(self, raw: dict[str, Any]) -> bool:
        """False for events with no contact/message semantics (groups, status...)."""

    @abstractmethod
    def classify(self, raw: dict[str, Any], inbox: Inbox) -> MessageDescriptor:
        """Map a raw event to exactly one MessageDescriptor. Pure."""

    @abstractmethod
    def extract_identity(self, raw: dict[str, Any], inbox: Inbox) -> IdentityTuple:
        """Derive the (phone, lid) identifiers of the conversation counterpart."""

    @abstractmethod
    def build_media_ref(
        self, raw: dict[str, Any], kind: str, inbox: Inbox
    ) -> MediaRef | None:
        """Where to download the media of a media-kind event."""

    def destination_lock_key(
        self, raw: dict[str, Any], descriptor: MessageDescriptor, inbox: Inbox
    ) -> str | None:
        """Key serializing this event against the send path, or None."""
        return None

    def avatar_url(
        self, raw: dict[str, Any], identity: IdentityTuple, contact: Contact
    ) -> str | None:
        """Image URL to schedule as the contact avatar, or None."""
        return None

    def descriptors(self, raw: dict[str, Any], inbox: Inbox) -> list[MessageDescriptor]:
        """classify() plus the contact-card fan-out: one descriptor per number."""
        descriptor = self.classify(raw, inbox)
        if descriptor.kind != "contact_card" or not descriptor.contact_phones:
            return [descriptor]
        return [replace(descriptor, contact_phones=(phone,)) for phone in descriptor.contact_phones]


def card_phones(phones: Any) -> tuple[str, ...]:
    """Normalize a contact card phone list, never empty."""
    values = tuple(str(p) for p in (phones or []) if p not in (None, ""))
    return values or (CONTACT_PHONE_UNAVAILABLE,)


_registry: dict[str, InboundAdapter] = {}


def register_adapter(adapter: InboundAdapter) -> None:
    _registry[adapter.provider] = adapter


def get_adapter(provider: str) -> InboundAdapter:
    """Return the adapter registered for a provider.

    Raises:
        UnknownProviderError: If the provider has no adapter.
    """
    if not _registry:
        # Populate lazily so importing this module has no side effects.
        from .baileys_adapter import BaileysAdapter
        from .zapi_adapter import ZapiAdapter

        register_adapter(BaileysAdapter())
        register_adapter(ZapiAdapter())

    adapter = _registry.get(provider)
    if adapter is None:
        raise UnknownProviderError(f"no inbound adapter for provider {provider!r}")
    return adapter
