"""Shared test helpers: in-memory fakes for the store, locks and media.

These are NOT fixtures - they are plain classes/functions imported by
conftest.py and by individual test files.
"""

from __future__ import annotations

import copy
import threading
import uuid
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterator, Mapping

from wainbound.domain.entities import (
    Contact,
    ContactLink,
    Conversation,
    Inbox,
    Message,
)
from wainbound.infra.media import MediaFetchError
from wainbound.infra.repositories.inbox_repository import CONTACT_FIELDS

ACCOUNT_ID = "acc-1"
BAILEYS_INBOX_ID = "inbox-baileys"
ZAPI_INBOX_ID = "inbox-zapi"
SYSTEM_USER_ID = "user-system"


def make_inbox(provider: str = "zapi", **overrides: Any) -> Inbox:
    values: dict[str, Any] = {
        "id": BAILEYS_INBOX_ID if provider == "baileys" else ZAPI_INBOX_ID,
        "account_id": ACCOUNT_ID,
        "provider": provider,
        "phone_number": "+5511987650000",
        "system_user_id": SYSTEM_USER_ID,
        "provider_config": {
            "media_url_template": "https://gw.example/media/{message_id}",
            "api_headers": {"x-api-key": "k"},
        }
        if provider == "baileys"
        else {},
    }
    values.update(overrides)
    return Inbox(**values)


def _new_id() -> str:
    return str(uuid.uuid4())


class _State:
    def __init__(self) -> None:
        self.contacts: dict[str, Contact] = {}
        self.links: dict[str, ContactLink] = {}
        self.conversations: dict[str, Conversation] = {}
        self.messages: list[Message] = []


class MemorySession:
    """InboxSession over in-memory lists."""

    def __init__(self, state: _State) -> None:
        self.state = state
        self.locked_sources: list[tuple[str, str]] = []

    def message_exists(self, inbox_id: str, source_id: str) -> bool:
        return self.find_message(inbox_id, source_id) is not None

    def find_message(
        self, inbox_id: str, source_id: str, *, for_update: bool = False
    ) -> Message | None:
        for message in self.state.messages:
            if message.inbox_id == inbox_id and message.source_id == source_id:
                return copy.deepcopy(message)
        return None

    def insert_message(self, message: Message) -> Message:
        message.id = _new_id()
        self.state.messages.append(copy.deepcopy(message))
        return message

    def update_message_content(
        self, message_id: str, content: str | None, content_attributes: dict[str, Any]
    ) -> None:
        for message in self.state.messages:
            if message.id == message_id:
                message.content = content
                message.content_attributes = dict(content_attributes)

    def lock_source(self, inbox_id: str, source_id: str) -> None:
        self.locked_sources.append((inbox_id, source_id))

    def find_link(
        self, inbox_id: str, source_id: str, *, for_update: bool = False
    ) -> ContactLink | None:
        for link in self.state.links.values():
            if link.inbox_id == inbox_id and link.source_id == source_id:
                return replace(link)
        return None

    def find_link_for_contact(
        self, inbox_id: str, contact_id: str, *, for_update: bool = False
    ) -> ContactLink | None:
        for link in self.state.links.values():
            if link.inbox_id == inbox_id and link.contact_id == contact_id:
                return replace(link)
        return None

    def insert_link(self, inbox_id: str, contact_id: str, source_id: str) -> ContactLink:
        if self.find_link(inbox_id, source_id) is not None:
            raise AssertionError(f"duplicate contact link {source_id}")
        link = ContactLink(id=_new_id(), inbox_id=inbox_id, contact_id=contact_id, source_id=source_id)
        self.state.links[link.id] = link
        return replace(link)

    def update_link_source_id(self, link_id: str, source_id: str) -> None:
        self.state.links[link_id].source_id = source_id

    def get_contact(self, contact_id: str, *, for_update: bool = False) -> Contact | None:
        contact = self.state.contacts.get(contact_id)
        return replace(contact) if contact else None

    def find_contact_by_identifier(self, account_id: str, identifier: str) -> Contact | None:
        for contact in self.state.contacts.values():
            if contact.account_id == account_id and contact.identifier == identifier:
                return replace(contact)
        return None

    def find_contact_by_phone(self, account_id: str, phone_number: str) -> Contact | None:
        for contact in self.state.contacts.values():
            if contact.account_id == account_id and contact.phone_number == phone_number:
                return replace(contact)
        return None

    def insert_contact(
        self,
        account_id: str,
        *,
        name: str | None,
        phone_number: str | None,
        identifier: str | None,
    ) -> Contact:
        contact = Contact(
            id=_new_id(),
            account_id=account_id,
            name=name,
            phone_number=phone_number,
            identifier=identifier,
        )
        self.state.contacts[contact.id] = contact
        return replace(contact)

    def update_contact(self, contact_id: str, **fields: Any) -> None:
        unknown = set(fields) - set(CONTACT_FIELDS)
        if unknown:
            raise ValueError(f"unknown contact fields: {sorted(unknown)}")
        contact = self.state.contacts[contact_id]
        for name, value in fields.items():
            setattr(contact, name, value)

    def find_open_conversation(
        self, inbox_id: str, contact_link_id: str
    ) -> Conversation | None:
        for conversation in self.state.conversations.values():
            if (
                conversation.inbox_id == inbox_id
                and conversation.contact_link_id == contact_link_id
                and conversation.status == "open"
            ):
                return replace(conversation)
        return None

    def insert_conversation(
        self, inbox_id: str, contact_id: str, contact_link_id: str
    ) -> Conversation:
        conversation = Conversation(
            id=_new_id(),
            inbox_id=inbox_id,
            contact_id=contact_id,
            contact_link_id=contact_link_id,
        )
        self.state.conversations[conversation.id] = conversation
        return replace(conversation)


class MemoryInboxRepository:
    """InboxRepository whose atomic() blocks are serialized and roll back on error."""

    def __init__(self) -> None:
        self.state = _State()
        self._lock = threading.RLock()
        self.sessions: list[MemorySession] = []

    @contextmanager
    def atomic(self) -> Iterator[MemorySession]:
        with self._lock:
            snapshot = copy.deepcopy(self.state)
            session = MemorySession(self.state)
            self.sessions.append(session)
            try:
                yield session
            except Exception:
                self.state.__dict__.update(snapshot.__dict__)
                raise

    # Direct accessors for assertions and seeding

    @property
    def messages(self) -> list[Message]:
        return list(self.state.messages)

    @property
    def contacts(self) -> list[Contact]:
        return list(self.state.contacts.values())

    @property
    def links(self) -> list[ContactLink]:
        return list(self.state.links.values())

    @property
    def conversations(self) -> list[Conversation]:
        return list(self.state.conversations.values())

    def add_contact(self, **fields: Any) -> Contact:
        fields.setdefault("account_id", ACCOUNT_ID)
        contact = Contact(id=fields.pop("id", _new_id()), **fields)
        self.state.contacts[contact.id] = contact
        return contact

    def add_link(self, inbox_id: str, contact: Contact, source_id: str) -> ContactLink:
        link = ContactLink(id=_new_id(), inbox_id=inbox_id, contact_id=contact.id, source_id=source_id)
        self.state.links[link.id] = link
        return link

    def contact(self, contact_id: str) -> Contact:
        return self.state.contacts[contact_id]


class InMemoryLockStore:
    """LockStore on a dict; TTLs are recorded but never expire."""

    def __init__(self) -> None:
        self.values: dict[str, str] = {}
        self.ttls: dict[str, float] = {}
        self.deleted: list[str] = []
        self.attempts: list[str] = []
        self._lock = threading.Lock()

    def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        with self._lock:
            self.attempts.append(key)
            if key in self.values:
                return False
            self.values[key] = value
            self.ttls[key] = ttl
            return True

    def get(self, key: str) -> str | None:
        return self.values.get(key)

    def delete(self, key: str) -> None:
        with self._lock:
            self.deleted.append(key)
            self.values.pop(key, None)


class FakeMediaFetcher:
    """MediaFetcher returning canned bytes, or failing on demand."""

    def __init__(self, data: bytes = b"media-bytes", fail: bool = False) -> None:
        self.data = data
        self.fail = fail
        self.calls: list[tuple[str, dict[str, str]]] = []

    def fetch(self, url: str, headers: Mapping[str, str] | None = None) -> bytes:
        self.calls.append((url, dict(headers or {})))
        if self.fail:
            raise MediaFetchError("HTTP 404")
        return self.data


class RecordingAvatarUpdater:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def schedule(self, contact: Contact, image_url: str) -> None:
        self.calls.append((contact.id, image_url))


class RecordingNotifier:
    def __init__(self) -> None:
        self.calls: list[tuple[Message, Conversation]] = []

    def on_message_received(self, message: Message, conversation: Conversation) -> None:
        self.calls.append((message, conversation))


def zapi_text_event(**overrides: Any) -> dict[str, Any]:
    """Z-API ReceivedCallback text message."""
    event: dict[str, Any] = {
        "type": "ReceivedCallback",
        "messageId": "3EB0A1B2C3D4E5F6",
        "phone": "5511987654321",
        "chatLid": "123456789012345@lid",
        "fromMe": False,
        "momment": 1700000000000,
        "senderName": "Maria Silva",
        "chatName": "Maria",
        "senderPhoto": "https://pps.whatsapp.net/photo.jpg",
        "isGroup": False,
        "isNewsletter": False,
        "broadcast": False,
        "text": {"message": "Olá, tudo bem?"},
    }
    event.update(overrides)
    return event


def baileys_event(message: dict[str, Any], **key_overrides: Any) -> dict[str, Any]:
    """One Baileys WAMessage with a phone-addressed key."""
    key: dict[str, Any] = {
        "remoteJid": "5511987654321@s.whatsapp.net",
        "fromMe": False,
        "id": "BAE5F00D",
    }
    key.update(key_overrides)
    return {
        "key": key,
        "message": message,
        "messageTimestamp": 1700000000,
        "pushName": "Maria Silva",
    }


def baileys_upsert(*events: dict[str, Any]) -> dict[str, Any]:
    return {"event": "messages.upsert", "data": {"messages": list(events)}}
