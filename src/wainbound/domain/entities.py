"""Persistent entities touched by the ingestion core.

Contacts, conversations and messages are owned by the surrounding CRM; these
dataclasses carry only the fields identity resolution and message assembly
read or write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

Provider = Literal["baileys", "zapi"]


@dataclass(frozen=True)
class Inbox:
    """A WhatsApp channel connected through one gateway provider.

    Attributes:
        phone_number: The channel's own number (used for self-send detection).
        system_user_id: User recorded as sender of outgoing messages.
        provider_config: Provider settings. Baileys reads
            "media_url_template" (with a {message_id} placeholder) and
            "api_headers" for media downloads.
    """

    id: str
    account_id: str
    provider: Provider
    phone_number: str | None = None
    system_user_id: str | None = None
    provider_config: dict[str, Any] = field(default_factory=dict)

    def media_url(self, message_id: str) -> str | None:
        template = self.provider_config.get("media_url_template")
        if not template:
            return None
        return str(template).format(message_id=message_id)

    @property
    def api_headers(self) -> dict[str, str]:
        return dict(self.provider_config.get("api_headers") or {})


@dataclass
class Contact:
    id: str
    account_id: str
    name: str | None = None
    phone_number: str | None = None
    identifier: str | None = None
    avatar_url: str | None = None


@dataclass
class ContactLink:
    """Binds a contact to an inbox-scoped source id (LID digits or phone)."""

    id: str
    inbox_id: str
    contact_id: str
    source_id: str


@dataclass
class Conversation:
    id: str
    inbox_id: str
    contact_id: str
    contact_link_id: str
    status: str = "open"


@dataclass
class Attachment:
    file_type: str
    filename: str | None = None
    content_type: str | None = None
    data: bytes | None = None
    fallback_title: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)


@dataclass
class Message:
    id: str | None
    inbox_id: str
    conversation_id: str
    source_id: str
    content: str | None
    content_attributes: dict[str, Any]
    sender_type: Literal["Contact", "User"]
    sender_id: str | None
    message_type: Literal["incoming", "outgoing"]
    attachments: list[Attachment] = field(default_factory=list)

    @property
    def is_unsupported(self) -> bool:
        return bool(self.content_attributes.get("is_unsupported"))

    @property
    def is_edited(self) -> bool:
        return bool(self.content_attributes.get("is_edited"))
