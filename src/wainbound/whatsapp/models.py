"""Canonical WhatsApp event models shared by both gateway adapters."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Literal

MessageKind = Literal[
    "text",
    "image",
    "audio",
    "video",
    "file",
    "sticker",
    "reaction",
    "contact_card",
    "edit",
    "unsupported",
    "ignored",
]
Direction = Literal["in", "out"]

# Kinds that carry a downloadable media reference
MEDIA_KINDS: frozenset[str] = frozenset({"image", "audio", "video", "file", "sticker"})

# Kinds that are classified but never persisted
NON_PERSISTED_KINDS: frozenset[str] = frozenset({"edit", "ignored"})

CONTACT_PHONE_UNAVAILABLE = "Phone number is not available"

_NON_DIGITS = re.compile(r"[^\d]")


@dataclass(frozen=True)
class MediaRef:
    """Where to download an attachment from."""

    url: str | None
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class MessageDescriptor:
    """Provider-neutral description of one webhook message event.

    provider_source_id is the dedup key. For edit events it is the id of the
    edit itself; editable_target_id points at the message being edited.
    """

    provider_source_id: str
    direction: Direction
    kind: MessageKind
    text_content: str | None = None
    reply_to_source_id: str | None = None
    media_ref: MediaRef | None = None
    mimetype: str | None = None
    timestamp: int | None = None
    is_edit: bool = False
    editable_target_id: str | None = None
    filename: str | None = None
    is_recorded_audio: bool = False
    contact_display_name: str | None = None
    contact_phones: tuple[str, ...] = ()

    @property
    def incoming(self) -> bool:
        return self.direction == "in"

    @property
    def should_ignore(self) -> bool:
        """True for protocol/context/edit markers and emptied reactions."""
        if self.kind in NON_PERSISTED_KINDS:
            return True
        return self.kind == "reaction" and not self.text_content

    @property
    def has_media(self) -> bool:
        return self.kind in MEDIA_KINDS


@dataclass(frozen=True)
class IdentityTuple:
    """Sender identifiers extracted from a webhook.

    Attributes:
        phone: Phone number digits, no "+".
        lid: LID identifier as stored on the contact (e.g. "123@lid").
        display_name: Best available name, already resolved by precedence.
        raw_sender: Raw sender field of the payload (auto-assigned name).
    """

    phone: str | None = None
    lid: str | None = None
    display_name: str | None = None
    raw_sender: str | None = None

    @property
    def lid_digits(self) -> str | None:
        if not self.lid:
            return None
        digits = _NON_DIGITS.sub("", self.lid)
        return digits or None

    @property
    def source_id(self) -> str | None:
        """Canonical contact link key: LID digits, else phone digits."""
        return self.lid_digits or self.phone

    @property
    def phone_number(self) -> str | None:
        return f"+{self.phone}" if self.phone else None

    @property
    def is_empty(self) -> bool:
        return not self.source_id

    def placeholder_names(self) -> set[str]:
        """Names that were auto-assigned from identifiers, safe to overwrite."""
        values = {self.phone, self.lid, self.lid_digits, self.raw_sender, self.phone_number}
        return {v for v in values if v}
