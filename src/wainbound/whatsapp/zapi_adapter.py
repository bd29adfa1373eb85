"""Z-API gateway adapter - flat "ReceivedCallback" webhook events.

Each callback is one message with the content under a top-level key named
after its type (text, image, document...). The sender phone is in ``phone``
(or a LID when it ends with ``@lid``) and the LID in ``chatLid``.
"""

from __future__ import annotations

import re
from typing import Any

from wainbound.domain.entities import Contact, Inbox
from wainbound.infra.locks import CONTACT_LOCK_KEY

from .adapter import InboundAdapter, InvalidPayloadError, card_phones
from .models import IdentityTuple, MediaRef, MessageDescriptor, MessageKind
from .payload import as_str, dig, present, to_epoch_seconds

RECEIVED_CALLBACK = "ReceivedCallback"

LID_SUFFIX = "@lid"

# Presence order decides the kind.
_KIND_KEYS: tuple[tuple[str, MessageKind], ...] = (
    ("text", "text"),
    ("reaction", "reaction"),
    ("audio", "audio"),
    ("image", "image"),
    ("sticker", "sticker"),
    ("video", "video"),
    ("document", "file"),
    ("contact", "contact_card"),
)

# kind -> (payload node, url field)
_MEDIA_FIELDS: dict[str, tuple[str, str]] = {
    "image": ("image", "imageUrl"),
    "sticker": ("sticker", "stickerUrl"),
    "audio": ("audio", "audioUrl"),
    "video": ("video", "videoUrl"),
    "file": ("document", "documentUrl"),
}

_NON_DIGITS = re.compile(r"[^\d]")

# Flags marking events with no contact/message semantics
_FILTER_FLAGS = ("isGroup", "isNewsletter", "broadcast", "isStatusReply")


def message_kind(raw: dict[str, Any]) -> MessageKind:
    for key, kind in _KIND_KEYS:
        if key in raw:
            return kind
    return "unsupported"


def _content(raw: dict[str, Any], kind: str) -> str | None:
    if kind == "text":
        return as_str(dig(raw, "text", "message"))
    if kind == "image":
        return as_str(dig(raw, "image", "caption"))
    if kind == "video":
        return as_str(dig(raw, "video", "caption"))
    if kind == "file":
        return as_str(dig(raw, "document", "fileName"))
    if kind == "reaction":
        return as_str(dig(raw, "reaction", "value"))
    if kind == "contact_card":
        return as_str(dig(raw, "contact", "displayName"))
    return None


def _is_lid(value: str | None) -> bool:
    return bool(value) and value.endswith(LID_SUFFIX)


class ZapiAdapter(InboundAdapter):
    """InboundAdapter for Z-API ReceivedCallback payloads."""

    provider = "zapi"

    def events(self, payload: dict[str, Any]) -> list[dict[str, Any]]:
        return [payload]

    def accepts(self, raw: dict[str, Any]) -> bool:
        event_type = raw.get("type")
        if event_type is not None and event_type != RECEIVED_CALLBACK:
            return False
        if any(raw.get(flag) for flag in _FILTER_FLAGS):
            return False
        return "notification" not in raw

    def source_id(self, raw: dict[str, Any]) -> str:
        """Dedup id: editMessageId for edit events, messageId otherwise."""
        field = "editMessageId" if raw.get("isEdit") else "messageId"
        message_id = raw.get(field)
        if not message_id or not isinstance(message_id, str):
            raise InvalidPayloadError(f"missing or invalid {field}")
        return message_id

    def classify(self, raw: dict[str, Any], inbox: Inbox) -> MessageDescriptor:
        source_id = self.source_id(raw)
        kind = message_kind(raw)
        is_edit = bool(raw.get("isEdit"))

        if kind == "reaction":
            reply_to = as_str(dig(raw, "reaction", "referencedMessage", "messageId"))
        else:
            reply_to = as_str(present(raw.get("referenceMessageId")))

        media = _MEDIA_FIELDS.get(kind)
        contact = raw.get("contact") if kind == "contact_card" else None

        return MessageDescriptor(
            provider_source_id=source_id,
            direction="out" if raw.get("fromMe") else "in",
            kind=kind,
            text_content=_content(raw, kind),
            reply_to_source_id=reply_to,
            media_ref=self.build_media_ref(raw, kind, inbox),
            mimetype=as_str(dig(raw, media[0], "mimeType")) if media else None,
            timestamp=to_epoch_seconds(raw.get("momment")),
            is_edit=is_edit,
            editable_target_id=as_str(raw.get("messageId")) if is_edit else None,
            filename=as_str(present(dig(raw, "document", "fileName"))) if kind == "file" else None,
            is_recorded_audio=bool(dig(raw, "audio", "ptt")) if kind == "audio" else False,
            contact_display_name=as_str(dig(contact, "displayName")),
            contact_phones=card_phones(dig(contact, "phones")) if kind == "contact_card" else (),
        )

    def build_media_ref(
        self, raw: dict[str, Any], kind: str, inbox: Inbox
    ) -> MediaRef | None:
        media = _MEDIA_FIELDS.get(kind)
        if media is None:
            return None
        node, url_field = media
        return MediaRef(url=as_str(dig(raw, node, url_field)))

    def extract_identity(self, raw: dict[str, Any], inbox: Inbox) -> IdentityTuple:
        raw_phone = as_str(raw.get("phone"))
        chat_lid = as_str(present(raw.get("chatLid")))

        phone = None
        if raw_phone and not _is_lid(raw_phone):
            phone = _NON_DIGITS.sub("", raw_phone) or None

        lid = chat_lid
        if lid is None and _is_lid(raw_phone):
            lid = raw_phone

        name = (
            present(raw.get("senderName"))
            or present(raw.get("chatName"))
            or raw_phone
        )

        return IdentityTuple(
            phone=phone,
            lid=lid,
            display_name=as_str(name),
            raw_sender=raw_phone,
        )

    def destination_lock_key(
        self, raw: dict[str, Any], descriptor: MessageDescriptor, inbox: Inbox
    ) -> str | None:
        phone = as_str(raw.get("phone"))
        return CONTACT_LOCK_KEY.format(phone=phone) if phone else None

    def avatar_url(
        self, raw: dict[str, Any], identity: IdentityTuple, contact: Contact
    ) -> str | None:
        # On fromMe events the photo fields describe the channel itself.
        if raw.get("fromMe"):
            return None
        url = as_str(present(raw.get("senderPhoto"))) or as_str(present(raw.get("photo")))
        if url and url.startswith("http"):
            return url
        return None
