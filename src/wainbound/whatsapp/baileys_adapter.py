"""Baileys gateway adapter - "messages.upsert" webhook events.

Baileys forwards the WhatsApp web protocol message almost untouched: the
content lives under one ``<kind>Message`` node, optionally wrapped in an
``ephemeralMessage`` envelope, and the counterpart is addressed by JIDs in
``key.remoteJid`` / ``key.remoteJidAlt``.
"""

from __future__ import annotations

import re
from typing import Any, Callable

from wainbound.domain.entities import Contact, Inbox
from wainbound.infra.locks import CHANNEL_LOCK_KEY
from wainbound.observability.logging import get_logger
from wainbound.observability.redaction import safe_log_context

from .adapter import InboundAdapter, InvalidPayloadError
from .jid import CONTACT_JID_TYPES, jid_type, jid_user
from .models import IdentityTuple, MediaRef, MessageDescriptor, MessageKind
from .payload import as_str, dig, present, to_epoch_seconds
from .phone import same_phone

logger = get_logger(__name__)

UPSERT_EVENT = "messages.upsert"

_WAID_PATTERN = re.compile(r"waid=(\d+)")

# Node holding the content of each media kind
_MEDIA_NODES: dict[str, str] = {
    "image": "imageMessage",
    "audio": "audioMessage",
    "video": "videoMessage",
    "sticker": "stickerMessage",
}

# Node holding contextInfo.stanzaId (the quoted message) for each kind
_REPLY_NODES: dict[str, str] = {
    "text": "extendedTextMessage",
    "image": "imageMessage",
    "sticker": "stickerMessage",
    "audio": "audioMessage",
    "video": "videoMessage",
    "contact_card": "contactMessage",
}

ProfilePictureLookup = Callable[[str], str | None]


def unwrap_ephemeral(message: Any) -> dict[str, Any]:
    """Return the inner message of an ephemeral (disappearing) envelope."""
    if not isinstance(message, dict):
        return {}
    if "ephemeralMessage" in message:
        inner = dig(message, "ephemeralMessage", "message")
        return inner if isinstance(inner, dict) else {}
    return message


def _document(msg: dict[str, Any]) -> dict[str, Any]:
    node = msg.get("documentMessage")
    if not isinstance(node, dict):
        node = dig(msg, "documentWithCaptionMessage", "message", "documentMessage")
    return node if isinstance(node, dict) else {}


def _card_waid(msg: dict[str, Any]) -> str | None:
    vcard = dig(msg, "contactMessage", "vcard")
    if not isinstance(vcard, str):
        return None
    match = _WAID_PATTERN.search(vcard)
    return match.group(1) if match else None


def message_kind(msg: dict[str, Any]) -> MessageKind:
    """Classify an unwrapped message node. First match wins."""
    if "conversation" in msg or present(dig(msg, "extendedTextMessage", "text")):
        return "text"
    if "imageMessage" in msg:
        return "image"
    if "audioMessage" in msg:
        return "audio"
    if "videoMessage" in msg:
        return "video"
    if "documentMessage" in msg or "documentWithCaptionMessage" in msg:
        return "file"
    if "stickerMessage" in msg:
        return "sticker"
    if "reactionMessage" in msg:
        return "reaction"
    if "editedMessage" in msg:
        return "edit"
    if "contactMessage" in msg:
        return "contact_card" if _card_waid(msg) else "unsupported"
    if "protocolMessage" in msg:
        return "ignored"
    if "messageContextInfo" in msg and len(msg) == 1:
        return "ignored"
    return "unsupported"


def _content(msg: dict[str, Any], kind: str) -> str | None:
    if kind == "text":
        return as_str(msg.get("conversation")) or as_str(dig(msg, "extendedTextMessage", "text"))
    if kind == "image":
        return as_str(dig(msg, "imageMessage", "caption"))
    if kind == "video":
        return as_str(dig(msg, "videoMessage", "caption"))
    if kind == "file":
        return as_str(present(dig(msg, "documentMessage", "caption"))) or as_str(
            dig(msg, "documentWithCaptionMessage", "message", "documentMessage", "caption")
        )
    if kind == "reaction":
        return as_str(dig(msg, "reactionMessage", "text"))
    if kind == "contact_card":
        display_name = as_str(dig(msg, "contactMessage", "displayName"))
        waid = _card_waid(msg)
        if not waid:
            return display_name
        if display_name and display_name.startswith("+"):
            return waid
        return f"{display_name} - {waid}"
    return None


def _reply_to(msg: dict[str, Any], kind: str) -> str | None:
    if kind == "reaction":
        return as_str(dig(msg, "reactionMessage", "key", "id"))
    if kind == "file":
        # Documents nest contextInfo one level deeper when captioned.
        context = present(dig(msg, "documentMessage", "contextInfo")) or dig(
            msg, "documentWithCaptionMessage", "message", "documentMessage", "contextInfo"
        )
        return as_str(dig(context, "stanzaId"))
    node = _REPLY_NODES.get(kind)
    if node is None:
        return None
    return as_str(dig(msg, node, "contextInfo", "stanzaId"))


def _mimetype(msg: dict[str, Any], kind: str) -> str | None:
    if kind == "file":
        return as_str(present(dig(msg, "documentMessage", "mimetype"))) or as_str(
            dig(msg, "documentWithCaptionMessage", "message", "documentMessage", "mimetype")
        )
    node = _MEDIA_NODES.get(kind)
    return as_str(dig(msg, node, "mimetype")) if node else None


class BaileysAdapter(InboundAdapter):
    """InboundAdapter for Baileys "messages.upsert" payloads."""

    provider = "baileys"

    def __init__(self, profile_picture_lookup: ProfilePictureLookup | None = None) -> None:
        self._profile_picture_lookup = profile_picture_lookup

    def events(self, payload: dict[str, Any]) -> list[dict[str, Any]]:
        event = payload.get("event")
        if event is not None and event != UPSERT_EVENT:
            return []
        data = payload.get("data")
        if isinstance(data, dict) and isinstance(data.get("messages"), list):
            return [m for m in data["messages"] if isinstance(m, dict)]
        if isinstance(data, dict) and isinstance(data.get("key"), dict):
            return [data]
        return []

    def accepts(self, raw: dict[str, Any]) -> bool:
        return jid_type(dig(raw, "key", "remoteJid")) in CONTACT_JID_TYPES

    def source_id(self, raw: dict[str, Any]) -> str:
        message_id = dig(raw, "key", "id")
        if not message_id or not isinstance(message_id, str):
            raise InvalidPayloadError("missing or invalid message_id")
        return message_id

    def classify(self, raw: dict[str, Any], inbox: Inbox) -> MessageDescriptor:
        source_id = self.source_id(raw)
        msg = unwrap_ephemeral(raw.get("message"))
        kind = message_kind(msg)
        mimetype = _mimetype(msg, kind)

        return MessageDescriptor(
            provider_source_id=source_id,
            direction="out" if dig(raw, "key", "fromMe") else "in",
            kind=kind,
            text_content=_content(msg, kind),
            reply_to_source_id=_reply_to(msg, kind),
            media_ref=self.build_media_ref(raw, kind, inbox),
            mimetype=mimetype,
            timestamp=to_epoch_seconds(raw.get("messageTimestamp")),
            filename=as_str(present(_document(msg).get("fileName"))) if kind == "file" else None,
            is_recorded_audio=bool(dig(msg, "audioMessage", "ptt")) if kind == "audio" else False,
            contact_display_name=as_str(dig(msg, "contactMessage", "displayName")),
        )

    def build_media_ref(
        self, raw: dict[str, Any], kind: str, inbox: Inbox
    ) -> MediaRef | None:
        if kind not in ("image", "audio", "video", "file", "sticker"):
            return None
        message_id = dig(raw, "key", "id")
        return MediaRef(url=inbox.media_url(str(message_id)), headers=inbox.api_headers)

    def _jid_user(self, raw: dict[str, Any], kind: str) -> str | None:
        """User part of the counterpart JID of the requested kind ("lid" or "pn").

        addressingMode names the form held by remoteJid; the other form is in
        remoteJidAlt. Without it the JID servers tell the forms apart.
        """
        key = raw.get("key") or {}
        mode = key.get("addressingMode")
        if mode:
            field = "remoteJidAlt" if mode != kind else "remoteJid"
            return jid_user(as_str(key.get(field)))

        wanted = "lid" if kind == "lid" else "user"
        for field in ("remoteJid", "remoteJidAlt"):
            jid = as_str(key.get(field))
            if jid_type(jid) == wanted:
                return jid_user(jid)
        return None

    def is_self_message(self, raw: dict[str, Any], inbox: Inbox) -> bool:
        phone = self._jid_user(raw, "pn")
        return bool(phone and inbox.phone_number) and same_phone(phone, inbox.phone_number)

    def extract_identity(self, raw: dict[str, Any], inbox: Inbox) -> IdentityTuple:
        phone = self._jid_user(raw, "pn")
        lid_user = self._jid_user(raw, "lid")
        incoming = not dig(raw, "key", "fromMe")

        # verifiedBizName is only sent for business accounts and wins over pushName.
        name = present(raw.get("verifiedBizName")) or present(raw.get("pushName"))
        if not (name and (incoming or self.is_self_message(raw, inbox))):
            name = phone or lid_user

        return IdentityTuple(
            phone=phone,
            lid=f"{lid_user}@lid" if lid_user else None,
            display_name=as_str(name),
        )

    def destination_lock_key(
        self, raw: dict[str, Any], descriptor: MessageDescriptor, inbox: Inbox
    ) -> str | None:
        # Outgoing echoes race the send path, which holds the same channel lock.
        if descriptor.incoming:
            return None
        return CHANNEL_LOCK_KEY.format(inbox_id=inbox.id)

    def avatar_url(
        self, raw: dict[str, Any], identity: IdentityTuple, contact: Contact
    ) -> str | None:
        if contact.avatar_url or not identity.phone or self._profile_picture_lookup is None:
            return None
        try:
            return self._profile_picture_lookup(identity.phone)
        except Exception as e:
            logger.error(
                "failed to fetch profile picture",
                extra={"extra_fields": safe_log_context(error=str(e))},
            )
            return None
