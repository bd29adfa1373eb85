"""Message assembly - turn a MessageDescriptor into stored message rows.

Media is downloaded before the database transaction opens. A failed download
never fails the event: the message is stored without the attachment and
flagged unsupported, keeping its caption.
"""

from __future__ import annotations

from typing import Any, Literal

from wainbound.domain.entities import (
    Attachment,
    Contact,
    ContactLink,
    Conversation,
    Inbox,
    Message,
)
from wainbound.domain.notifications import OutboundNotifier
from wainbound.infra.media import MediaFetcher, MediaFetchError
from wainbound.infra.repositories.inbox_repository import InboxRepository, InboxSession
from wainbound.observability.logging import get_logger, source_id_prefix
from wainbound.observability.redaction import safe_log_context
from wainbound.whatsapp.models import CONTACT_PHONE_UNAVAILABLE, MessageDescriptor
from wainbound.whatsapp.payload import synthesize_filename

logger = get_logger(__name__)

EditStatus = Literal["edited", "missing", "duplicate"]


def content_attributes(descriptor: MessageDescriptor, media_failed: bool = False) -> dict[str, Any]:
    """Attributes stored on a new message.

    Besides external_created_at, one marker group is set, by priority:
    reaction, then reply, then unsupported. A failed media download always
    adds is_unsupported.
    """
    attrs: dict[str, Any] = {"external_created_at": descriptor.timestamp}
    reply_to = descriptor.reply_to_source_id

    if descriptor.kind == "reaction":
        attrs["is_reaction"] = True
        if reply_to:
            attrs["in_reply_to_external_id"] = reply_to
    elif reply_to:
        attrs["in_reply_to_external_id"] = reply_to
    elif descriptor.kind == "unsupported":
        attrs["is_unsupported"] = True
    if media_failed:
        attrs["is_unsupported"] = True
    return attrs


def attachment_file_type(kind: str) -> str:
    return "image" if kind == "sticker" else kind


def split_name(display_name: str | None) -> dict[str, str]:
    """'Ana Maria Souza' -> {'firstName': 'Ana', 'lastName': 'Maria Souza'}."""
    first, _, last = (display_name or "").strip().partition(" ")
    meta = {"firstName": first, "lastName": last.strip()}
    return {key: value for key, value in meta.items() if value}


class MessageAssembler:
    """Persist canonical messages, attachments and edits."""

    def __init__(
        self,
        repo: InboxRepository,
        media_fetcher: MediaFetcher,
        notifier: OutboundNotifier | None = None,
    ) -> None:
        self.repo = repo
        self.media_fetcher = media_fetcher
        self.notifier = notifier

    def create(
        self,
        descriptor: MessageDescriptor,
        inbox: Inbox,
        contact: Contact,
        link: ContactLink,
    ) -> Message:
        """Store one message in the open conversation of link.

        Returns:
            The created message, with its id assigned.
        """
        attachments: list[Attachment] = []
        media_failed = False

        if descriptor.has_media:
            attachment = self._media_attachment(descriptor, inbox)
            if attachment is None:
                media_failed = True
            else:
                attachments.append(attachment)
        elif descriptor.kind == "contact_card" and descriptor.contact_phones:
            attachments.append(self._contact_attachment(descriptor))

        incoming = descriptor.incoming
        with self.repo.atomic() as session:
            conversation = self.open_conversation(session, inbox, contact, link)
            message = session.insert_message(
                Message(
                    id=None,
                    inbox_id=inbox.id,
                    conversation_id=conversation.id,
                    source_id=descriptor.provider_source_id,
                    content=descriptor.text_content,
                    content_attributes=content_attributes(descriptor, media_failed),
                    sender_type="Contact" if incoming else "User",
                    sender_id=contact.id if incoming else inbox.system_user_id,
                    message_type="incoming" if incoming else "outgoing",
                    attachments=attachments,
                )
            )

        logger.info(
            "message created",
            extra={
                "extra_fields": {
                    "inbox_id": inbox.id,
                    "message_id": message.id,
                    "source_id": source_id_prefix(message.source_id),
                    "kind": descriptor.kind,
                }
            },
        )

        if incoming and self.notifier is not None:
            self.notifier.on_message_received(message, conversation)
        return message

    @staticmethod
    def open_conversation(
        session: InboxSession, inbox: Inbox, contact: Contact, link: ContactLink
    ) -> Conversation:
        """Find the open conversation of link, creating one when none is open."""
        conversation = session.find_open_conversation(inbox.id, link.id)
        if conversation is None:
            conversation = session.insert_conversation(inbox.id, contact.id, link.id)
        return conversation

    def apply_edit(
        self, descriptor: MessageDescriptor, inbox: Inbox
    ) -> tuple[EditStatus, Message | None]:
        """Rewrite the edited message in place, keeping its previous content.

        An edit whose target is not stored yet is dropped ("missing"). An edit
        already applied to its target is reported as "duplicate".
        """
        target = descriptor.editable_target_id
        if not target:
            return "missing", None

        with self.repo.atomic() as session:
            original = session.find_message(inbox.id, target, for_update=True)
            if original is None:
                return "missing", None
            if original.content_attributes.get("edit_source_id") == descriptor.provider_source_id:
                return "duplicate", original

            attrs = dict(original.content_attributes)
            attrs["is_edited"] = True
            attrs["previous_content"] = original.content
            attrs["edit_source_id"] = descriptor.provider_source_id
            session.update_message_content(original.id, descriptor.text_content, attrs)

        original.content = descriptor.text_content
        original.content_attributes = attrs
        return "edited", original

    # ── attachments ─────────────────────────────────────────────────────────

    def _media_attachment(
        self, descriptor: MessageDescriptor, inbox: Inbox
    ) -> Attachment | None:
        ref = descriptor.media_ref
        try:
            if ref is None or not ref.url:
                raise MediaFetchError("media url not available")
            data = self.media_fetcher.fetch(ref.url, ref.headers)
        except MediaFetchError as e:
            logger.error(
                "Failed to download attachment",
                extra={
                    "extra_fields": safe_log_context(
                        inbox_id=inbox.id,
                        source_id=source_id_prefix(descriptor.provider_source_id),
                        kind=descriptor.kind,
                        error=str(e),
                    )
                },
            )
            return None

        file_type = attachment_file_type(descriptor.kind)
        filename = descriptor.filename or synthesize_filename(
            file_type, descriptor.provider_source_id, descriptor.mimetype
        )
        meta = {"is_recorded_audio": True} if descriptor.is_recorded_audio else {}
        return Attachment(
            file_type=file_type,
            filename=filename,
            content_type=descriptor.mimetype,
            data=data,
            meta=meta,
        )

    @staticmethod
    def _contact_attachment(descriptor: MessageDescriptor) -> Attachment:
        phone = descriptor.contact_phones[0] if descriptor.contact_phones else CONTACT_PHONE_UNAVAILABLE
        return Attachment(
            file_type="contact",
            fallback_title=phone,
            meta=split_name(descriptor.contact_display_name),
        )
