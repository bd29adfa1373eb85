"""Identity resolution - one contact per person across phone and LID.

WhatsApp addresses the same person by phone number or by LID (an opaque
linked-identity id), and a gateway may report either one, or both, on any
event. A contact link is keyed by the LID digits when a LID is known and by
the phone digits otherwise, so a link created from a phone-only event has to
be migrated once the LID shows up.

All steps of one resolve() run in a single transaction:
1. Lock the target source id (advisory lock) so concurrent creators converge.
2. Migrate a phone-keyed link to the LID key when the LID is new.
3. Find or create the link and its contact.
4. Reconcile the contact row (fill gaps, replace placeholder names).
"""

from __future__ import annotations

from dataclasses import replace
from typing import Any

from wainbound.domain.entities import Contact, ContactLink, Inbox
from wainbound.infra.repositories.inbox_repository import InboxRepository, InboxSession
from wainbound.observability.logging import get_logger
from wainbound.observability.redaction import safe_log_context
from wainbound.whatsapp.models import IdentityTuple
from wainbound.whatsapp.phone import digits_only

logger = get_logger(__name__)


class MissingIdentityError(Exception):
    """Raised when an event carries neither a phone nor a LID."""

    pass


class IdentityResolver:
    """Find-or-create/merge of Contact + ContactLink for an IdentityTuple."""

    def __init__(self, repo: InboxRepository) -> None:
        self.repo = repo

    def resolve(self, identity: IdentityTuple, inbox: Inbox) -> tuple[Contact, ContactLink]:
        """Return the contact and inbox link for identity, creating them if needed.

        Raises:
            MissingIdentityError: If identity has no phone and no LID.
        """
        source_id = identity.source_id
        if not source_id:
            raise MissingIdentityError("identity has neither phone nor lid")

        with self.repo.atomic() as session:
            session.lock_source(inbox.id, source_id)
            self._migrate(session, identity, inbox)
            contact, link = self._find_or_create(session, identity, inbox)
            contact = self._reconcile(session, contact, identity)

        return contact, link

    # ── step 1: phone -> LID migration ──────────────────────────────────────

    def _migrate(self, session: InboxSession, identity: IdentityTuple, inbox: Inbox) -> None:
        target = identity.lid_digits
        if not identity.phone or not target or target == identity.phone:
            return
        if session.find_link(inbox.id, target) is not None:
            return

        link = session.find_link(inbox.id, identity.phone, for_update=True)
        if link is None:
            by_phone = session.find_contact_by_phone(inbox.account_id, identity.phone_number)
            if by_phone is not None:
                link = session.find_link_for_contact(inbox.id, by_phone.id, for_update=True)
        if link is None:
            return

        contact = session.get_contact(link.contact_id, for_update=True)
        if contact is None:
            return

        if self._owned_by_other(session, inbox, contact, identity):
            logger.warning(
                "identity migration skipped, identifier belongs to another contact",
                extra={
                    "extra_fields": safe_log_context(
                        inbox_id=inbox.id, contact_id=contact.id, link_id=link.id
                    )
                },
            )
            return

        session.update_link_source_id(link.id, target)
        fields: dict[str, Any] = {"identifier": identity.lid}
        if not contact.phone_number:
            fields["phone_number"] = identity.phone_number
        session.update_contact(contact.id, **fields)

        logger.info(
            "contact link migrated to lid",
            extra={
                "extra_fields": safe_log_context(
                    inbox_id=inbox.id, contact_id=contact.id, link_id=link.id
                )
            },
        )

    @staticmethod
    def _owned_by_other(
        session: InboxSession, inbox: Inbox, contact: Contact, identity: IdentityTuple
    ) -> bool:
        if identity.lid:
            holder = session.find_contact_by_identifier(inbox.account_id, identity.lid)
            if holder is not None and holder.id != contact.id:
                return True
        if identity.phone_number:
            holder = session.find_contact_by_phone(inbox.account_id, identity.phone_number)
            if holder is not None and holder.id != contact.id:
                return True
        return False

    # ── step 2: find or create ──────────────────────────────────────────────

    def _find_or_create(
        self, session: InboxSession, identity: IdentityTuple, inbox: Inbox
    ) -> tuple[Contact, ContactLink]:
        source_id = identity.source_id
        link = session.find_link(inbox.id, source_id)
        if link is not None:
            contact = session.get_contact(link.contact_id, for_update=True)
            if contact is not None:
                return contact, link

        contact = None
        if identity.lid:
            contact = session.find_contact_by_identifier(inbox.account_id, identity.lid)
        if contact is None and identity.phone_number:
            contact = session.find_contact_by_phone(inbox.account_id, identity.phone_number)

        if contact is None:
            contact = session.insert_contact(
                inbox.account_id,
                name=identity.display_name or source_id,
                phone_number=identity.phone_number,
                identifier=identity.lid,
            )
            logger.info(
                "contact created",
                extra={"extra_fields": safe_log_context(inbox_id=inbox.id, contact_id=contact.id)},
            )
        else:
            contact = session.get_contact(contact.id, for_update=True) or contact

        if link is None:
            link = session.insert_link(inbox.id, contact.id, source_id)
        return contact, link

    # ── step 3: reconciliation ──────────────────────────────────────────────

    def _reconcile(
        self, session: InboxSession, contact: Contact, identity: IdentityTuple
    ) -> Contact:
        fields: dict[str, Any] = {}

        if identity.phone_number and not contact.phone_number:
            holder = session.find_contact_by_phone(contact.account_id, identity.phone_number)
            if holder is None or holder.id == contact.id:
                fields["phone_number"] = identity.phone_number

        if identity.lid and identity.lid != contact.identifier:
            holder = session.find_contact_by_identifier(contact.account_id, identity.lid)
            if holder is None or holder.id == contact.id:
                fields["identifier"] = identity.lid

        name = identity.display_name
        if name and name != contact.name and is_placeholder_name(contact, identity):
            fields["name"] = name

        if not fields:
            return contact

        session.update_contact(contact.id, **fields)
        return replace(contact, **fields)


def placeholder_names(contact: Contact, identity: IdentityTuple) -> set[str]:
    """Names that were auto-assigned from an identifier of this person."""
    names = set(identity.placeholder_names())
    for value in (contact.phone_number, contact.identifier):
        if value:
            names.add(value)
            digits = digits_only(value)
            if digits:
                names.add(digits)
    return names


def is_placeholder_name(contact: Contact, identity: IdentityTuple) -> bool:
    if not contact.name:
        return True
    return contact.name in placeholder_names(contact, identity)
