"""Inbox repository - contacts, links, conversations and messages.

Uses raw SQL with psycopg2 (no ORM).

Every call happens inside a session obtained from ``atomic()``; the session
maps to one database transaction. Identity merges read rows with
``FOR UPDATE`` and write them in the same session, so concurrent resolvers
for the same contact serialize on the row lock. Find-or-create of a
contact link serializes on a transaction-scoped advisory lock keyed by
``(inbox_id, source_id)``.
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from typing import Any, Callable, ContextManager, Iterator, Protocol

from psycopg2.extensions import connection as PgConnection, cursor as PgCursor

from wainbound.domain.entities import (
    Attachment,
    Contact,
    ContactLink,
    Conversation,
    Message,
)
from wainbound.infra.db import advisory_xact_lock, fetchone, for_update, get_conn, txn

# Columns updatable through update_contact()
CONTACT_FIELDS = ("name", "phone_number", "identifier", "avatar_url")


class InboxSession(Protocol):
    """Transactional view over the inbox store."""

    def message_exists(self, inbox_id: str, source_id: str) -> bool: ...

    def find_message(
        self, inbox_id: str, source_id: str, *, for_update: bool = False
    ) -> Message | None: ...

    def insert_message(self, message: Message) -> Message: ...

    def update_message_content(
        self, message_id: str, content: str | None, content_attributes: dict[str, Any]
    ) -> None: ...

    def lock_source(self, inbox_id: str, source_id: str) -> None: ...

    def find_link(
        self, inbox_id: str, source_id: str, *, for_update: bool = False
    ) -> ContactLink | None: ...

    def find_link_for_contact(
        self, inbox_id: str, contact_id: str, *, for_update: bool = False
    ) -> ContactLink | None: ...

    def insert_link(self, inbox_id: str, contact_id: str, source_id: str) -> ContactLink: ...

    def update_link_source_id(self, link_id: str, source_id: str) -> None: ...

    def get_contact(self, contact_id: str, *, for_update: bool = False) -> Contact | None: ...

    def find_contact_by_identifier(self, account_id: str, identifier: str) -> Contact | None: ...

    def find_contact_by_phone(self, account_id: str, phone_number: str) -> Contact | None: ...

    def insert_contact(
        self,
        account_id: str,
        *,
        name: str | None,
        phone_number: str | None,
        identifier: str | None,
    ) -> Contact: ...

    def update_contact(self, contact_id: str, **fields: Any) -> None: ...

    def find_open_conversation(
        self, inbox_id: str, contact_link_id: str
    ) -> Conversation | None: ...

    def insert_conversation(
        self, inbox_id: str, contact_id: str, contact_link_id: str
    ) -> Conversation: ...


class InboxRepository(Protocol):
    """Store entry point: each atomic() block is one transaction."""

    def atomic(self) -> ContextManager[InboxSession]: ...


_CONTACT_COLUMNS = "id, account_id, name, phone_number, identifier, avatar_url"
_MESSAGE_COLUMNS = (
    "id, inbox_id, conversation_id, source_id, content, content_attributes, "
    "sender_type, sender_id, message_type"
)


def _contact(row: tuple[Any, ...] | None) -> Contact | None:
    if row is None:
        return None
    return Contact(
        id=str(row[0]),
        account_id=str(row[1]),
        name=row[2],
        phone_number=row[3],
        identifier=row[4],
        avatar_url=row[5],
    )


def _link(row: tuple[Any, ...] | None) -> ContactLink | None:
    if row is None:
        return None
    return ContactLink(
        id=str(row[0]), inbox_id=str(row[1]), contact_id=str(row[2]), source_id=row[3]
    )


def _message(row: tuple[Any, ...] | None) -> Message | None:
    if row is None:
        return None
    attrs = row[5]
    if isinstance(attrs, str):
        attrs = json.loads(attrs)
    return Message(
        id=str(row[0]),
        inbox_id=str(row[1]),
        conversation_id=str(row[2]),
        source_id=row[3],
        content=row[4],
        content_attributes=dict(attrs or {}),
        sender_type=row[6],
        sender_id=str(row[7]) if row[7] is not None else None,
        message_type=row[8],
    )


class PgInboxSession:
    """InboxSession bound to one psycopg2 cursor (one transaction)."""

    def __init__(self, cur: PgCursor) -> None:
        self.cur = cur

    def _row(self, query: str, params: tuple[Any, ...], lock: bool) -> tuple[Any, ...] | None:
        if lock:
            return for_update(self.cur, query, params)
        return fetchone(self.cur, query, params)

    # ── messages ────────────────────────────────────────────────────────────

    def message_exists(self, inbox_id: str, source_id: str) -> bool:
        self.cur.execute(
            "SELECT 1 FROM messages WHERE inbox_id = %s AND source_id = %s LIMIT 1",
            (inbox_id, source_id),
        )
        return self.cur.fetchone() is not None

    def find_message(
        self, inbox_id: str, source_id: str, *, for_update: bool = False
    ) -> Message | None:
        query = f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages
            WHERE inbox_id = %s AND source_id = %s
            ORDER BY created_at, id
            LIMIT 1
        """
        return _message(self._row(query, (inbox_id, source_id), for_update))

    def insert_message(self, message: Message) -> Message:
        self.cur.execute(
            """
            INSERT INTO messages (
                inbox_id, conversation_id, source_id, content, content_attributes,
                sender_type, sender_id, message_type
            )
            VALUES (%s, %s, %s, %s, %s::jsonb, %s, %s, %s)
            RETURNING id
            """,
            (
                message.inbox_id,
                message.conversation_id,
                message.source_id,
                message.content,
                json.dumps(message.content_attributes),
                message.sender_type,
                message.sender_id,
                message.message_type,
            ),
        )
        message.id = str(self.cur.fetchone()[0])

        for attachment in message.attachments:
            self._insert_attachment(message.id, attachment)

        return message

    def _insert_attachment(self, message_id: str, attachment: Attachment) -> None:
        self.cur.execute(
            """
            INSERT INTO attachments (
                message_id, file_type, filename, content_type, data,
                fallback_title, meta
            )
            VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb)
            """,
            (
                message_id,
                attachment.file_type,
                attachment.filename,
                attachment.content_type,
                attachment.data,
                attachment.fallback_title,
                json.dumps(attachment.meta),
            ),
        )

    def update_message_content(
        self, message_id: str, content: str | None, content_attributes: dict[str, Any]
    ) -> None:
        self.cur.execute(
            """
            UPDATE messages
            SET content = %s, content_attributes = %s::jsonb, updated_at = now()
            WHERE id = %s
            """,
            (content, json.dumps(content_attributes), message_id),
        )

    # ── contact links ───────────────────────────────────────────────────────

    def lock_source(self, inbox_id: str, source_id: str) -> None:
        advisory_xact_lock(self.cur, f"contact_link:{inbox_id}:{source_id}")

    def find_link(
        self, inbox_id: str, source_id: str, *, for_update: bool = False
    ) -> ContactLink | None:
        query = """
            SELECT id, inbox_id, contact_id, source_id FROM contact_links
            WHERE inbox_id = %s AND source_id = %s
        """
        return _link(self._row(query, (inbox_id, source_id), for_update))

    def find_link_for_contact(
        self, inbox_id: str, contact_id: str, *, for_update: bool = False
    ) -> ContactLink | None:
        query = """
            SELECT id, inbox_id, contact_id, source_id FROM contact_links
            WHERE inbox_id = %s AND contact_id = %s
            ORDER BY created_at, id
            LIMIT 1
        """
        return _link(self._row(query, (inbox_id, contact_id), for_update))

    def insert_link(self, inbox_id: str, contact_id: str, source_id: str) -> ContactLink:
        self.cur.execute(
            """
            INSERT INTO contact_links (inbox_id, contact_id, source_id)
            VALUES (%s, %s, %s)
            RETURNING id
            """,
            (inbox_id, contact_id, source_id),
        )
        link_id = str(self.cur.fetchone()[0])
        return ContactLink(
            id=link_id, inbox_id=inbox_id, contact_id=contact_id, source_id=source_id
        )

    def update_link_source_id(self, link_id: str, source_id: str) -> None:
        self.cur.execute(
            "UPDATE contact_links SET source_id = %s, updated_at = now() WHERE id = %s",
            (source_id, link_id),
        )

    # ── contacts ────────────────────────────────────────────────────────────

    def get_contact(self, contact_id: str, *, for_update: bool = False) -> Contact | None:
        query = f"SELECT {_CONTACT_COLUMNS} FROM contacts WHERE id = %s"
        return _contact(self._row(query, (contact_id,), for_update))

    def find_contact_by_identifier(self, account_id: str, identifier: str) -> Contact | None:
        self.cur.execute(
            f"""
            SELECT {_CONTACT_COLUMNS} FROM contacts
            WHERE account_id = %s AND identifier = %s
            ORDER BY created_at, id
            LIMIT 1
            """,
            (account_id, identifier),
        )
        return _contact(self.cur.fetchone())

    def find_contact_by_phone(self, account_id: str, phone_number: str) -> Contact | None:
        self.cur.execute(
            f"""
            SELECT {_CONTACT_COLUMNS} FROM contacts
            WHERE account_id = %s AND phone_number = %s
            ORDER BY created_at, id
            LIMIT 1
            """,
            (account_id, phone_number),
        )
        return _contact(self.cur.fetchone())

    def insert_contact(
        self,
        account_id: str,
        *,
        name: str | None,
        phone_number: str | None,
        identifier: str | None,
    ) -> Contact:
        self.cur.execute(
            """
            INSERT INTO contacts (account_id, name, phone_number, identifier)
            VALUES (%s, %s, %s, %s)
            RETURNING id
            """,
            (account_id, name, phone_number, identifier),
        )
        contact_id = str(self.cur.fetchone()[0])
        return Contact(
            id=contact_id,
            account_id=account_id,
            name=name,
            phone_number=phone_number,
            identifier=identifier,
        )

    def update_contact(self, contact_id: str, **fields: Any) -> None:
        unknown = set(fields) - set(CONTACT_FIELDS)
        if unknown:
            raise ValueError(f"unknown contact fields: {sorted(unknown)}")
        if not fields:
            return

        # Column names come from CONTACT_FIELDS only.
        assignments = ", ".join(f"{name} = %s" for name in fields)
        self.cur.execute(
            f"UPDATE contacts SET {assignments}, updated_at = now() WHERE id = %s",
            (*fields.values(), contact_id),
        )

    # ── conversations ───────────────────────────────────────────────────────

    def find_open_conversation(
        self, inbox_id: str, contact_link_id: str
    ) -> Conversation | None:
        self.cur.execute(
            """
            SELECT id, inbox_id, contact_id, contact_link_id, status
            FROM conversations
            WHERE inbox_id = %s AND contact_link_id = %s AND status = 'open'
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (inbox_id, contact_link_id),
        )
        row = self.cur.fetchone()
        if row is None:
            return None
        return Conversation(
            id=str(row[0]),
            inbox_id=str(row[1]),
            contact_id=str(row[2]),
            contact_link_id=str(row[3]),
            status=row[4],
        )

    def insert_conversation(
        self, inbox_id: str, contact_id: str, contact_link_id: str
    ) -> Conversation:
        self.cur.execute(
            """
            INSERT INTO conversations (inbox_id, contact_id, contact_link_id, status)
            VALUES (%s, %s, %s, 'open')
            RETURNING id
            """,
            (inbox_id, contact_id, contact_link_id),
        )
        conv_id = str(self.cur.fetchone()[0])
        return Conversation(
            id=conv_id,
            inbox_id=inbox_id,
            contact_id=contact_id,
            contact_link_id=contact_link_id,
        )


class PgInboxRepository:
    """InboxRepository over PostgreSQL; one connection per atomic block."""

    def __init__(self, connect: Callable[[], PgConnection] = get_conn) -> None:
        self._connect = connect

    @contextmanager
    def atomic(self) -> Iterator[PgInboxSession]:
        conn = self._connect()
        try:
            with txn(conn) as cur:
                yield PgInboxSession(cur)
        finally:
            conn.close()
