"""Side effects of ingestion handed to background workers.

Avatar downloads and read receipts run outside the webhook request: both are
scheduled as worker tasks through the TasksClient.
"""

from __future__ import annotations

import hashlib
from typing import Protocol

from wainbound.domain.entities import Contact, Conversation, Message
from wainbound.observability.correlation import get_correlation_id
from wainbound.observability.logging import get_logger
from wainbound.tasks.client import TasksClient
from wainbound.tasks.contracts import AVATAR_TASK, READ_RECEIPT_TASK, TaskEnvelopeV1

logger = get_logger(__name__)

AVATAR_TASK_PATH = "/tasks/contacts/avatar"
READ_RECEIPT_TASK_PATH = "/tasks/whatsapp/read-message"


class AvatarUpdater(Protocol):
    def schedule(self, contact: Contact, image_url: str) -> None: ...


class OutboundNotifier(Protocol):
    def on_message_received(self, message: Message, conversation: Conversation) -> None: ...


class TaskAvatarUpdater:
    """Schedule the avatar download task for a contact."""

    def __init__(self, tasks_client: TasksClient) -> None:
        self.tasks_client = tasks_client

    def schedule(self, contact: Contact, image_url: str) -> None:
        url_hash = hashlib.sha256(image_url.encode()).hexdigest()[:16]
        envelope = TaskEnvelopeV1(
            task_name=AVATAR_TASK,
            payload={"contact_id": contact.id, "avatar_url": image_url},
            task_id=f"avatar:{contact.id}:{url_hash}",
        )
        enqueued = self.tasks_client.enqueue(
            envelope, AVATAR_TASK_PATH, correlation_id=get_correlation_id() or None
        )
        logger.debug(
            "avatar task scheduled",
            extra={"extra_fields": {"contact_id": contact.id, "enqueued": enqueued}},
        )


class TaskReceiptNotifier:
    """Schedule a read receipt for every created incoming message."""

    def __init__(self, tasks_client: TasksClient) -> None:
        self.tasks_client = tasks_client

    def on_message_received(self, message: Message, conversation: Conversation) -> None:
        envelope = TaskEnvelopeV1(
            task_name=READ_RECEIPT_TASK,
            payload={
                "inbox_id": message.inbox_id,
                "conversation_id": conversation.id,
                "message_id": message.id,
                "source_id": message.source_id,
            },
            task_id=f"read:{message.id}",
        )
        self.tasks_client.enqueue(
            envelope, READ_RECEIPT_TASK_PATH, correlation_id=get_correlation_id() or None
        )
