"""Task contracts v1 - payloads of worker tasks scheduled by ingestion.

Task payloads carry ids only (contact, message, conversation, inbox) plus the
avatar URL, never names or phone numbers.
"""

from dataclasses import dataclass, field
from typing import Any, Literal

AVATAR_TASK = "contacts.update_avatar"
READ_RECEIPT_TASK = "whatsapp.read_message"


@dataclass(frozen=True)
class TaskEnvelopeV1:
    """Versioned task envelope.

    Attributes:
        version: Contract version (always "v1").
        task_name: Task type, one of the *_TASK constants.
        payload: Task data (ids only).
        task_id: Deterministic id used for enqueue dedupe.
    """

    version: Literal["v1"] = field(default="v1", init=False)
    task_name: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    task_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "task_name": self.task_name,
            "payload": self.payload,
            "task_id": self.task_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TaskEnvelopeV1":
        """Parse a serialized envelope.

        Raises:
            ValueError: On an unknown version or a missing task_name.
        """
        if data.get("version") != "v1":
            raise ValueError(f"Unsupported version: {data.get('version')}")
        if not data.get("task_name"):
            raise ValueError("task_name is required")
        return cls(
            task_name=data["task_name"],
            payload=dict(data.get("payload") or {}),
            task_id=data.get("task_id", ""),
        )
