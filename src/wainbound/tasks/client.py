"""Tasks client with idempotent enqueue.

Backends, selected by the TASKS_BACKEND env var:
- inline (default): records the task without sending it (dev/tests)
- http: POSTs the task to the worker
- cloud_tasks: creates a Google Cloud Tasks HTTP task
"""

import os
from datetime import datetime

from wainbound.tasks.contracts import TaskEnvelopeV1

TASKS_BACKEND = os.environ.get("TASKS_BACKEND", "inline")


class TasksClient:
    """Enqueue worker tasks, at most once per task_id per client."""

    def __init__(self, backend: str | None = None) -> None:
        self._seen_ids: set[str] = set()
        self._recorded: list[dict] = []
        self._backend = backend or TASKS_BACKEND

    def enqueue(
        self,
        envelope: TaskEnvelopeV1,
        url_path: str,
        correlation_id: str | None = None,
        schedule_time: datetime | None = None,
    ) -> bool:
        """Send envelope to the worker endpoint url_path.

        Returns:
            True if the task was handed to the backend, False if the task_id
            was already enqueued by this client or the backend refused it.

        Raises:
            ValueError: If TASKS_BACKEND is unknown.
        """
        task_id = envelope.task_id
        if task_id in self._seen_ids:
            return False
        self._seen_ids.add(task_id)

        body = envelope.to_dict()

        if self._backend == "inline":
            self._recorded.append({
                "task_id": task_id,
                "url_path": url_path,
                "payload": body,
                "correlation_id": correlation_id,
                "schedule_time": schedule_time,
            })
            return True

        elif self._backend == "http":
            from wainbound.tasks.http_backend import enqueue_http
            return enqueue_http(task_id, url_path, body, correlation_id, schedule_time)

        elif self._backend == "cloud_tasks":
            from wainbound.tasks.cloud_tasks_backend import enqueue_cloud_task
            return enqueue_cloud_task(task_id, url_path, body, correlation_id, schedule_time)

        else:
            raise ValueError(f"Unknown TASKS_BACKEND: {self._backend}")

    def was_enqueued(self, task_id: str) -> bool:
        return task_id in self._seen_ids

    def get_recorded_tasks(self) -> list[dict]:
        """Tasks recorded by the inline backend."""
        return list(self._recorded)

    def clear(self) -> None:
        self._seen_ids.clear()
        self._recorded.clear()
