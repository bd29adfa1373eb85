"""WhatsApp gateway webhooks - Baileys and Z-API.

Each request carries one webhook body for one inbox (X-Inbox-Id). The body
is handed to the IngestService, which applies each event at most once; the
response lists one outcome per event. Retries of the same body are safe.
"""

import hmac
import os
from typing import Any

from fastapi import APIRouter, Header, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from wainbound.domain.entities import Inbox
from wainbound.domain.ingest import IngestService
from wainbound.domain.notifications import TaskAvatarUpdater, TaskReceiptNotifier
from wainbound.infra.inbox_settings import get_inbox
from wainbound.infra.locks import get_lock_store
from wainbound.infra.media import HttpMediaFetcher
from wainbound.infra.repositories.inbox_repository import PgInboxRepository
from wainbound.observability.correlation import get_correlation_id
from wainbound.observability.logging import get_logger
from wainbound.observability.redaction import safe_log_context
from wainbound.tasks.client import TasksClient

router = APIRouter(prefix="/webhooks/whatsapp", tags=["webhooks"])

logger = get_logger(__name__)

_tasks_client = TasksClient()
_ingest_service: IngestService | None = None


class WebhookAck(BaseModel):
    status: str = "ok"
    outcomes: list[str] = []


def _get_ingest_service() -> IngestService:
    """Process-wide IngestService (allows test injection)."""
    global _ingest_service
    if _ingest_service is None:
        _ingest_service = IngestService(
            PgInboxRepository(),
            get_lock_store(),
            HttpMediaFetcher(),
            avatar_updater=TaskAvatarUpdater(_tasks_client),
            notifier=TaskReceiptNotifier(_tasks_client),
        )
    return _ingest_service


def _get_inbox(inbox_id: str) -> Inbox | None:
    """Inbox lookup (allows test injection)."""
    return get_inbox(inbox_id)


def _secret_ok(x_webhook_secret: str | None) -> bool:
    """Check the shared secret header. Fail-closed unless APP_ENV=local."""
    correlation_id = get_correlation_id()
    expected_secret = os.environ.get("WHATSAPP_WEBHOOK_SECRET", "")
    if not expected_secret:
        if os.environ.get("APP_ENV", "") == "local":
            logger.warning(
                "WHATSAPP_WEBHOOK_SECRET not set - skipping validation (local dev)",
                extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
            )
            return True
        logger.error(
            "WHATSAPP_WEBHOOK_SECRET not configured - rejecting webhook (fail-closed)",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return False
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected_secret):
        logger.warning(
            "whatsapp webhook secret mismatch",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return False
    return True


async def _handle(
    provider: str, request: Request, inbox_id: str, x_webhook_secret: str | None
) -> Response:
    if not _secret_ok(x_webhook_secret):
        return Response(status_code=401, content="unauthorized")

    try:
        payload: Any = await request.json()
    except Exception:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(provider=provider, inbox_id=inbox_id)},
        )
        return Response(status_code=400, content="invalid json")
    if not isinstance(payload, dict):
        return Response(status_code=400, content="invalid payload shape")

    inbox = _get_inbox(inbox_id)
    if inbox is None or inbox.provider != provider:
        logger.warning(
            "webhook for unknown inbox",
            extra={"extra_fields": safe_log_context(provider=provider, inbox_id=inbox_id)},
        )
        return Response(status_code=404, content="inbox not found")

    # Lock waits and media downloads block; keep them off the event loop.
    outcomes = await run_in_threadpool(_get_ingest_service().process_batch, payload, inbox)

    logger.info(
        "whatsapp webhook processed",
        extra={
            "extra_fields": {
                "provider": provider,
                "inbox_id": inbox_id,
                "outcomes": [o.value for o in outcomes],
            }
        },
    )
    ack = WebhookAck(outcomes=[o.value for o in outcomes])
    return JSONResponse(content=ack.model_dump())


@router.post("/baileys")
async def baileys_webhook(
    request: Request,
    x_inbox_id: str = Header(..., alias="X-Inbox-Id"),
    x_webhook_secret: str | None = Header(None, alias="X-Webhook-Secret"),
) -> Response:
    """Receive a Baileys "messages.upsert" webhook.

    Returns:
        200 with a WebhookAck (also for skipped and duplicate events).
        400 if the body is not a JSON object.
        401 if secret validation fails.
        404 if the inbox is unknown or not a Baileys inbox.
    """
    return await _handle("baileys", request, x_inbox_id, x_webhook_secret)


@router.post("/zapi")
async def zapi_webhook(
    request: Request,
    x_inbox_id: str = Header(..., alias="X-Inbox-Id"),
    x_webhook_secret: str | None = Header(None, alias="X-Webhook-Secret"),
) -> Response:
    """Receive a Z-API "ReceivedCallback" webhook. Same responses as /baileys."""
    return await _handle("zapi", request, x_inbox_id, x_webhook_secret)
