"""Per-inbox WhatsApp channel configuration.

Loads the inbox row (provider, channel number, system sender) and merges its
provider_config JSONB with environment fallbacks.
"""

from __future__ import annotations

import os
from typing import Any

import psycopg2

from wainbound.domain.entities import Inbox
from wainbound.observability.logging import get_logger
from wainbound.observability.redaction import safe_log_context

from .db import fetchone, txn

logger = get_logger(__name__)

VALID_PROVIDERS = ("baileys", "zapi")


def get_inbox(inbox_id: str) -> Inbox | None:
    """Load an inbox by id.

    Returns:
        Inbox with merged provider_config, or None if the inbox does not
        exist, the id is not a valid UUID, or its provider is not one this
        service ingests.
    """
    try:
        with txn() as cur:
            row = fetchone(
                cur,
                """
                SELECT id, account_id, provider, phone_number, system_user_id, provider_config
                FROM inboxes
                WHERE id = %s
                """,
                (inbox_id,),
            )
    except psycopg2.DataError:
        logger.warning(
            "malformed inbox id",
            extra={"extra_fields": safe_log_context(inbox_id=inbox_id)},
        )
        return None
    if row is None:
        return None
    return build_inbox(row)


def build_inbox(row: tuple[Any, ...]) -> Inbox | None:
    """Build an Inbox from a database row, or None for foreign providers."""
    provider = row[2]
    if provider not in VALID_PROVIDERS:
        return None
    db_config = row[5] if isinstance(row[5], dict) else {}
    return Inbox(
        id=str(row[0]),
        account_id=str(row[1]),
        provider=provider,
        phone_number=row[3],
        system_user_id=str(row[4]) if row[4] is not None else None,
        provider_config=_merge_with_env(provider, db_config),
    )


def _merge_with_env(provider: str, db_config: dict[str, Any]) -> dict[str, Any]:
    """Fill missing Baileys media settings from the environment."""
    config = dict(db_config)
    if provider == "baileys":
        if not config.get("media_url_template"):
            template = os.environ.get("BAILEYS_MEDIA_URL_TEMPLATE")
            if template:
                config["media_url_template"] = template
        if not config.get("api_headers"):
            api_key = os.environ.get("BAILEYS_API_KEY")
            if api_key:
                config["api_headers"] = {"x-api-key": api_key}
    return config
