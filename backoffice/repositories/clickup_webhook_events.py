from __future__ import annotations

from typing import Any

from backoffice.core.database import db
from backoffice.repositories._rows import serialise, utcnow


async def create_event(
    *,
    event_type: str,
    payload: Any,
    headers: dict[str, str],
) -> int:
    event_id = await db.execute_returning_lastrowid(
        """
        INSERT INTO clickup_webhook_events (event_type, payload, headers, received_at, processed)
        VALUES (%s, %s, %s, %s, 0)
        """,
        (event_type, serialise(payload), serialise(headers), utcnow()),
    )
    if not event_id:
        raise RuntimeError("Failed to record ClickUp webhook event")
    return event_id


async def mark_processed(event_id: int) -> None:
    await db.execute(
        "UPDATE clickup_webhook_events SET processed = 1, processed_at = %s WHERE id = %s",
        (utcnow(), event_id),
    )
