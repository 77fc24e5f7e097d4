from __future__ import annotations

from typing import Any

from backoffice.core.database import db
from backoffice.repositories._rows import deserialise, make_aware, serialise, utcnow


def _normalise_run(row: dict[str, Any]) -> dict[str, Any]:
    data = dict(row)
    if data.get("id") is not None:
        data["id"] = int(data["id"])
    data["counts"] = deserialise(data.get("counts"), default={})
    data["trigger_meta"] = deserialise(data.get("trigger_meta"), default={})
    data["started_at"] = make_aware(data.get("started_at"))
    data["ended_at"] = make_aware(data.get("ended_at"))
    return data


async def create_run(
    *,
    source: str,
    counts: dict[str, int],
    trigger_meta: dict[str, Any] | None = None,
) -> int:
    run_id = await db.execute_returning_lastrowid(
        """
        INSERT INTO clickup_sync_runs (source, status, counts, trigger_meta, started_at)
        VALUES (%s, %s, %s, %s, %s)
        """,
        (source, "started", serialise(counts), serialise(trigger_meta or {}), utcnow()),
    )
    if not run_id:
        raise RuntimeError("Failed to create ClickUp sync run")
    return run_id


async def finish_run(
    run_id: int,
    *,
    status: str,
    counts: dict[str, int],
    error_message: str | None = None,
) -> None:
    await db.execute(
        """
        UPDATE clickup_sync_runs
        SET status = %s, counts = %s, ended_at = %s, error_message = %s
        WHERE id = %s
        """,
        (status, serialise(counts), utcnow(), error_message, run_id),
    )


async def list_recent_runs(limit: int = 10) -> list[dict[str, Any]]:
    rows = await db.fetch_all(
        "SELECT * FROM clickup_sync_runs ORDER BY started_at DESC, id DESC LIMIT %s",
        (limit,),
    )
    return [_normalise_run(row) for row in rows]
