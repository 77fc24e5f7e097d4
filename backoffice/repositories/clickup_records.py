from __future__ import annotations

from typing import Any, Iterable

from backoffice.core.database import db
from backoffice.repositories._rows import (
    deserialise,
    ensure_naive_utc,
    make_aware,
    serialise,
)

_UPSERT_COLUMNS: tuple[str, ...] = (
    "entity_type",
    "clickup_task_id",
    "clickup_list_id",
    "clickup_space_id",
    "clickup_folder_id",
    "name",
    "status",
    "url",
    "archived",
    "active",
    "assignees",
    "tags",
    "custom_fields",
    "raw",
    "clickup_date_created",
    "clickup_date_updated",
    "due_date",
    "synced_at",
    "updated_at",
)
_JSON_COLUMNS = ("assignees", "tags", "custom_fields", "raw")
_TIMESTAMP_COLUMNS = (
    "clickup_date_created",
    "clickup_date_updated",
    "due_date",
    "synced_at",
    "updated_at",
)


def _to_db_timestamp(value: Any):
    return ensure_naive_utc(make_aware(value))


def _record_params(record: dict[str, Any]) -> tuple:
    params: list[Any] = []
    for column in _UPSERT_COLUMNS:
        value = record.get(column)
        if column in _JSON_COLUMNS:
            value = serialise(value)
        elif column in _TIMESTAMP_COLUMNS:
            value = _to_db_timestamp(value)
        elif column in ("archived", "active"):
            value = 1 if value else 0
        params.append(value)
    return tuple(params)


def _normalise_record(row: dict[str, Any]) -> dict[str, Any]:
    data = dict(row)
    if data.get("id") is not None:
        data["id"] = int(data["id"])
    for key in ("assignees", "tags", "custom_fields"):
        data[key] = deserialise(data.get(key), default=[])
    data["raw"] = deserialise(data.get("raw"))
    for key in ("archived", "active"):
        if key in data:
            data[key] = bool(data[key])
    for key in _TIMESTAMP_COLUMNS:
        if key in data:
            data[key] = make_aware(data[key])
    return data


async def upsert_records(records: Iterable[dict[str, Any]]) -> int:
    """Insert or overwrite mirrored tasks keyed by ``clickup_task_id``."""

    batch = [_record_params(record) for record in records]
    if not batch:
        return 0
    placeholders = ", ".join(["%s"] * len(_UPSERT_COLUMNS))
    update_columns = [column for column in _UPSERT_COLUMNS if column != "clickup_task_id"]
    await db.execute_many(
        f"INSERT INTO clickup_crm_records ({', '.join(_UPSERT_COLUMNS)}) "
        f"VALUES ({placeholders}) "
        f"{db.upsert_clause(['clickup_task_id'], update_columns)}",
        batch,
    )
    return len(batch)


async def list_records(
    entity_type: str,
    *,
    search: str | None = None,
    limit: int = 100,
) -> list[dict[str, Any]]:
    clauses = ["entity_type = %s"]
    params: list[Any] = [entity_type]
    if search:
        pattern = f"%{search.lower()}%"
        clauses.append("(LOWER(name) LIKE %s OR LOWER(status) LIKE %s)")
        params.extend([pattern, pattern])
    params.append(int(limit))
    rows = await db.fetch_all(
        f"""
        SELECT *
        FROM clickup_crm_records
        WHERE {' AND '.join(clauses)}
        ORDER BY clickup_date_updated IS NULL, clickup_date_updated DESC, synced_at DESC
        LIMIT %s
        """,
        tuple(params),
    )
    return [_normalise_record(row) for row in rows]


async def count_records_by_entity() -> dict[str, int]:
    rows = await db.fetch_all(
        "SELECT entity_type, COUNT(*) AS count FROM clickup_crm_records GROUP BY entity_type"
    )
    return {row["entity_type"]: int(row["count"]) for row in rows}
