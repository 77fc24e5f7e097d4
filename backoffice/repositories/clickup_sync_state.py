from __future__ import annotations

from datetime import datetime
from typing import Any

from backoffice.core.database import db
from backoffice.repositories._rows import ensure_naive_utc, make_aware, utcnow

_STATE_COLUMNS = (
    "last_successful_sync_at",
    "last_full_sync_at",
    "last_webhook_at",
    "last_error",
)


def _normalise_state(row: dict[str, Any]) -> dict[str, Any]:
    data = dict(row)
    for key in ("last_successful_sync_at", "last_full_sync_at", "last_webhook_at", "updated_at"):
        data[key] = make_aware(data.get(key))
    return data


async def get_state(integration: str = "clickup") -> dict[str, Any] | None:
    row = await db.fetch_one(
        "SELECT * FROM clickup_sync_state WHERE integration = %s",
        (integration,),
    )
    return _normalise_state(row) if row else None


async def upsert_state(integration: str = "clickup", **fields: Any) -> None:
    """Write the supplied state columns, leaving every other column untouched.

    Passing ``last_error=None`` clears the stored error; omitting it keeps it.
    """

    unknown = set(fields) - set(_STATE_COLUMNS)
    if unknown:
        raise ValueError(f"Unknown sync state fields: {', '.join(sorted(unknown))}")
    values = {
        key: ensure_naive_utc(value) if isinstance(value, datetime) else value
        for key, value in fields.items()
    }
    values["updated_at"] = utcnow()
    columns = ["integration", *values.keys()]
    placeholders = ", ".join(["%s"] * len(columns))
    await db.execute(
        f"INSERT INTO clickup_sync_state ({', '.join(columns)}) VALUES ({placeholders}) "
        f"{db.upsert_clause(['integration'], list(values.keys()))}",
        (integration, *values.values()),
    )
