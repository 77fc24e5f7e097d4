from __future__ import annotations

from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping

from backoffice.core.config import CLICKUP_ENTITY_TYPES, get_clickup_config
from backoffice.core.logging import log_error, log_info
from backoffice.repositories import clickup_records as records_repo
from backoffice.repositories import clickup_sync_runs as runs_repo
from backoffice.repositories import clickup_sync_state as state_repo
from backoffice.repositories._rows import utcnow
from backoffice.services import clickup as clickup_client

SYNC_SOURCES = ("manual", "scheduled", "webhook")
UNNAMED_TASK = "(zonder naam)"

_MILLISECOND_THRESHOLD = 1_000_000_000_000


def _format_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def clickup_timestamp_to_iso(value: Any) -> str | None:
    """Convert a ClickUp timestamp into a UTC ISO-8601 string.

    ClickUp mostly sends epoch milliseconds as strings; epoch seconds,
    ISO-8601 and RFC 2822 dates also show up. Values below 1e12 are read as
    seconds, and dates without an offset are read as UTC. Anything
    unparseable yields ``None``.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = None
    if number is not None:
        if number != number or number in (float("inf"), float("-inf")):
            return None
        seconds = number if abs(number) < _MILLISECOND_THRESHOLD else number / 1000
        try:
            return _format_iso(datetime.fromtimestamp(seconds, tz=timezone.utc))
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        try:
            parsed = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            return None
    return _format_iso(parsed)


def _nested_id(task: Mapping[str, Any], key: str) -> str | None:
    container = task.get(key)
    if isinstance(container, Mapping) and container.get("id"):
        return str(container["id"])
    return None


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def normalise_task(
    task: Mapping[str, Any],
    entity_type: str,
    list_id: str,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Map a raw ClickUp task onto a ``clickup_crm_records`` row."""

    timestamp = _format_iso(now or datetime.now(timezone.utc))
    status = task.get("status")
    if isinstance(status, Mapping):
        status = status.get("status") or None
    elif not isinstance(status, str):
        status = None

    return {
        "entity_type": entity_type,
        "clickup_task_id": str(task.get("id")),
        "clickup_list_id": _nested_id(task, "list") or str(list_id),
        "clickup_space_id": _nested_id(task, "space"),
        "clickup_folder_id": _nested_id(task, "folder"),
        "name": task.get("name") or UNNAMED_TASK,
        "status": status,
        "url": task.get("url") or None,
        "archived": bool(task.get("archived")),
        "assignees": _as_list(task.get("assignees")),
        "tags": _as_list(task.get("tags")),
        "custom_fields": _as_list(task.get("custom_fields")),
        "raw": dict(task),
        "clickup_date_created": clickup_timestamp_to_iso(task.get("date_created")),
        "clickup_date_updated": clickup_timestamp_to_iso(task.get("date_updated")),
        "due_date": clickup_timestamp_to_iso(task.get("due_date")),
        "synced_at": timestamp,
        "updated_at": timestamp,
        "active": True,
    }


async def _fetch_list(list_id: str, config) -> list[dict[str, Any]]:
    tasks = await clickup_client.get_all_list_tasks(list_id, config=config)
    if not config.include_archived:
        return tasks
    seen = {str(task.get("id")) for task in tasks}
    archived = await clickup_client.get_all_list_tasks(list_id, archived=True, config=config)
    tasks.extend(task for task in archived if str(task.get("id")) not in seen)
    return tasks


async def _finish_run(
    run_id: int,
    *,
    status: str,
    counts: dict[str, int],
    error_message: str | None = None,
) -> None:
    await runs_repo.finish_run(run_id, status=status, counts=counts, error_message=error_message)
    if status == "success":
        await state_repo.upsert_state(last_successful_sync_at=utcnow(), last_error=None)
    else:
        await state_repo.upsert_state(last_error=error_message or "Unknown error")


async def sync_clickup_crm(
    *,
    source: str,
    trigger_meta: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Run one full reconciliation pass over every configured ClickUp list.

    Every pass is recorded in ``clickup_sync_runs`` and always ends in
    ``success`` or ``error``. Upserts are keyed by task id, so repeated or
    overlapping passes converge on the same rows.
    """

    if source not in SYNC_SOURCES:
        raise ValueError(f"Unknown sync source: {source}")
    config = get_clickup_config()
    counts = {"lists": 0, "tasksFetched": 0, "tasksUpserted": 0, "errors": 0}
    run_id = await runs_repo.create_run(source=source, counts=counts, trigger_meta=trigger_meta)
    log_info("ClickUp sync started", run_id=run_id, source=source, lists=len(config.lists))

    try:
        for list_config in config.lists:
            tasks = await _fetch_list(list_config.list_id, config)
            counts["lists"] += 1
            counts["tasksFetched"] += len(tasks)
            if not tasks:
                continue
            now = datetime.now(timezone.utc)
            rows = [
                normalise_task(task, list_config.entity_type, list_config.list_id, now=now)
                for task in tasks
            ]
            await records_repo.upsert_records(rows)
            counts["tasksUpserted"] += len(rows)

        await state_repo.upsert_state(last_full_sync_at=utcnow())
        await _finish_run(run_id, status="success", counts=counts)
    except Exception as exc:
        counts["errors"] += 1
        message = str(exc) or "ClickUp sync failed"
        log_error("ClickUp sync failed", run_id=run_id, source=source, error=message)
        try:
            await _finish_run(run_id, status="error", counts=counts, error_message=message)
        except Exception as finish_exc:
            log_error(
                "Failed to record ClickUp sync failure",
                run_id=run_id,
                error=str(finish_exc),
            )
        raise

    log_info("ClickUp sync finished", run_id=run_id, source=source, **counts)
    return {"ok": True, "runId": run_id, "counts": counts}


def _health(state: dict[str, Any] | None) -> str:
    if not state:
        return "never_synced"
    if state.get("last_error"):
        return "error"
    if not state.get("last_successful_sync_at"):
        return "never_synced"
    return "ok"


async def get_sync_overview() -> dict[str, Any]:
    state = await state_repo.get_state("clickup")
    runs = await runs_repo.list_recent_runs(10)
    grouped = await records_repo.count_records_by_entity()
    record_counts = {entity_type: grouped.get(entity_type, 0) for entity_type in CLICKUP_ENTITY_TYPES}
    return {
        "state": state,
        "health": _health(state),
        "recent_runs": runs,
        "record_counts": record_counts,
    }
