"""ClickUp CRM mirror endpoints.

Operators trigger and inspect sync passes here; ClickUp itself calls the
webhook route and an external scheduler may call the cron route.
"""

from __future__ import annotations

import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from backoffice.api.dependencies.auth import require_cron, require_operator
from backoffice.api.dependencies.database import require_database
from backoffice.core.config import CLICKUP_ENTITY_TYPES, ClickUpConfigurationError, get_settings
from backoffice.core.logging import log_error, log_info, log_warning
from backoffice.repositories import clickup_records as records_repo
from backoffice.schemas.clickup import CrmRecordsResponse, SyncOverviewResponse, SyncResult
from backoffice.services import clickup as clickup_client
from backoffice.services import clickup_sync, clickup_webhooks
from backoffice.services.clickup import ClickUpAPIError

router = APIRouter(prefix="/api/integrations/clickup", tags=["ClickUp"])

RECORDS_DEFAULT_LIMIT = 100
RECORDS_MAX_LIMIT = 500


@router.get("/sync", response_model=SyncOverviewResponse)
async def sync_overview(
    _: None = Depends(require_database),
    __: str = Depends(require_operator),
):
    overview = await clickup_sync.get_sync_overview()
    return SyncOverviewResponse.model_validate(overview)


@router.post("/sync", response_model=SyncResult)
async def trigger_manual_sync(
    _: None = Depends(require_database),
    actor: str = Depends(require_operator),
):
    try:
        result = await clickup_sync.sync_clickup_crm(
            source="manual",
            trigger_meta={"initiatedBy": actor},
        )
    except Exception as exc:
        log_error("Manual ClickUp sync failed", actor=actor, error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc) or "ClickUp sync failed",
        ) from exc
    return SyncResult.model_validate(result)


@router.get("/cron", response_model=SyncResult)
async def trigger_cron_sync(
    _: None = Depends(require_database),
    __: None = Depends(require_cron),
):
    try:
        result = await clickup_sync.sync_clickup_crm(
            source="scheduled",
            trigger_meta={"scheduler": "cron"},
        )
    except Exception as exc:
        log_error("Cron ClickUp sync failed", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc) or "Cron sync failed",
        ) from exc
    return SyncResult.model_validate(result)


@router.get("/records", response_model=CrmRecordsResponse)
async def list_crm_records(
    entity: str = Query(default=""),
    search: str | None = Query(default=None),
    limit: int = Query(default=RECORDS_DEFAULT_LIMIT),
    _: None = Depends(require_database),
    __: str = Depends(require_operator),
):
    entity_type = entity.strip().lower()
    if entity_type not in CLICKUP_ENTITY_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid entity.")
    limit = min(max(limit, 1), RECORDS_MAX_LIMIT)
    records = await records_repo.list_records(
        entity_type,
        search=(search or "").strip() or None,
        limit=limit,
    )
    return CrmRecordsResponse.model_validate({"items": records})


@router.get("/discover")
async def discover_workspaces(__: str = Depends(require_operator)):
    try:
        return await clickup_client.get_teams()
    except (ClickUpConfigurationError, ClickUpAPIError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc) or "Kon ClickUp teams niet laden",
        ) from exc


@router.get("/webhook")
async def webhook_status() -> dict[str, Any]:
    return {"ok": True, "route": "clickup-webhook"}


@router.post("/webhook")
async def clickup_webhook(
    request: Request,
    _: None = Depends(require_database),
):
    raw_body = await request.body()
    headers = dict(request.headers)

    secret = get_settings().clickup_webhook_secret
    if not clickup_webhooks.verify_clickup_signature(raw_body, headers, secret):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature")

    try:
        payload = json.loads(raw_body) if raw_body.strip() else {}
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON") from exc

    try:
        event_id = await clickup_webhooks.log_webhook_event(payload, headers)
    except Exception as exc:
        log_error("Failed to record ClickUp webhook", error=str(exc))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc) or "Webhook log failed",
        ) from exc

    event_type = clickup_webhooks.extract_event_type(payload)
    log_info("ClickUp webhook received", event_id=event_id, event_type=event_type)

    try:
        result = await clickup_sync.sync_clickup_crm(
            source="webhook",
            trigger_meta={"event": event_type},
        )
    except Exception as exc:
        # The scheduled pass picks up whatever this one missed.
        log_warning("ClickUp webhook sync failed", event_id=event_id, error=str(exc))
        return {
            "ok": True,
            "synced": False,
            "warning": str(exc) or "Webhook ontvangen, sync mislukt",
        }

    await clickup_webhooks.mark_webhook_processed(event_id)
    return {"ok": True, "synced": True, "result": result}
