from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class SyncCounts(BaseModel):
    lists: int = 0
    tasks_fetched: int = Field(default=0, alias="tasksFetched")
    tasks_upserted: int = Field(default=0, alias="tasksUpserted")
    errors: int = 0

    model_config = {"populate_by_name": True}


class SyncResult(BaseModel):
    ok: bool = True
    run_id: int = Field(alias="runId")
    counts: SyncCounts

    model_config = {"populate_by_name": True}


class SyncStateResponse(BaseModel):
    integration: str
    last_successful_sync_at: datetime | None = Field(default=None, alias="lastSuccessfulSyncAt")
    last_full_sync_at: datetime | None = Field(default=None, alias="lastFullSyncAt")
    last_webhook_at: datetime | None = Field(default=None, alias="lastWebhookAt")
    last_error: str | None = Field(default=None, alias="lastError")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    model_config = {"populate_by_name": True}


class SyncRunResponse(BaseModel):
    id: int
    source: str
    status: str
    counts: SyncCounts
    trigger_meta: dict[str, Any] = Field(default_factory=dict, alias="triggerMeta")
    started_at: datetime | None = Field(default=None, alias="startedAt")
    ended_at: datetime | None = Field(default=None, alias="endedAt")
    error_message: str | None = Field(default=None, alias="errorMessage")

    model_config = {"populate_by_name": True}


class SyncOverviewResponse(BaseModel):
    state: SyncStateResponse | None = None
    health: Literal["never_synced", "ok", "error"]
    recent_runs: list[SyncRunResponse] = Field(alias="recentRuns")
    record_counts: dict[str, int] = Field(alias="recordCounts")

    model_config = {"populate_by_name": True}


class CrmRecordResponse(BaseModel):
    id: int
    entity_type: str = Field(alias="entityType")
    clickup_task_id: str = Field(alias="clickupTaskId")
    clickup_list_id: str = Field(alias="clickupListId")
    clickup_space_id: str | None = Field(default=None, alias="clickupSpaceId")
    clickup_folder_id: str | None = Field(default=None, alias="clickupFolderId")
    name: str
    status: str | None = None
    url: str | None = None
    archived: bool = False
    active: bool = True
    assignees: list[Any] = Field(default_factory=list)
    tags: list[Any] = Field(default_factory=list)
    custom_fields: list[Any] = Field(default_factory=list, alias="customFields")
    clickup_date_created: datetime | None = Field(default=None, alias="clickupDateCreated")
    clickup_date_updated: datetime | None = Field(default=None, alias="clickupDateUpdated")
    due_date: datetime | None = Field(default=None, alias="dueDate")
    synced_at: datetime | None = Field(default=None, alias="syncedAt")

    model_config = {"populate_by_name": True}


class CrmRecordsResponse(BaseModel):
    items: list[CrmRecordResponse]
