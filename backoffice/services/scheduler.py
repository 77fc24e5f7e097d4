from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from backoffice.core.config import ClickUpConfigurationError, get_clickup_config, get_settings
from backoffice.core.logging import log_error, log_info
from backoffice.services import clickup_sync

CLICKUP_SYNC_JOB_ID = "clickup-crm-sync"


class SchedulerService:
    def __init__(self) -> None:
        settings = get_settings()
        self._scheduler = AsyncIOScheduler(timezone=settings.timezone)
        self._started = False

    async def start(self) -> None:
        if self._started:
            return
        self._scheduler.start()
        self._started = True
        self._ensure_clickup_job()
        log_info("Scheduler started")

    async def stop(self) -> None:
        if not self._started:
            return
        self._scheduler.shutdown(wait=False)
        self._started = False
        log_info("Scheduler stopped")

    def _ensure_clickup_job(self) -> None:
        interval = get_settings().clickup_sync_interval_minutes
        if interval <= 0:
            log_info("ClickUp scheduled sync disabled")
            return
        try:
            get_clickup_config()
        except ClickUpConfigurationError as exc:
            log_info("ClickUp scheduled sync not registered", reason=str(exc))
            return
        self._scheduler.add_job(
            self._run_clickup_sync,
            "interval",
            minutes=interval,
            id=CLICKUP_SYNC_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        log_info("ClickUp scheduled sync registered", interval_minutes=interval)

    async def _run_clickup_sync(self) -> None:
        try:
            await clickup_sync.sync_clickup_crm(
                source="scheduled",
                trigger_meta={"scheduler": "apscheduler"},
            )
        except Exception as exc:
            log_error("Scheduled ClickUp sync failed", error=str(exc))


scheduler_service = SchedulerService()
