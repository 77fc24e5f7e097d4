from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

CLICKUP_DEFAULT_BASE_URL = "https://api.clickup.com/api/v2"

CLICKUP_ENTITY_TYPES: tuple[str, ...] = (
    "list",
    "lead",
    "company",
    "contact",
    "assignment",
    "invoice_mirror",
)


class ClickUpConfigurationError(RuntimeError):
    """Raised when ClickUp integration settings are incomplete."""


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    Every value is optional at import time so the API can boot without a
    database or a ClickUp account; the integration refuses to run later when
    its own values are missing.
    """

    app_name: str = Field(default="Backoffice", validation_alias="APP_NAME")
    environment: str = Field(default="development", validation_alias="ENVIRONMENT")
    database_host: str | None = Field(default=None, validation_alias="DB_HOST")
    database_user: str | None = Field(default=None, validation_alias="DB_USER")
    database_password: str | None = Field(default=None, validation_alias="DB_PASSWORD")
    database_name: str | None = Field(default=None, validation_alias="DB_NAME")
    sqlite_path: Path | None = Field(default=None, validation_alias="SQLITE_PATH")
    migration_lock_timeout: int = Field(default=60, validation_alias="MIGRATION_LOCK_TIMEOUT")
    timezone: str = Field(
        default="Europe/Amsterdam",
        validation_alias=AliasChoices("APP_TIMEZONE", "CRON_TIMEZONE"),
    )
    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    log_file_path: Path | None = Field(default=None, validation_alias="LOG_FILE_PATH")
    document_number_max_attempts: int = Field(
        default=8, ge=1, validation_alias="DOCUMENT_NUMBER_MAX_ATTEMPTS"
    )
    operator_api_token: str | None = Field(default=None, validation_alias="OPERATOR_API_TOKEN")
    cron_secret: str | None = Field(default=None, validation_alias="CRON_SECRET")

    clickup_api_key: str | None = Field(default=None, validation_alias="CLICKUP_API_KEY")
    clickup_api_base_url: str = Field(
        default=CLICKUP_DEFAULT_BASE_URL, validation_alias="CLICKUP_API_BASE_URL"
    )
    clickup_webhook_secret: str | None = Field(
        default=None, validation_alias="CLICKUP_WEBHOOK_SECRET"
    )
    clickup_general_list_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("CLICKUP_GENERAL_LIST_ID", "CLICKUP_DALEY_LIST_ID"),
    )
    clickup_leads_list_id: str | None = Field(default=None, validation_alias="CLICKUP_LEADS_LIST_ID")
    clickup_companies_list_id: str | None = Field(
        default=None, validation_alias="CLICKUP_COMPANIES_LIST_ID"
    )
    clickup_contacts_list_id: str | None = Field(
        default=None, validation_alias="CLICKUP_CONTACTS_LIST_ID"
    )
    clickup_assignments_list_id: str | None = Field(
        default=None, validation_alias="CLICKUP_ASSIGNMENTS_LIST_ID"
    )
    clickup_invoices_list_id: str | None = Field(
        default=None, validation_alias="CLICKUP_INVOICES_LIST_ID"
    )
    clickup_include_archived: bool = Field(
        default=False, validation_alias="CLICKUP_INCLUDE_ARCHIVED"
    )
    clickup_sync_interval_minutes: int = Field(
        default=15, ge=0, validation_alias="CLICKUP_SYNC_INTERVAL_MINUTES"
    )

    @field_validator(
        "database_host",
        "database_user",
        "database_password",
        "database_name",
        "sqlite_path",
        "log_file_path",
        "operator_api_token",
        "cron_secret",
        "clickup_api_key",
        "clickup_webhook_secret",
        "clickup_general_list_id",
        "clickup_leads_list_id",
        "clickup_companies_list_id",
        "clickup_contacts_list_id",
        "clickup_assignments_list_id",
        "clickup_invoices_list_id",
        mode="before",
    )
    @classmethod
    def _empty_string_to_none(cls, value):  # type: ignore[override]
        """Coerce blank environment variables to ``None`` so optional values stay optional."""

        if isinstance(value, str) and value.strip() == "":
            return None
        return value

    @field_validator("clickup_api_base_url", mode="before")
    @classmethod
    def _default_base_url(cls, value):  # type: ignore[override]
        if value is None or (isinstance(value, str) and not value.strip()):
            return CLICKUP_DEFAULT_BASE_URL
        return value

    model_config = SettingsConfigDict(
        env_file=(Path(__file__).resolve().parent.parent.parent / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def clickup_list_ids(self) -> list[tuple[str, str | None]]:
        return [
            ("list", self.clickup_general_list_id),
            ("lead", self.clickup_leads_list_id),
            ("company", self.clickup_companies_list_id),
            ("contact", self.clickup_contacts_list_id),
            ("assignment", self.clickup_assignments_list_id),
            ("invoice_mirror", self.clickup_invoices_list_id),
        ]


@dataclass(frozen=True)
class ClickUpListConfig:
    entity_type: str
    list_id: str


@dataclass(frozen=True)
class ClickUpConfig:
    api_key: str
    api_base_url: str
    lists: tuple[ClickUpListConfig, ...]
    include_archived: bool = False


@lru_cache
def get_settings() -> Settings:
    return Settings()


def get_clickup_config(settings: Settings | None = None) -> ClickUpConfig:
    settings = settings or get_settings()
    api_key = (settings.clickup_api_key or "").strip()
    if not api_key:
        raise ClickUpConfigurationError("Missing CLICKUP_API_KEY")
    lists = tuple(
        ClickUpListConfig(entity_type=entity_type, list_id=list_id.strip())
        for entity_type, list_id in settings.clickup_list_ids()
        if list_id and list_id.strip()
    )
    if not lists:
        raise ClickUpConfigurationError(
            "Missing ClickUp list IDs. Set CLICKUP_LEADS_LIST_ID / "
            "CLICKUP_COMPANIES_LIST_ID / CLICKUP_CONTACTS_LIST_ID"
        )
    return ClickUpConfig(
        api_key=api_key,
        api_base_url=settings.clickup_api_base_url.rstrip("/"),
        lists=lists,
        include_archived=settings.clickup_include_archived,
    )
