from __future__ import annotations

from typing import Any

import httpx

from backoffice.core.config import ClickUpConfig, get_clickup_config
from backoffice.core.logging import log_debug, log_error

CLICKUP_PAGE_SIZE = 100
MAX_PAGES_PER_LIST = 100


class ClickUpAPIError(RuntimeError):
    """Raised when ClickUp responds with an error status."""

    def __init__(self, message: str, *, status: int | None = None, body: str | None = None) -> None:
        super().__init__(message)
        self.status = status
        self.body = body


def _truncate_body(body: str | None) -> str | None:
    if body is None:
        return None
    if len(body) <= 2000:
        return body
    return body[:1997] + "..."


async def _request(
    method: str,
    path: str,
    *,
    config: ClickUpConfig | None = None,
    params: dict[str, Any] | None = None,
    timeout: float = 30.0,
) -> Any:
    config = config or get_clickup_config()
    url = f"{config.api_base_url}{path if path.startswith('/') else f'/{path}'}"
    headers = {
        "Authorization": config.api_key,
        "Content-Type": "application/json",
    }
    log_debug("Calling ClickUp API", url=url, method=method)

    async with httpx.AsyncClient(timeout=timeout) as client:
        try:
            response = await client.request(method, url, headers=headers, params=params)
        except httpx.HTTPError as exc:
            log_error("ClickUp API request failed", url=url, error=str(exc))
            raise ClickUpAPIError(str(exc)) from exc

    if response.status_code >= 400:
        body = _truncate_body(response.text)
        log_error(
            "ClickUp API responded with an error",
            url=url,
            status=response.status_code,
        )
        raise ClickUpAPIError(
            f"ClickUp API {response.status_code}: {body or ''}".strip(),
            status=response.status_code,
            body=body,
        )
    if not response.text:
        return {}
    return response.json()


async def get_list_tasks(
    list_id: str,
    *,
    page: int = 0,
    archived: bool = False,
    config: ClickUpConfig | None = None,
) -> dict[str, Any]:
    params = {
        "archived": "true" if archived else "false",
        "include_closed": "true",
        "subtasks": "true",
        "page": str(page),
    }
    payload = await _request("GET", f"/list/{list_id}/task", config=config, params=params)
    if not isinstance(payload, dict):
        return {"tasks": []}
    return payload


async def get_all_list_tasks(
    list_id: str,
    *,
    archived: bool = False,
    config: ClickUpConfig | None = None,
) -> list[dict[str, Any]]:
    """Fetch every task on a list, page by page.

    Paging stops on an empty page, on ``last_page`` being true, on a short
    page or after ``MAX_PAGES_PER_LIST`` pages, whichever comes first.
    """

    tasks: list[dict[str, Any]] = []
    for page in range(MAX_PAGES_PER_LIST):
        payload = await get_list_tasks(list_id, page=page, archived=archived, config=config)
        batch = payload.get("tasks")
        if not isinstance(batch, list) or not batch:
            break
        tasks.extend(task for task in batch if isinstance(task, dict))
        if payload.get("last_page") is True or len(batch) < CLICKUP_PAGE_SIZE:
            break
    return tasks


async def get_teams(*, config: ClickUpConfig | None = None) -> dict[str, Any]:
    payload = await _request("GET", "/team", config=config)
    return payload if isinstance(payload, dict) else {"teams": []}
