import httpx
import pytest

from backoffice.core.config import ClickUpConfig, ClickUpListConfig
from backoffice.services import clickup
from backoffice.services.clickup import ClickUpAPIError

CONFIG = ClickUpConfig(
    api_key="pk_test",
    api_base_url="https://api.clickup.test/api/v2",
    lists=(ClickUpListConfig(entity_type="lead", list_id="900"),),
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


class DummyResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload if payload is not None else {}
        self.text = text if text is not None else ("{}" if payload is not None else "")

    def json(self):
        return self._payload


def _install_client(monkeypatch, responses):
    requests = []
    queue = list(responses)

    class DummyClient:
        def __init__(self, *args, **kwargs):
            self.timeout = kwargs.get("timeout")

        async def __aenter__(self):
            return self

        async def __aexit__(self, exc_type, exc, tb):
            return False

        async def request(self, method, url, headers=None, params=None, json=None):
            requests.append({"method": method, "url": url, "headers": headers, "params": params})
            response = queue.pop(0)
            if isinstance(response, Exception):
                raise response
            return response

    monkeypatch.setattr(clickup.httpx, "AsyncClient", DummyClient)
    return requests


def _page(count, *, start=0, last_page=None):
    payload = {"tasks": [{"id": str(start + i)} for i in range(count)]}
    if last_page is not None:
        payload["last_page"] = last_page
    return DummyResponse(payload=payload)


@pytest.mark.anyio
async def test_get_list_tasks_sends_expected_request(monkeypatch):
    requests = _install_client(monkeypatch, [_page(2)])

    payload = await clickup.get_list_tasks("900", page=3, config=CONFIG)

    assert len(payload["tasks"]) == 2
    request = requests[0]
    assert request["method"] == "GET"
    assert request["url"] == "https://api.clickup.test/api/v2/list/900/task"
    assert request["headers"]["Authorization"] == "pk_test"
    assert request["params"] == {
        "archived": "false",
        "include_closed": "true",
        "subtasks": "true",
        "page": "3",
    }


@pytest.mark.anyio
async def test_get_all_list_tasks_stops_on_short_page(monkeypatch):
    requests = _install_client(
        monkeypatch,
        [_page(100), _page(100, start=100), _page(30, start=200)],
    )

    tasks = await clickup.get_all_list_tasks("900", config=CONFIG)

    assert len(tasks) == 230
    assert [request["params"]["page"] for request in requests] == ["0", "1", "2"]


@pytest.mark.anyio
async def test_get_all_list_tasks_stops_on_last_page_flag(monkeypatch):
    requests = _install_client(monkeypatch, [_page(100, last_page=True)])

    tasks = await clickup.get_all_list_tasks("900", config=CONFIG)

    assert len(tasks) == 100
    assert len(requests) == 1


@pytest.mark.anyio
async def test_get_all_list_tasks_stops_on_empty_page(monkeypatch):
    requests = _install_client(monkeypatch, [_page(100), _page(0)])

    tasks = await clickup.get_all_list_tasks("900", config=CONFIG)

    assert len(tasks) == 100
    assert len(requests) == 2


@pytest.mark.anyio
async def test_get_all_list_tasks_caps_page_count(monkeypatch):
    pages = [_page(100, start=i * 100) for i in range(clickup.MAX_PAGES_PER_LIST + 5)]
    requests = _install_client(monkeypatch, pages)

    tasks = await clickup.get_all_list_tasks("900", config=CONFIG)

    assert len(requests) == clickup.MAX_PAGES_PER_LIST
    assert len(tasks) == clickup.MAX_PAGES_PER_LIST * 100


@pytest.mark.anyio
async def test_get_all_list_tasks_requests_archived_sweep(monkeypatch):
    requests = _install_client(monkeypatch, [_page(1)])

    await clickup.get_all_list_tasks("900", archived=True, config=CONFIG)

    assert requests[0]["params"]["archived"] == "true"


@pytest.mark.anyio
async def test_error_status_raises_clickup_api_error(monkeypatch):
    _install_client(
        monkeypatch,
        [DummyResponse(status_code=401, text='{"err":"Token invalid","ECODE":"OAUTH_025"}')],
    )

    with pytest.raises(ClickUpAPIError) as excinfo:
        await clickup.get_list_tasks("900", config=CONFIG)

    assert excinfo.value.status == 401
    assert "Token invalid" in excinfo.value.body


@pytest.mark.anyio
async def test_transport_error_raises_clickup_api_error(monkeypatch):
    _install_client(monkeypatch, [httpx.ConnectError("boom")])

    with pytest.raises(ClickUpAPIError, match="boom"):
        await clickup.get_teams(config=CONFIG)


@pytest.mark.anyio
async def test_get_teams_calls_team_endpoint(monkeypatch):
    requests = _install_client(
        monkeypatch,
        [DummyResponse(payload={"teams": [{"id": "1", "name": "Workspace"}]})],
    )

    payload = await clickup.get_teams(config=CONFIG)

    assert payload == {"teams": [{"id": "1", "name": "Workspace"}]}
    assert requests[0]["url"] == "https://api.clickup.test/api/v2/team"
