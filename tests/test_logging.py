import pytest
from loguru import logger

from backoffice.core.logging import log_info, log_warning


@pytest.fixture
def captured():
    messages = []
    handler_id = logger.add(lambda message: messages.append(message.record), level="DEBUG")
    yield messages
    logger.remove(handler_id)


def test_log_meta_is_sorted_and_bound(captured):
    log_info("ClickUp sync finished", source="manual", run_id=4)

    record = captured[-1]
    assert record["message"] == "ClickUp sync finished | run_id=4 source=manual"
    assert record["extra"]["run_id"] == 4


def test_secret_values_are_redacted(captured):
    log_warning("Calling upstream", api_key="pk_live_123", url="https://api.clickup.com")

    message = captured[-1]["message"]
    assert "pk_live_123" not in message
    assert "api_key=***REDACTED***" in message
    assert "url=https://api.clickup.com" in message
