import os
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault("APP_TIMEZONE", "Europe/Amsterdam")
os.environ.setdefault("CLICKUP_SYNC_INTERVAL_MINUTES", "15")
for _name in ("OPERATOR_API_TOKEN", "CRON_SECRET", "CLICKUP_WEBHOOK_SECRET", "CLICKUP_API_KEY"):
    os.environ.pop(_name, None)


@pytest.fixture(autouse=True)
def reset_settings_cache():
    from backoffice.core.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
