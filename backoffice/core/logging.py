from __future__ import annotations

import sys
from pathlib import Path
from typing import Any

from loguru import logger

LOG_FORMAT = "{time:YYYY-MM-DDTHH:mm:ss.SSSZ} | {level} | {message}\n{exception}"

_REDACTED_KEYS = {"api_key", "authorization", "signature", "secret", "token"}


def configure_logging() -> None:
    from backoffice.core.config import get_settings

    settings = get_settings()
    level = settings.log_level.upper()

    logger.remove()
    logger.add(sys.stdout, format=LOG_FORMAT, level=level)

    log_path = settings.log_file_path
    if not log_path:
        return
    log_path = log_path.expanduser()
    if not _ensure_log_path(log_path):
        return
    try:
        logger.add(
            str(log_path),
            format=LOG_FORMAT,
            level=level,
            encoding="utf-8",
            enqueue=True,
        )
    except OSError as exc:
        logger.warning(f"LOG FILE DISABLED - unable to open file path={log_path} error={exc}")


def _format_value(key: str, value: Any) -> Any:
    if key.lower() in _REDACTED_KEYS and value:
        return "***REDACTED***"
    return value


def _format_meta(meta: dict[str, Any]) -> str:
    return " ".join(f"{key}={_format_value(key, meta[key])}" for key in sorted(meta))


def log_error(message: str, **meta) -> None:
    if meta:
        logger.bind(**meta).error(f"{message} | {_format_meta(meta)}")
    else:
        logger.error(message)


def log_info(message: str, **meta) -> None:
    if meta:
        logger.bind(**meta).info(f"{message} | {_format_meta(meta)}")
    else:
        logger.info(message)


def log_warning(message: str, **meta) -> None:
    if meta:
        logger.bind(**meta).warning(f"{message} | {_format_meta(meta)}")
    else:
        logger.warning(message)


def log_debug(message: str, **meta) -> None:
    if meta:
        logger.bind(**meta).debug(f"{message} | {_format_meta(meta)}")
    else:
        logger.debug(message)


def _ensure_log_path(path: Path) -> bool:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        logger.warning(
            f"LOG FILE DISABLED - unable to create directory path={path.parent} error={exc}"
        )
        return False
    return True
