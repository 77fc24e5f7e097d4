"""Date-scoped sequential document numbers with optimistic retries.

Numbers look like ``OF-240115-03``: a prefix, the local calendar date as
``YYMMDD`` and a two-digit sequence that grows past 99 without wrapping.
The sequence is derived from how many documents already exist today, so two
concurrent requests can compute the same candidate; the storage layer's
unique constraint rejects the loser, which then moves on to the next
candidate.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Awaitable, Callable, TypeVar
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from backoffice.core.config import get_settings
from backoffice.core.logging import log_debug, log_warning

T = TypeVar("T")

_UNIQUENESS_MARKERS = ("duplicate", "unique")


class NumberAllocationExhausted(RuntimeError):
    """Raised when every candidate number in the retry budget was taken."""

    def __init__(self, prefix: str, attempts: int) -> None:
        super().__init__(
            f"Could not allocate a unique {prefix} number after {attempts} attempts"
        )
        self.prefix = prefix
        self.attempts = attempts


def _local_zone() -> ZoneInfo | timezone:
    name = get_settings().timezone
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        log_warning("Unknown timezone configured, falling back to UTC", timezone=name)
        return timezone.utc


def local_today() -> date:
    return datetime.now(_local_zone()).date()


def local_day_bounds(day: date | None = None) -> tuple[datetime, datetime]:
    """Return the naive UTC ``[start, end)`` window covering one local calendar day."""

    zone = _local_zone()
    day = day or local_today()
    start = datetime.combine(day, time.min, tzinfo=zone)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=zone)
    return (
        start.astimezone(timezone.utc).replace(tzinfo=None),
        end.astimezone(timezone.utc).replace(tzinfo=None),
    )


def format_document_number(prefix: str, today_count: int, *, today: date | None = None) -> str:
    day = today or local_today()
    return f"{prefix}-{day:%y%m%d}-{today_count + 1:02d}"


def is_uniqueness_violation(exc: BaseException) -> bool:
    message = str(exc).lower()
    return any(marker in message for marker in _UNIQUENESS_MARKERS)


async def create_with_unique_number(
    prefix: str,
    today_count: int,
    create: Callable[[str, str], Awaitable[T]],
    *,
    max_attempts: int | None = None,
    today: date | None = None,
) -> T:
    """Call ``create(number, slug)`` with successive candidates until one sticks.

    Only uniqueness violations move on to the next candidate; any other
    failure propagates on the attempt that raised it.
    """

    attempts = max_attempts if max_attempts is not None else get_settings().document_number_max_attempts
    day = today or local_today()
    for attempt in range(attempts):
        number = format_document_number(prefix, today_count + attempt, today=day)
        try:
            return await create(number, number.lower())
        except Exception as exc:
            if not is_uniqueness_violation(exc):
                raise
            log_debug("Document number taken, trying next", number=number, attempt=attempt + 1)
    raise NumberAllocationExhausted(prefix, attempts)
