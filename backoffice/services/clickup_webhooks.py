"""Inbound ClickUp webhook handling.

ClickUp signs webhook bodies with the shared secret. Two schemes are
accepted:

1. ``HMAC-SHA256(secret, body)`` as a hex digest (ClickUp's format)
2. ``SHA-256(body + secret)`` as a hex digest (older integrations)

The signature arrives in ``X-Signature`` or ``X-ClickUp-Signature``.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Any, Mapping

from backoffice.core.logging import log_debug, log_warning
from backoffice.repositories import clickup_sync_state as state_repo
from backoffice.repositories import clickup_webhook_events as events_repo
from backoffice.repositories._rows import utcnow

SIGNATURE_HEADERS = ("x-signature", "x-clickup-signature")


def _header(headers: Mapping[str, str], name: str) -> str | None:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def verify_clickup_signature(
    raw_body: bytes,
    headers: Mapping[str, str],
    secret: str | None,
) -> bool:
    if not secret:
        log_debug("ClickUp webhook secret not configured; accepting request")
        return True

    provided = None
    for name in SIGNATURE_HEADERS:
        provided = _header(headers, name)
        if provided:
            break
    if not provided:
        log_warning("ClickUp webhook rejected: missing signature header")
        return False

    provided = provided.strip()
    secret_bytes = secret.encode("utf-8")
    candidates = (
        hmac.new(secret_bytes, raw_body, hashlib.sha256).hexdigest(),
        hashlib.sha256(raw_body + secret_bytes).hexdigest(),
    )
    for candidate in candidates:
        if hmac.compare_digest(candidate.encode("ascii"), provided.encode("utf-8", errors="replace")):
            return True
    log_warning("ClickUp webhook rejected: signature mismatch", payload_length=len(raw_body))
    return False


def extract_event_type(payload: Any) -> str:
    if isinstance(payload, Mapping):
        for key in ("event", "type"):
            value = payload.get(key)
            if value:
                return str(value)
    return "unknown"


def filter_forwarded_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {key: value for key, value in headers.items() if key.lower().startswith("x-")}


async def log_webhook_event(payload: Any, headers: Mapping[str, str]) -> int:
    """Persist a received webhook and stamp ``last_webhook_at``."""

    event_id = await events_repo.create_event(
        event_type=extract_event_type(payload),
        payload=payload,
        headers=filter_forwarded_headers(headers),
    )
    await state_repo.upsert_state(last_webhook_at=utcnow())
    return event_id


async def mark_webhook_processed(event_id: int) -> None:
    await events_repo.mark_processed(event_id)
