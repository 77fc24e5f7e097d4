from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable

from backoffice.core.logging import log_info
from backoffice.repositories import documents as documents_repo
from backoffice.repositories._rows import ensure_naive_utc, utcnow
from backoffice.repositories.documents import FACTUREN, OFFERTES, DocumentTable
from backoffice.schemas.documents import (
    DocumentCreateBase,
    DocumentUpdateBase,
    FactuurCreate,
    FactuurUpdate,
    LineItem,
    OfferteCreate,
    OfferteUpdate,
)
from backoffice.services.document_numbering import (
    create_with_unique_number,
    local_day_bounds,
    local_today,
)

DEFAULT_BTW_PERCENTAGE = Decimal("21")
OFFERTE_PREFIX = "OF"
FACTUUR_PREFIX = "F"
OFFERTE_VALIDITY_DAYS = 14
FACTUUR_PAYMENT_TERM_DAYS = 30
ACCEPTED_STATUS = "akkoord"

_CENTS = Decimal("0.01")
_ZERO = Decimal("0.00")


class OfferteAccessError(RuntimeError):
    """Base class for failures on the public offerte endpoints."""


class OfferteNotFound(OfferteAccessError):
    pass


class OfferteNotPublic(OfferteAccessError):
    pass


class OfferteAlreadyApproved(OfferteAccessError):
    pass


_CLIENT_COLUMNS = {
    "name": "client_name",
    "contact_person": "client_contact_person",
    "email": "client_email",
    "phone": "client_phone",
    "address": "client_address",
    "kvk": "client_kvk",
    "btw": "client_btw",
}


def _round(value: Decimal) -> Decimal:
    return value.quantize(_CENTS, rounding=ROUND_HALF_UP)


def calculate_totals(
    items: Iterable[Any], btw_percentage: Decimal | None = None
) -> tuple[Decimal, Decimal, Decimal]:
    """Return ``(subtotal, btw_amount, total)`` for the given line items."""

    percentage = DEFAULT_BTW_PERCENTAGE if btw_percentage is None else Decimal(btw_percentage)
    subtotal = Decimal("0")
    for item in items:
        if isinstance(item, LineItem):
            quantity, unit_price = item.quantity, item.unit_price
        else:
            quantity, unit_price = item["quantity"], item["unit_price"]
        subtotal += Decimal(quantity) * Decimal(unit_price)
    subtotal = _round(subtotal)
    btw_amount = _round(subtotal * percentage / Decimal("100"))
    return subtotal, btw_amount, subtotal + btw_amount


def _item_rows(items: Iterable[LineItem]) -> list[dict[str, Any]]:
    return [
        {
            "description": item.description,
            "details": item.details,
            "quantity": item.quantity,
            "unit_price": item.unit_price,
            "section_title": item.section_title,
        }
        for item in items
    ]


def _client_fields(client: Any) -> dict[str, Any]:
    return {column: getattr(client, attribute) for attribute, column in _CLIENT_COLUMNS.items()}


def _base_fields(payload: DocumentCreateBase, today: date) -> dict[str, Any]:
    btw_percentage = (
        DEFAULT_BTW_PERCENTAGE if payload.btw_percentage is None else payload.btw_percentage
    )
    subtotal, btw_amount, total = calculate_totals(payload.items, btw_percentage)
    return {
        "company_id": payload.company_id,
        **_client_fields(payload.client),
        "date": today,
        "status": "concept",
        "subtotal": subtotal,
        "btw_percentage": btw_percentage,
        "btw_amount": btw_amount,
        "total": total,
        "notes": payload.notes,
    }


async def _create(
    table: DocumentTable,
    prefix: str,
    fields: dict[str, Any],
    items: list[dict[str, Any]],
    today: date,
) -> dict[str, Any]:
    start, end = local_day_bounds(today)
    today_count = await documents_repo.count_created_between(table, start, end)

    async def _insert(number: str, slug: str):
        return await documents_repo.create_document(
            table, number=number, slug=slug, fields=fields, items=items
        )

    record = await create_with_unique_number(prefix, today_count, _insert, today=today)
    log_info(
        f"Created {table.kind}",
        id=record["id"],
        number=record["number"],
        company_id=record["company_id"],
    )
    return record


async def create_offerte(payload: OfferteCreate) -> dict[str, Any]:
    today = local_today()
    fields = _base_fields(payload, today)
    fields.update(
        valid_until=today + timedelta(days=OFFERTE_VALIDITY_DAYS),
        intro_text=payload.intro_text,
        terms_text=payload.terms_text,
        is_public=True,
    )
    return await _create(OFFERTES, OFFERTE_PREFIX, fields, _item_rows(payload.items), today)


async def create_factuur(payload: FactuurCreate) -> dict[str, Any]:
    today = local_today()
    fields = _base_fields(payload, today)
    fields.update(
        due_date=today + timedelta(days=FACTUUR_PAYMENT_TERM_DAYS),
        offerte_id=payload.offerte_id,
    )
    return await _create(FACTUREN, FACTUUR_PREFIX, fields, _item_rows(payload.items), today)


def _update_fields(
    payload: DocumentUpdateBase, existing: dict[str, Any]
) -> tuple[dict[str, Any], list[dict[str, Any]] | None]:
    data = payload.model_dump(exclude_unset=True, by_alias=False)
    data.pop("client", None)
    data.pop("items", None)
    fields: dict[str, Any] = dict(data)
    if "client" in payload.model_fields_set and payload.client is not None:
        fields.update(_client_fields(payload.client))

    items: list[dict[str, Any]] | None = None
    if "items" in payload.model_fields_set and payload.items is not None:
        items = _item_rows(payload.items)

    btw_changed = "btw_percentage" in payload.model_fields_set
    if items is not None or btw_changed:
        btw_percentage = payload.btw_percentage if btw_changed else existing.get("btw_percentage")
        if btw_percentage is None:
            btw_percentage = DEFAULT_BTW_PERCENTAGE
        subtotal, btw_amount, total = calculate_totals(
            items if items is not None else existing.get("items", []),
            btw_percentage,
        )
        fields.update(
            btw_percentage=btw_percentage,
            subtotal=subtotal,
            btw_amount=btw_amount,
            total=total,
        )
    return fields, items


async def update_offerte(offerte_id: int, payload: OfferteUpdate) -> dict[str, Any] | None:
    existing = await documents_repo.get_document(OFFERTES, offerte_id)
    if not existing:
        return None
    fields, items = _update_fields(payload, existing)
    return await documents_repo.update_document(OFFERTES, offerte_id, fields=fields, items=items)


async def update_factuur(factuur_id: int, payload: FactuurUpdate) -> dict[str, Any] | None:
    existing = await documents_repo.get_document(FACTUREN, factuur_id)
    if not existing:
        return None
    fields, items = _update_fields(payload, existing)
    if fields.get("paid_at") is not None:
        fields["paid_at"] = ensure_naive_utc(fields["paid_at"])
    if fields.get("status") == "betaald" and not fields.get("paid_at") and not existing.get("paid_at"):
        fields["paid_at"] = utcnow()
    return await documents_repo.update_document(FACTUREN, factuur_id, fields=fields, items=items)


async def get_public_offerte(slug: str) -> dict[str, Any]:
    record = await documents_repo.get_document_by_slug(OFFERTES, slug)
    if not record:
        raise OfferteNotFound(f"Offerte {slug} not found")
    if not record.get("is_public"):
        raise OfferteNotPublic(f"Offerte {slug} is not public")
    return record


async def approve_offerte(
    slug: str,
    *,
    client_name: str,
    client_email: str,
    client_ip: str | None = None,
    user_agent: str | None = None,
) -> dict[str, Any]:
    """Record the client's acceptance of a public offerte.

    The offerte moves to ``akkoord`` with the approver's name, e-mail and
    timestamp, and an audit row keeps the request's IP address and user agent.
    """

    record = await get_public_offerte(slug)
    if record.get("status") == ACCEPTED_STATUS or record.get("approved_at"):
        raise OfferteAlreadyApproved(f"Offerte {slug} is already approved")
    recorded = await documents_repo.record_offerte_approval(
        record["id"],
        status=ACCEPTED_STATUS,
        client_name=client_name,
        client_email=client_email,
        client_ip=client_ip,
        user_agent=user_agent,
    )
    if not recorded:
        raise OfferteAlreadyApproved(f"Offerte {slug} is already approved")
    log_info(
        "Offerte approved",
        id=record["id"],
        number=record["number"],
        approved_by=client_email,
    )
    approved = await documents_repo.get_document(OFFERTES, record["id"])
    return approved or record


def _sum(records: Iterable[dict[str, Any]], key: str) -> Decimal:
    total = _ZERO
    for record in records:
        total += record.get(key) or _ZERO
    return total


def _period_starts() -> tuple[date, date, datetime]:
    today = local_today()
    year_start = today.replace(month=1, day=1)
    month_start = today.replace(day=1)
    month_start_utc, _ = local_day_bounds(month_start)
    return year_start, month_start, month_start_utc.replace(tzinfo=timezone.utc)


def _on_or_after(value: date | None, start: date) -> bool:
    return value is not None and value >= start


async def get_offerte_stats() -> dict[str, Any]:
    rows = await documents_repo.list_stat_rows(OFFERTES)
    year_start, month_start, month_start_at = _period_starts()

    sent = [row for row in rows if row["status"] == "verstuurd"]
    accepted = [row for row in rows if row["status"] == ACCEPTED_STATUS]
    sent_this_month = [row for row in sent if _on_or_after(row.get("date"), month_start)]
    accepted_year = [row for row in accepted if _on_or_after(row.get("date"), year_start)]
    accepted_month = [row for row in accepted if _on_or_after(row.get("date"), month_start)]
    accepted_created_this_month = [
        row for row in accepted if row.get("created_at") and row["created_at"] >= month_start_at
    ]
    recent = await documents_repo.list_documents(OFFERTES)

    return {
        "concept_offertes": sum(1 for row in rows if row["status"] == "concept"),
        "open_offertes": len(sent),
        "total_offertes": len(rows),
        "total_open_amount": _sum(sent, "total"),
        "akkoord_offertes": len(accepted),
        "akkoord_amount": _sum(accepted, "total"),
        "accepted_this_month": _sum(accepted_created_this_month, "total"),
        "open_month_count": len(sent_this_month),
        "open_month_amount": _sum(sent_this_month, "total"),
        "revenue_year": _sum(accepted_year, "subtotal"),
        "revenue_year_incl": _sum(accepted_year, "total"),
        "revenue_month": _sum(accepted_month, "subtotal"),
        "revenue_month_incl": _sum(accepted_month, "total"),
        "recent_offertes": [to_response(record) for record in recent[:5]],
    }


async def get_factuur_stats() -> dict[str, Any]:
    rows = await documents_repo.list_stat_rows(FACTUREN)
    year_start, month_start, month_start_at = _period_starts()
    today = local_today()

    sent = [row for row in rows if row["status"] == "verzonden"]
    paid = [row for row in rows if row["status"] == "betaald"]
    overdue = [
        row
        for row in rows
        if row["status"] in ("verzonden", "te-laat")
        and row.get("due_date") is not None
        and row["due_date"] < today
    ]
    paid_this_month = [
        row for row in paid if row.get("paid_at") and row["paid_at"] >= month_start_at
    ]
    sent_this_month = [row for row in sent if _on_or_after(row.get("date"), month_start)]
    paid_year = [row for row in paid if _on_or_after(row.get("date"), year_start)]
    paid_month = [row for row in paid if _on_or_after(row.get("date"), month_start)]
    recent = await documents_repo.list_documents(FACTUREN)

    return {
        "open_facturen": len(sent),
        "total_facturen": len(rows),
        "total_open_amount": _sum(sent, "total"),
        "overdue_facturen": len(overdue),
        "paid_this_month": _sum(paid_this_month, "total"),
        "open_month_count": len(sent_this_month),
        "open_month_amount": _sum(sent_this_month, "total"),
        "revenue_year": _sum(paid_year, "subtotal"),
        "revenue_year_incl": _sum(paid_year, "total"),
        "revenue_month": _sum(paid_month, "subtotal"),
        "revenue_month_incl": _sum(paid_month, "total"),
        "recent_facturen": [to_response(record) for record in recent[:5]],
    }


def to_response(record: dict[str, Any]) -> dict[str, Any]:
    """Reshape a stored document into the nested API representation."""

    data = {key: value for key, value in record.items() if not key.startswith("client_")}
    data["client"] = {
        attribute: record.get(column) for attribute, column in _CLIENT_COLUMNS.items()
    }
    return data
