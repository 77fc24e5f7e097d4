from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from backoffice.core.database import Transaction, db
from backoffice.repositories._rows import make_aware, to_date, to_money, utcnow

DocumentRecord = dict[str, Any]

_COMMON_COLUMNS: tuple[str, ...] = (
    "company_id",
    "client_name",
    "client_contact_person",
    "client_email",
    "client_phone",
    "client_address",
    "client_kvk",
    "client_btw",
    "date",
    "status",
    "subtotal",
    "btw_percentage",
    "btw_amount",
    "total",
    "notes",
)
_MONEY_COLUMNS = ("subtotal", "btw_amount", "total", "btw_percentage")
_DATETIME_COLUMNS = ("created_at", "updated_at", "approved_at", "paid_at")
_DATE_COLUMNS = ("date", "valid_until", "due_date")
_ITEM_COLUMNS = ("description", "details", "quantity", "unit_price", "section_title")


@dataclass(frozen=True)
class DocumentTable:
    """Storage layout for one document kind and its line items."""

    kind: str
    table: str
    items_table: str
    item_fk: str
    extra_columns: tuple[str, ...]

    @property
    def columns(self) -> tuple[str, ...]:
        return _COMMON_COLUMNS + self.extra_columns


OFFERTES = DocumentTable(
    kind="offerte",
    table="offertes",
    items_table="offerte_line_items",
    item_fk="offerte_id",
    extra_columns=(
        "valid_until",
        "intro_text",
        "terms_text",
        "payment_url",
        "is_public",
        "approved_at",
        "approved_by_name",
        "approved_by_email",
    ),
)

FACTUREN = DocumentTable(
    kind="factuur",
    table="facturen",
    items_table="factuur_line_items",
    item_fk="factuur_id",
    extra_columns=(
        "due_date",
        "offerte_id",
        "paid_at",
        "mollie_payment_id",
        "mollie_payment_url",
    ),
)


def _normalise_item(row: dict[str, Any]) -> dict[str, Any]:
    item = dict(row)
    for key in ("id", "sort_order"):
        if item.get(key) is not None:
            item[key] = int(item[key])
    item["quantity"] = to_money(item.get("quantity"))
    item["unit_price"] = to_money(item.get("unit_price"))
    return item


def _normalise_document(row: dict[str, Any], items: Iterable[dict[str, Any]] = ()) -> DocumentRecord:
    document = dict(row)
    for key in ("id", "offerte_id"):
        if document.get(key) is not None:
            document[key] = int(document[key])
    for key in _MONEY_COLUMNS:
        if key in document:
            document[key] = to_money(document[key])
    for key in _DATETIME_COLUMNS:
        if key in document:
            document[key] = make_aware(document[key])
    for key in _DATE_COLUMNS:
        if key in document:
            document[key] = to_date(document[key])
    if "is_public" in document:
        document["is_public"] = bool(document["is_public"])
    document["items"] = sorted(
        (_normalise_item(item) for item in items),
        key=lambda item: item.get("sort_order") or 0,
    )
    return document


async def _fetch_items(table: DocumentTable, document_ids: list[int]) -> dict[int, list[dict[str, Any]]]:
    grouped: dict[int, list[dict[str, Any]]] = {document_id: [] for document_id in document_ids}
    if not document_ids:
        return grouped
    placeholders = ", ".join(["%s"] * len(document_ids))
    rows = await db.fetch_all(
        f"SELECT * FROM {table.items_table} WHERE {table.item_fk} IN ({placeholders}) "
        "ORDER BY sort_order ASC",
        tuple(document_ids),
    )
    for row in rows:
        grouped.setdefault(int(row[table.item_fk]), []).append(row)
    return grouped


async def list_documents(
    table: DocumentTable,
    *,
    status: str | None = None,
    company_id: str | None = None,
    search: str | None = None,
) -> list[DocumentRecord]:
    clauses: list[str] = []
    params: list[Any] = []
    if status:
        clauses.append("status = %s")
        params.append(status)
    if company_id:
        clauses.append("company_id = %s")
        params.append(company_id)
    if search:
        pattern = f"%{search.lower()}%"
        clauses.append("(LOWER(client_name) LIKE %s OR LOWER(number) LIKE %s)")
        params.extend([pattern, pattern])
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    rows = await db.fetch_all(
        f"SELECT * FROM {table.table} {where} ORDER BY created_at DESC, id DESC",
        tuple(params),
    )
    items = await _fetch_items(table, [int(row["id"]) for row in rows])
    return [_normalise_document(row, items.get(int(row["id"]), [])) for row in rows]


async def get_document(table: DocumentTable, document_id: int) -> Optional[DocumentRecord]:
    row = await db.fetch_one(f"SELECT * FROM {table.table} WHERE id = %s", (document_id,))
    if not row:
        return None
    items = await _fetch_items(table, [int(row["id"])])
    return _normalise_document(row, items.get(int(row["id"]), []))


async def get_document_by_slug(table: DocumentTable, slug: str) -> Optional[DocumentRecord]:
    row = await db.fetch_one(f"SELECT * FROM {table.table} WHERE slug = %s", (slug,))
    if not row:
        return None
    items = await _fetch_items(table, [int(row["id"])])
    return _normalise_document(row, items.get(int(row["id"]), []))


async def count_created_between(table: DocumentTable, start: datetime, end: datetime) -> int:
    """Count documents of this kind created in ``[start, end)`` across every company."""

    row = await db.fetch_one(
        f"SELECT COUNT(*) AS count FROM {table.table} WHERE created_at >= %s AND created_at < %s",
        (start, end),
    )
    return int(row["count"]) if row else 0


async def _insert_items(
    tx: Transaction, table: DocumentTable, document_id: int, items: list[dict[str, Any]]
) -> None:
    if not items:
        return
    columns = (table.item_fk, "sort_order") + _ITEM_COLUMNS
    placeholders = ", ".join(["%s"] * len(columns))
    await tx.execute_many(
        f"INSERT INTO {table.items_table} ({', '.join(columns)}) VALUES ({placeholders})",
        [
            (document_id, index) + tuple(item.get(column) for column in _ITEM_COLUMNS)
            for index, item in enumerate(items)
        ],
    )


async def create_document(
    table: DocumentTable,
    *,
    number: str,
    slug: str,
    fields: dict[str, Any],
    items: list[dict[str, Any]],
) -> DocumentRecord:
    """Insert a document and its line items in one transaction.

    A uniqueness violation on ``number``/``slug`` surfaces as the driver's
    integrity error after the transaction has been rolled back.
    """

    now = utcnow()
    values = {column: fields.get(column) for column in table.columns if column in fields}
    values.setdefault("status", "concept")
    columns = ["number", "slug", *values.keys(), "created_at", "updated_at"]
    params = [number, slug, *values.values(), now, now]
    placeholders = ", ".join(["%s"] * len(columns))
    async with db.transaction() as tx:
        document_id = await tx.execute_returning_lastrowid(
            f"INSERT INTO {table.table} ({', '.join(columns)}) VALUES ({placeholders})",
            tuple(params),
        )
        if not document_id:
            raise RuntimeError(f"Failed to create {table.kind}")
        await _insert_items(tx, table, document_id, items)
    created = await get_document(table, document_id)
    if not created:
        raise RuntimeError(f"Failed to load {table.kind} after insert")
    return created


async def update_document(
    table: DocumentTable,
    document_id: int,
    *,
    fields: dict[str, Any],
    items: list[dict[str, Any]] | None = None,
) -> DocumentRecord:
    """Update header columns and, when ``items`` is given, replace every line item.

    Header totals and line items are written in one transaction so a failed
    item insert leaves the stored document untouched.
    """

    updates = {column: value for column, value in fields.items() if column in table.columns}
    updates["updated_at"] = utcnow()
    assignments = ", ".join(f"{column} = %s" for column in updates)
    async with db.transaction() as tx:
        await tx.execute(
            f"UPDATE {table.table} SET {assignments} WHERE id = %s",
            tuple(updates.values()) + (document_id,),
        )
        if items is not None:
            await tx.execute(
                f"DELETE FROM {table.items_table} WHERE {table.item_fk} = %s",
                (document_id,),
            )
            await _insert_items(tx, table, document_id, items)
    updated = await get_document(table, document_id)
    if not updated:
        raise ValueError(f"{table.kind.capitalize()} not found after update")
    return updated


async def delete_document(table: DocumentTable, document_id: int) -> None:
    async with db.transaction() as tx:
        await tx.execute(
            f"DELETE FROM {table.items_table} WHERE {table.item_fk} = %s",
            (document_id,),
        )
        await tx.execute(f"DELETE FROM {table.table} WHERE id = %s", (document_id,))



async def list_stat_rows(table: DocumentTable) -> list[DocumentRecord]:
    columns = ["id", "status", "total", "subtotal", "date", "created_at"]
    if table is FACTUREN:
        columns += ["due_date", "paid_at"]
    rows = await db.fetch_all(f"SELECT {', '.join(columns)} FROM {table.table}")
    stats: list[DocumentRecord] = []
    for row in rows:
        record = _normalise_document(row)
        record.pop("items", None)
        stats.append(record)
    return stats


async def record_offerte_approval(
    offerte_id: int,
    *,
    status: str,
    client_name: str,
    client_email: str,
    client_ip: str | None = None,
    user_agent: str | None = None,
) -> bool:
    """Mark an offerte approved and log who approved it.

    Returns ``False`` without writing anything when the offerte was already
    approved, so two simultaneous approvals record only one.
    """

    now = utcnow()
    async with db.transaction() as tx:
        updated = await tx.execute(
            f"UPDATE {OFFERTES.table} SET status = %s, approved_at = %s, approved_by_name = %s, "
            "approved_by_email = %s, updated_at = %s WHERE id = %s AND approved_at IS NULL",
            (status, now, client_name, client_email, now, offerte_id),
        )
        if not updated:
            return False
        await tx.execute(
            "INSERT INTO offerte_approvals "
            "(offerte_id, client_name, client_email, client_ip, user_agent, approved_at) "
            "VALUES (%s, %s, %s, %s, %s, %s)",
            (offerte_id, client_name, client_email, client_ip, user_agent, now),
        )
    return True
