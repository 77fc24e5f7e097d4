from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from backoffice.schemas.documents import FactuurCreate, FactuurUpdate, OfferteCreate, OfferteUpdate
from backoffice.services import documents as documents_service

TODAY = date(2024, 1, 15)


@pytest.fixture
def anyio_backend():
    return "asyncio"


class DuplicateEntry(Exception):
    pass


class FakeDocumentStore:
    def __init__(self):
        self.documents: dict[str, dict[int, dict]] = {"offerte": {}, "factuur": {}}
        self.taken_numbers: set[str] = set()
        self.counted: list[tuple] = []
        self.updates: list[dict] = []

    async def count_created_between(self, table, start, end):
        self.counted.append((table.kind, start, end))
        return len(self.documents[table.kind])

    async def create_document(self, table, *, number, slug, fields, items):
        if number in self.taken_numbers:
            raise DuplicateEntry(f"Duplicate entry '{number}' for key 'number'")
        self.taken_numbers.add(number)
        documents = self.documents[table.kind]
        document_id = len(documents) + 1
        record = {
            "id": document_id,
            "number": number,
            "slug": slug,
            **fields,
            "items": [dict(item, sort_order=index) for index, item in enumerate(items)],
        }
        documents[document_id] = record
        return dict(record)

    async def get_document(self, table, document_id):
        record = self.documents[table.kind].get(document_id)
        return dict(record) if record else None

    async def update_document(self, table, document_id, *, fields, items=None):
        self.updates.append({"fields": dict(fields), "items": items})
        record = self.documents[table.kind][document_id]
        record.update(fields)
        if items is not None:
            record["items"] = items
        return dict(record)


@pytest.fixture
def store(monkeypatch):
    fake = FakeDocumentStore()
    repo = documents_service.documents_repo
    monkeypatch.setattr(repo, "count_created_between", fake.count_created_between)
    monkeypatch.setattr(repo, "create_document", fake.create_document)
    monkeypatch.setattr(repo, "get_document", fake.get_document)
    monkeypatch.setattr(repo, "update_document", fake.update_document)
    monkeypatch.setattr(documents_service, "local_today", lambda: TODAY)
    return fake


def _payload(**overrides):
    data = {
        "companyId": "studio-noord",
        "client": {"name": "Bakkerij Jansen", "contactPerson": "Piet Jansen"},
        "items": [
            {"description": "Ontwerp", "quantity": "2", "unitPrice": "125.50"},
            {"description": "Hosting", "quantity": "1", "unitPrice": "9.99", "sectionTitle": "Beheer"},
        ],
    }
    data.update(overrides)
    return data


def test_calculate_totals_rounds_half_up_to_cents():
    items = [{"quantity": Decimal("3"), "unit_price": Decimal("0.335")}]

    subtotal, btw_amount, total = documents_service.calculate_totals(items, Decimal("21"))

    assert subtotal == Decimal("1.01")
    assert btw_amount == Decimal("0.21")
    assert total == Decimal("1.22")


def test_calculate_totals_defaults_to_standard_rate():
    items = [{"quantity": Decimal("1"), "unit_price": Decimal("100")}]

    assert documents_service.calculate_totals(items) == (
        Decimal("100.00"),
        Decimal("21.00"),
        Decimal("121.00"),
    )


@pytest.mark.anyio
async def test_create_offerte_sets_number_totals_and_validity(store):
    record = await documents_service.create_offerte(OfferteCreate.model_validate(_payload(introText="Hallo")))

    assert record["number"] == "OF-240115-01"
    assert record["slug"] == "of-240115-01"
    assert record["status"] == "concept"
    assert record["subtotal"] == Decimal("260.99")
    assert record["btw_amount"] == Decimal("54.81")
    assert record["total"] == Decimal("315.80")
    assert record["valid_until"] == TODAY + timedelta(days=14)
    assert record["is_public"] is True
    assert record["intro_text"] == "Hallo"
    assert record["client_contact_person"] == "Piet Jansen"
    assert record["items"][1]["section_title"] == "Beheer"
    assert store.counted[0][0] == "offerte"


@pytest.mark.anyio
async def test_create_factuur_uses_payment_term_and_custom_rate(store):
    payload = FactuurCreate.model_validate(_payload(btwPercentage="9", offerteId=4))

    record = await documents_service.create_factuur(payload)

    assert record["number"] == "F-240115-01"
    assert record["due_date"] == TODAY + timedelta(days=30)
    assert record["offerte_id"] == 4
    assert record["btw_percentage"] == Decimal("9")
    assert record["btw_amount"] == Decimal("23.49")


@pytest.mark.anyio
async def test_create_skips_numbers_taken_concurrently(store):
    store.taken_numbers.update({"OF-240115-01", "OF-240115-02"})

    record = await documents_service.create_offerte(OfferteCreate.model_validate(_payload()))

    assert record["number"] == "OF-240115-03"


@pytest.mark.anyio
async def test_sequence_follows_existing_documents_of_the_day(store):
    first = await documents_service.create_factuur(FactuurCreate.model_validate(_payload()))
    second = await documents_service.create_factuur(FactuurCreate.model_validate(_payload()))

    assert (first["number"], second["number"]) == ("F-240115-01", "F-240115-02")


@pytest.mark.anyio
async def test_daily_sequence_is_shared_across_companies(store):
    first = await documents_service.create_offerte(OfferteCreate.model_validate(_payload()))
    second = await documents_service.create_offerte(
        OfferteCreate.model_validate(_payload(companyId="studio-zuid"))
    )

    assert first["company_id"] == "studio-noord"
    assert second["company_id"] == "studio-zuid"
    assert second["number"] == "OF-240115-02"
    start, end = store.counted[-1][1:]
    assert end - start == timedelta(days=1)


@pytest.mark.anyio
async def test_update_recomputes_totals_when_items_change(store):
    created = await documents_service.create_offerte(OfferteCreate.model_validate(_payload()))
    update = OfferteUpdate.model_validate(
        {"items": [{"description": "Workshop", "quantity": "4", "unitPrice": "50"}]}
    )

    updated = await documents_service.update_offerte(created["id"], update)

    assert updated["subtotal"] == Decimal("200.00")
    assert updated["total"] == Decimal("242.00")
    assert store.updates[-1]["items"][0]["description"] == "Workshop"


@pytest.mark.anyio
async def test_update_recomputes_totals_when_rate_changes(store):
    created = await documents_service.create_offerte(OfferteCreate.model_validate(_payload()))

    updated = await documents_service.update_offerte(
        created["id"], OfferteUpdate.model_validate({"btwPercentage": "0"})
    )

    assert updated["btw_amount"] == Decimal("0.00")
    assert updated["total"] == Decimal("260.99")
    assert store.updates[-1]["items"] is None


@pytest.mark.anyio
async def test_status_only_update_leaves_totals_alone(store):
    created = await documents_service.create_offerte(OfferteCreate.model_validate(_payload()))

    await documents_service.update_offerte(created["id"], OfferteUpdate.model_validate({"status": "verstuurd"}))

    assert store.updates[-1]["fields"] == {"status": "verstuurd"}


@pytest.mark.parametrize("field", ["status", "companyId", "date", "client", "items", "btwPercentage"])
def test_update_models_reject_explicit_null(field):
    with pytest.raises(ValidationError):
        OfferteUpdate.model_validate({field: None})
    with pytest.raises(ValidationError):
        FactuurUpdate.model_validate({field: None})


def test_update_model_leaves_omitted_fields_unset():
    update = OfferteUpdate.model_validate({"notes": None})

    assert update.model_fields_set == {"notes"}
    assert update.status is None


@pytest.mark.anyio
async def test_update_missing_document_returns_none(store):
    assert await documents_service.update_factuur(99, FactuurUpdate.model_validate({"notes": "x"})) is None


@pytest.mark.anyio
async def test_marking_factuur_paid_stamps_paid_at(store):
    created = await documents_service.create_factuur(FactuurCreate.model_validate(_payload()))

    updated = await documents_service.update_factuur(
        created["id"], FactuurUpdate.model_validate({"status": "betaald"})
    )

    assert updated["status"] == "betaald"
    assert isinstance(updated["paid_at"], datetime)


@pytest.mark.anyio
async def test_explicit_paid_at_is_kept(store):
    created = await documents_service.create_factuur(FactuurCreate.model_validate(_payload()))
    paid = datetime(2024, 1, 20, 12, 30, tzinfo=timezone.utc)

    updated = await documents_service.update_factuur(
        created["id"],
        FactuurUpdate.model_validate({"status": "betaald", "paidAt": paid.isoformat()}),
    )

    assert updated["paid_at"] == datetime(2024, 1, 20, 12, 30)


def test_to_response_nests_client_columns():
    record = {
        "id": 1,
        "number": "OF-240115-01",
        "client_name": "Bakkerij Jansen",
        "client_email": "info@jansen.nl",
        "total": Decimal("10.00"),
    }

    response = documents_service.to_response(record)

    assert response["client"]["name"] == "Bakkerij Jansen"
    assert response["client"]["email"] == "info@jansen.nl"
    assert response["client"]["kvk"] is None
    assert "client_name" not in response
    assert response["total"] == Decimal("10.00")


@pytest.mark.anyio
async def test_factuur_stats_counts_open_overdue_and_paid(monkeypatch):
    today = date(2024, 3, 20)
    monkeypatch.setattr(documents_service, "local_today", lambda: today)
    created = datetime(2024, 3, 2, tzinfo=timezone.utc)
    rows = [
        {"id": 1, "status": "verzonden", "total": Decimal("121.00"), "subtotal": Decimal("100.00"),
         "date": date(2024, 3, 1), "due_date": date(2024, 3, 31), "paid_at": None, "created_at": created},
        {"id": 2, "status": "verzonden", "total": Decimal("60.50"), "subtotal": Decimal("50.00"),
         "date": date(2024, 1, 5), "due_date": date(2024, 2, 4), "paid_at": None, "created_at": created},
        {"id": 3, "status": "betaald", "total": Decimal("242.00"), "subtotal": Decimal("200.00"),
         "date": date(2024, 3, 3), "due_date": date(2024, 4, 2),
         "paid_at": datetime(2024, 3, 10, tzinfo=timezone.utc), "created_at": created},
        {"id": 4, "status": "concept", "total": Decimal("10.00"), "subtotal": Decimal("8.26"),
         "date": date(2024, 3, 4), "due_date": None, "paid_at": None, "created_at": created},
    ]

    async def fake_list_stat_rows(table):
        return rows

    async def fake_list_documents(table, **filters):
        return []

    monkeypatch.setattr(documents_service.documents_repo, "list_stat_rows", fake_list_stat_rows)
    monkeypatch.setattr(documents_service.documents_repo, "list_documents", fake_list_documents)

    stats = await documents_service.get_factuur_stats()

    assert stats["open_facturen"] == 2
    assert stats["total_facturen"] == 4
    assert stats["total_open_amount"] == Decimal("181.50")
    assert stats["overdue_facturen"] == 1
    assert stats["paid_this_month"] == Decimal("242.00")
    assert stats["open_month_count"] == 1
    assert stats["revenue_month"] == Decimal("200.00")
    assert stats["revenue_year_incl"] == Decimal("242.00")
    assert stats["recent_facturen"] == []
