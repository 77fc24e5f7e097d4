from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from backoffice.api.dependencies.auth import require_operator
from backoffice.api.dependencies.database import require_database
from backoffice.repositories import documents as documents_repo
from backoffice.repositories.documents import FACTUREN, OFFERTES
from backoffice.schemas.documents import (
    FactuurCreate,
    FactuurResponse,
    FactuurStatsResponse,
    FactuurUpdate,
)
from backoffice.services import documents as documents_service
from backoffice.services.document_numbering import NumberAllocationExhausted

router = APIRouter(prefix="/api/facturen", tags=["Facturen"])

ALL = "alle"


def _filter_value(value: str | None) -> str | None:
    if not value or value == ALL:
        return None
    return value


async def _ensure_offerte_exists(offerte_id: int | None) -> None:
    if offerte_id is None:
        return
    if not await documents_repo.get_document(OFFERTES, offerte_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Offerte not found")


@router.get("", response_model=list[FactuurResponse])
async def list_facturen(
    status_filter: str | None = Query(default=None, alias="status"),
    company: str | None = Query(default=None),
    search: str | None = Query(default=None),
    _: None = Depends(require_database),
    __: str = Depends(require_operator),
):
    records = await documents_repo.list_documents(
        FACTUREN,
        status=_filter_value(status_filter),
        company_id=_filter_value(company),
        search=(search or "").strip() or None,
    )
    return [FactuurResponse.model_validate(documents_service.to_response(record)) for record in records]


@router.post("", response_model=FactuurResponse, status_code=status.HTTP_201_CREATED)
async def create_factuur(
    payload: FactuurCreate,
    _: None = Depends(require_database),
    __: str = Depends(require_operator),
):
    await _ensure_offerte_exists(payload.offerte_id)
    try:
        created = await documents_service.create_factuur(payload)
    except NumberAllocationExhausted as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Kon geen uniek factuurnummer maken",
        ) from exc
    return FactuurResponse.model_validate(documents_service.to_response(created))


@router.get("/stats", response_model=FactuurStatsResponse)
async def factuur_stats(
    _: None = Depends(require_database),
    __: str = Depends(require_operator),
):
    stats = await documents_service.get_factuur_stats()
    return FactuurStatsResponse.model_validate(stats)


@router.get("/{factuur_id}", response_model=FactuurResponse)
async def get_factuur(
    factuur_id: int,
    _: None = Depends(require_database),
    __: str = Depends(require_operator),
):
    record = await documents_repo.get_document(FACTUREN, factuur_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Factuur not found")
    return FactuurResponse.model_validate(documents_service.to_response(record))


@router.patch("/{factuur_id}", response_model=FactuurResponse)
async def update_factuur(
    factuur_id: int,
    payload: FactuurUpdate,
    _: None = Depends(require_database),
    __: str = Depends(require_operator),
):
    if "offerte_id" in payload.model_fields_set:
        await _ensure_offerte_exists(payload.offerte_id)
    updated = await documents_service.update_factuur(factuur_id, payload)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Factuur not found")
    return FactuurResponse.model_validate(documents_service.to_response(updated))


@router.delete("/{factuur_id}")
async def delete_factuur(
    factuur_id: int,
    _: None = Depends(require_database),
    __: str = Depends(require_operator),
):
    existing = await documents_repo.get_document(FACTUREN, factuur_id)
    if not existing:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Factuur not found")
    await documents_repo.delete_document(FACTUREN, factuur_id)
    return {"ok": True}
