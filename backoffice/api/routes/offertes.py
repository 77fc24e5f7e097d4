from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from backoffice.api.dependencies.auth import require_operator
from backoffice.api.dependencies.database import require_database
from backoffice.repositories import documents as documents_repo
from backoffice.repositories.documents import OFFERTES
from backoffice.schemas.documents import (
    OfferteCreate,
    OfferteResponse,
    OfferteStatsResponse,
    OfferteUpdate,
)
from backoffice.services import documents as documents_service
from backoffice.services.document_numbering import NumberAllocationExhausted

router = APIRouter(prefix="/api/offertes", tags=["Offertes"])

ALL = "alle"


def _filter_value(value: str | None) -> str | None:
    if not value or value == ALL:
        return None
    return value


@router.get("", response_model=list[OfferteResponse])
async def list_offertes(
    status_filter: str | None = Query(default=None, alias="status"),
    company: str | None = Query(default=None),
    search: str | None = Query(default=None),
    _: None = Depends(require_database),
    __: str = Depends(require_operator),
):
    records = await documents_repo.list_documents(
        OFFERTES,
        status=_filter_value(status_filter),
        company_id=_filter_value(company),
        search=(search or "").strip() or None,
    )
    return [OfferteResponse.model_validate(documents_service.to_response(record)) for record in records]


@router.post("", response_model=OfferteResponse, status_code=status.HTTP_201_CREATED)
async def create_offerte(
    payload: OfferteCreate,
    _: None = Depends(require_database),
    __: str = Depends(require_operator),
):
    try:
        created = await documents_service.create_offerte(payload)
    except NumberAllocationExhausted as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Kon geen uniek offertenummer maken",
        ) from exc
    return OfferteResponse.model_validate(documents_service.to_response(created))


@router.get("/stats", response_model=OfferteStatsResponse)
async def offerte_stats(
    _: None = Depends(require_database),
    __: str = Depends(require_operator),
):
    stats = await documents_service.get_offerte_stats()
    return OfferteStatsResponse.model_validate(stats)


@router.get("/{offerte_id}", response_model=OfferteResponse)
async def get_offerte(
    offerte_id: int,
    _: None = Depends(require_database),
    __: str = Depends(require_operator),
):
    record = await documents_repo.get_document(OFFERTES, offerte_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Offerte not found")
    return OfferteResponse.model_validate(documents_service.to_response(record))


@router.patch("/{offerte_id}", response_model=OfferteResponse)
async def update_offerte(
    offerte_id: int,
    payload: OfferteUpdate,
    _: None = Depends(require_database),
    __: str = Depends(require_operator),
):
    updated = await documents_service.update_offerte(offerte_id, payload)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Offerte not found")
    return OfferteResponse.model_validate(documents_service.to_response(updated))


@router.delete("/{offerte_id}")
async def delete_offerte(
    offerte_id: int,
    _: None = Depends(require_database),
    __: str = Depends(require_operator),
):
    existing = await documents_repo.get_document(OFFERTES, offerte_id)
    if not existing:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Offerte not found")
    await documents_repo.delete_document(OFFERTES, offerte_id)
    return {"ok": True}
