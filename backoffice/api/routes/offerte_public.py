"""Client-facing offerte page: read a public offerte by slug and approve it.

These routes carry no operator authentication; the unguessable slug and the
``is_public`` flag gate access.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status

from backoffice.api.dependencies.database import require_database
from backoffice.core.logging import log_warning
from backoffice.schemas.documents import OfferteApprovalRequest, OfferteResponse
from backoffice.services import documents as documents_service

router = APIRouter(prefix="/api/offerte-public", tags=["Offertes"])


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


async def _load_public(slug: str) -> dict:
    try:
        return await documents_service.get_public_offerte(slug)
    except documents_service.OfferteNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Offerte not found") from exc
    except documents_service.OfferteNotPublic as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Offerte is not public") from exc


@router.get("/{slug}", response_model=OfferteResponse)
async def get_public_offerte(slug: str, _: None = Depends(require_database)):
    record = await _load_public(slug)
    return OfferteResponse.model_validate(documents_service.to_response(record))


@router.post("/{slug}/approve")
async def approve_offerte(
    slug: str,
    payload: OfferteApprovalRequest,
    request: Request,
    _: None = Depends(require_database),
):
    record = await _load_public(slug)
    if record.get("status") == documents_service.ACCEPTED_STATUS or record.get("approved_at"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Already approved")
    if not payload.client_name or not payload.client_email or not payload.agreed_to_terms:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required fields")

    try:
        await documents_service.approve_offerte(
            slug,
            client_name=payload.client_name,
            client_email=payload.client_email,
            client_ip=_client_ip(request),
            user_agent=request.headers.get("user-agent"),
        )
    except documents_service.OfferteNotFound as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Offerte not found") from exc
    except documents_service.OfferteAlreadyApproved as exc:
        log_warning("Concurrent offerte approval rejected", slug=slug)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Already approved") from exc
    return {"ok": True}
