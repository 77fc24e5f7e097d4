from __future__ import annotations

from datetime import date as date_type, datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field, field_validator

OfferteStatus = Literal["concept", "opgeslagen", "verstuurd", "akkoord", "afgewezen", "verlopen"]
FactuurStatus = Literal["concept", "verzonden", "betaald", "te-laat", "geannuleerd"]


class Client(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    contact_person: str | None = Field(default=None, alias="contactPerson", max_length=255)
    email: str | None = Field(default=None, max_length=255)
    phone: str | None = Field(default=None, max_length=64)
    address: str | None = None
    kvk: str | None = Field(default=None, max_length=32)
    btw: str | None = Field(default=None, max_length=32)

    model_config = {"populate_by_name": True, "str_strip_whitespace": True}


class LineItem(BaseModel):
    id: int | None = None
    description: str = Field(min_length=1, max_length=512)
    details: str | None = None
    quantity: Decimal = Field(ge=0, max_digits=12, decimal_places=2)
    unit_price: Decimal = Field(alias="unitPrice", max_digits=12, decimal_places=2)
    section_title: str | None = Field(default=None, alias="sectionTitle", max_length=255)

    model_config = {"populate_by_name": True, "str_strip_whitespace": True}


class DocumentCreateBase(BaseModel):
    company_id: str = Field(alias="companyId", min_length=1, max_length=64)
    client: Client
    items: list[LineItem] = Field(min_length=1)
    btw_percentage: Decimal | None = Field(
        default=None, alias="btwPercentage", ge=0, le=100, max_digits=5, decimal_places=2
    )
    notes: str | None = None

    model_config = {"populate_by_name": True, "str_strip_whitespace": True}


class OfferteCreate(DocumentCreateBase):
    intro_text: str | None = Field(default=None, alias="introText")
    terms_text: str | None = Field(default=None, alias="termsText")


class FactuurCreate(DocumentCreateBase):
    offerte_id: int | None = Field(default=None, alias="offerteId")


class DocumentUpdateBase(BaseModel):
    company_id: str | None = Field(default=None, alias="companyId", min_length=1, max_length=64)
    client: Client | None = None
    date: date_type | None = None
    items: list[LineItem] | None = Field(default=None, min_length=1)
    btw_percentage: Decimal | None = Field(
        default=None, alias="btwPercentage", ge=0, le=100, max_digits=5, decimal_places=2
    )
    notes: str | None = None

    model_config = {"populate_by_name": True, "str_strip_whitespace": True}

    @field_validator(
        "company_id", "client", "date", "items", "btw_percentage", "status", "is_public",
        check_fields=False,
    )
    @classmethod
    def reject_null(cls, value, info):
        # These map onto NOT NULL columns; omit the key to leave them unchanged.
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value


class OfferteUpdate(DocumentUpdateBase):
    status: OfferteStatus | None = None
    valid_until: date_type | None = Field(default=None, alias="validUntil")
    intro_text: str | None = Field(default=None, alias="introText")
    terms_text: str | None = Field(default=None, alias="termsText")
    payment_url: str | None = Field(default=None, alias="paymentUrl", max_length=512)
    is_public: bool | None = Field(default=None, alias="isPublic")


class FactuurUpdate(DocumentUpdateBase):
    status: FactuurStatus | None = None
    due_date: date_type | None = Field(default=None, alias="dueDate")
    offerte_id: int | None = Field(default=None, alias="offerteId")
    paid_at: datetime | None = Field(default=None, alias="paidAt")
    mollie_payment_id: str | None = Field(default=None, alias="molliePaymentId", max_length=128)
    mollie_payment_url: str | None = Field(default=None, alias="molliePaymentUrl", max_length=512)


class DocumentResponseBase(BaseModel):
    id: int
    number: str
    slug: str
    company_id: str = Field(alias="companyId")
    client: Client
    date: date_type
    items: list[LineItem]
    subtotal: Decimal
    btw_percentage: Decimal = Field(alias="btwPercentage")
    btw_amount: Decimal = Field(alias="btwAmount")
    total: Decimal
    notes: str | None = None
    created_at: datetime | None = Field(default=None, alias="createdAt")
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    model_config = {"populate_by_name": True}


class OfferteResponse(DocumentResponseBase):
    status: OfferteStatus
    valid_until: date_type | None = Field(default=None, alias="validUntil")
    intro_text: str | None = Field(default=None, alias="introText")
    terms_text: str | None = Field(default=None, alias="termsText")
    payment_url: str | None = Field(default=None, alias="paymentUrl")
    is_public: bool = Field(default=False, alias="isPublic")
    approved_at: datetime | None = Field(default=None, alias="approvedAt")
    approved_by_name: str | None = Field(default=None, alias="approvedByName")
    approved_by_email: str | None = Field(default=None, alias="approvedByEmail")


class FactuurResponse(DocumentResponseBase):
    status: FactuurStatus
    due_date: date_type | None = Field(default=None, alias="dueDate")
    offerte_id: int | None = Field(default=None, alias="offerteId")
    paid_at: datetime | None = Field(default=None, alias="paidAt")
    mollie_payment_id: str | None = Field(default=None, alias="molliePaymentId")
    mollie_payment_url: str | None = Field(default=None, alias="molliePaymentUrl")


class OfferteStatsResponse(BaseModel):
    concept_offertes: int = Field(alias="conceptOffertes")
    open_offertes: int = Field(alias="openOffertes")
    total_offertes: int = Field(alias="totalOffertes")
    total_open_amount: Decimal = Field(alias="totalOpenAmount")
    akkoord_offertes: int = Field(alias="akkoordOffertes")
    akkoord_amount: Decimal = Field(alias="akkoordAmount")
    accepted_this_month: Decimal = Field(alias="acceptedThisMonth")
    open_month_count: int = Field(alias="openMonthCount")
    open_month_amount: Decimal = Field(alias="openMonthAmount")
    revenue_year: Decimal = Field(alias="revenueYear")
    revenue_year_incl: Decimal = Field(alias="revenueYearIncl")
    revenue_month: Decimal = Field(alias="revenueMonth")
    revenue_month_incl: Decimal = Field(alias="revenueMonthIncl")
    recent_offertes: list[OfferteResponse] = Field(alias="recentOffertes")

    model_config = {"populate_by_name": True}


class FactuurStatsResponse(BaseModel):
    open_facturen: int = Field(alias="openFacturen")
    total_facturen: int = Field(alias="totalFacturen")
    total_open_amount: Decimal = Field(alias="totalOpenAmount")
    overdue_facturen: int = Field(alias="overdueFacturen")
    paid_this_month: Decimal = Field(alias="paidThisMonth")
    open_month_count: int = Field(alias="openMonthCount")
    open_month_amount: Decimal = Field(alias="openMonthAmount")
    revenue_year: Decimal = Field(alias="revenueYear")
    revenue_year_incl: Decimal = Field(alias="revenueYearIncl")
    revenue_month: Decimal = Field(alias="revenueMonth")
    revenue_month_incl: Decimal = Field(alias="revenueMonthIncl")
    recent_facturen: list[FactuurResponse] = Field(alias="recentFacturen")

    model_config = {"populate_by_name": True}


class OfferteApprovalRequest(BaseModel):
    client_name: str | None = Field(default=None, alias="clientName", max_length=255)
    client_email: str | None = Field(default=None, alias="clientEmail", max_length=255)
    agreed_to_terms: bool = Field(default=False, alias="agreedToTerms")

    model_config = {"populate_by_name": True, "str_strip_whitespace": True}
