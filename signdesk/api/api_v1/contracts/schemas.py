# =====================================================
# FILE: signdesk/api/api_v1/contracts/schemas.py
# Contract API Schemas (administrator surface)
# =====================================================

from pydantic import BaseModel, EmailStr, Field, validator
from typing import Optional, Dict
from datetime import date
from decimal import Decimal
from enum import Enum

from signdesk.models.contract import BillingInterval
from signdesk.services.contract_service import REQUIRED_ON_UPDATE


class DocumentKind(str, Enum):
    UNSIGNED = "unsigned"
    SIGNED = "signed"


def _strip_required(v):
    if v is None or not v.strip():
        raise ValueError('Field cannot be empty')
    return v.strip()


def _blank_to_none(v):
    if v is None:
        return None
    return v.strip() or None


# =====================================================
# CONTRACT CREATE REQUEST
# =====================================================

class ContractCreateRequest(BaseModel):
    """
    New subscription agreement draft.
    Reviewer fields are optional; a reviewer email routes the draft via review.
    """
    company_id: Optional[int] = Field(None, description="Owning organization")
    tier: str = Field(..., min_length=1, max_length=100)
    annual_price: Decimal = Field(..., gt=0)
    currency: str = Field("SEK", min_length=3, max_length=3)
    billing_interval: BillingInterval = Field(BillingInterval.ANNUAL)
    vat_rate_pct: Decimal = Field(Decimal("25"), ge=0, le=100)
    contract_start_date: date
    contract_duration_months: int = Field(12, gt=0, le=120)
    custom_terms: Dict[str, str] = Field(default_factory=dict)

    signer_name: str = Field(..., min_length=1, max_length=255)
    signer_email: EmailStr
    signer_title: Optional[str] = Field(None, max_length=255)

    reviewer_name: Optional[str] = Field(None, max_length=255)
    reviewer_email: Optional[EmailStr] = None
    reviewer_title: Optional[str] = Field(None, max_length=255)

    @validator('tier', 'signer_name')
    def validate_required_text(cls, v):
        return _strip_required(v)

    @validator('signer_title', 'reviewer_name', 'reviewer_title')
    def validate_optional_text(cls, v):
        return _blank_to_none(v)

    @validator('currency')
    def validate_currency(cls, v):
        return v.upper()

    class Config:
        use_enum_values = True


# =====================================================
# CONTRACT UPDATE REQUEST
# =====================================================

class ContractUpdateRequest(BaseModel):
    """Partial update of a draft; omitted fields are left unchanged"""
    company_id: Optional[int] = None
    tier: Optional[str] = Field(None, min_length=1, max_length=100)
    annual_price: Optional[Decimal] = Field(None, gt=0)
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    billing_interval: Optional[BillingInterval] = None
    vat_rate_pct: Optional[Decimal] = Field(None, ge=0, le=100)
    contract_start_date: Optional[date] = None
    contract_duration_months: Optional[int] = Field(None, gt=0, le=120)
    custom_terms: Optional[Dict[str, str]] = None

    signer_name: Optional[str] = Field(None, min_length=1, max_length=255)
    signer_email: Optional[EmailStr] = None
    signer_title: Optional[str] = Field(None, max_length=255)

    reviewer_name: Optional[str] = Field(None, max_length=255)
    reviewer_email: Optional[EmailStr] = None
    reviewer_title: Optional[str] = Field(None, max_length=255)

    # Omit a field to keep it; only signer_title and reviewer_* may be cleared
    @validator(*REQUIRED_ON_UPDATE, pre=True)
    def validate_not_null(cls, v):
        if v is None:
            raise ValueError('Field cannot be null')
        return v

    @validator('currency')
    def validate_currency(cls, v):
        return v.upper() if v else v

    class Config:
        use_enum_values = True


class ContractCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)

