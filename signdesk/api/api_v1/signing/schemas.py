# =====================================================
# FILE: signdesk/api/api_v1/signing/schemas.py
# Public signing payloads
# =====================================================

from pydantic import BaseModel, Field, validator
from typing import Optional


class SignContractRequest(BaseModel):
    """Signature submitted from the public signing page"""
    signer_name: str = Field(..., min_length=1, max_length=255)
    signer_title: Optional[str] = Field(None, max_length=255)
    signature_image: str = Field(..., min_length=100, description="Base64 PNG, optionally as a data URL")

    @validator('signer_name')
    def validate_signer_name(cls, v):
        if not v.strip():
            raise ValueError('Signer name cannot be empty')
        return v.strip()
