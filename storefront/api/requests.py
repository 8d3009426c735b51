"""
Pydantic models for API requests.
These define the contract between the API and external clients.

The checkout body is ``storefront.domain.CheckoutRequest``; only models
specific to API request parsing live here.
"""

import re
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

OTP_PATTERN = re.compile(r"^\d{6}$")


class CancelOtpRequest(BaseModel):
    """Request a cancellation OTP for a guest order."""

    order_id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3, max_length=255)


class CancelOrderRequest(BaseModel):
    order_id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3, max_length=255)
    otp: str
    reason: Optional[str] = Field(default=None, max_length=500)

    @field_validator("otp")
    @classmethod
    def otp_must_have_six_digits(cls, v: str) -> str:
        v = v.strip()
        if not OTP_PATTERN.match(v):
            raise ValueError("OTP must be 6 digits")
        return v


class RetryCancellationRequest(BaseModel):
    order_id: str = Field(..., min_length=1)


class ManifestRequest(BaseModel):
    order_ids: List[str] = Field(..., min_length=1, max_length=100)
