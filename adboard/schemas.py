"""
Pydantic schemas for form validation and responses.

This module contains:
- The category enumeration used to bucket ads
- The ad submission form model
- Response models
"""

from datetime import datetime
from enum import Enum
from typing import Optional

import phonenumbers
from phonenumbers import PhoneNumberFormat, PhoneNumberType
from pydantic import BaseModel, Field, ValidationInfo, field_validator


class Category(str, Enum):
    """Fixed set of ad groups, in display order."""
    CLOTHING = "clothing"
    SPORTS = "sports"
    COSMETICS = "cosmetics"
    JEWELRY = "jewelry"
    FOOD = "food"
    ELECTRONICS = "electronics"
    MEDICAL = "medical"
    AUTOMOBILE = "automobile"
    EDUCATION = "education"


CATEGORIES = tuple(c.value for c in Category)

MOBILE_NUMBER_TYPES = {PhoneNumberType.MOBILE, PhoneNumberType.FIXED_LINE_OR_MOBILE}


# =============================================================================
# Form Models
# =============================================================================

class AdSubmission(BaseModel):
    """
    Validated ad submission form.

    Validates:
    - phone: a valid mobile number, stored in E.164 form; national
      numbers need `phone_region` in the validation context
    - city: non-empty after trimming
    - address: optional, empty string when absent
    - group: lower-cased; checked against Category when the validation
      context sets `reject_unknown_categories`
    """
    phone: str = Field(..., description="Contact phone number")
    city: str = Field(..., description="City the ad belongs to")
    address: str = Field(default="", description="Street address")
    group: str = Field(..., description="Ad category")

    @field_validator("phone", "city", "address", "group", mode="before")
    @classmethod
    def strip_whitespace(cls, v):
        if v is None:
            return v
        return str(v).strip()

    @field_validator("phone")
    @classmethod
    def validate_mobile_phone(cls, v: str, info: ValidationInfo) -> str:
        """Parse with libphonenumber; only mobile numbers are accepted."""
        region = (info.context or {}).get("phone_region")
        try:
            number = phonenumbers.parse(v, region)
        except phonenumbers.NumberParseException:
            raise ValueError("Invalid phone number")
        if not phonenumbers.is_valid_number(number):
            raise ValueError("Invalid phone number")
        if phonenumbers.number_type(number) not in MOBILE_NUMBER_TYPES:
            raise ValueError("Invalid phone number: not a mobile number")
        return phonenumbers.format_number(number, PhoneNumberFormat.E164)

    @field_validator("city")
    @classmethod
    def validate_city(cls, v: str) -> str:
        if not v:
            raise ValueError("City is required")
        return v

    @field_validator("group")
    @classmethod
    def validate_group(cls, v: str, info: ValidationInfo) -> str:
        if not v:
            raise ValueError("Group is required")
        v = v.lower()
        context = info.context or {}
        if context.get("reject_unknown_categories", True) and v not in CATEGORIES:
            raise ValueError(f"Unknown group; expected one of: {', '.join(CATEGORIES)}")
        return v


# =============================================================================
# Response Models
# =============================================================================

class Confirmation(BaseModel):
    """Result of a successful submission."""
    id: int
    phone: str
    category: str
    image_url: str = ""
    created_at: datetime


class HealthResponse(BaseModel):
    """Response model for health check endpoints."""
    status: str = Field(..., description="Health status")
    reason: Optional[str] = Field(None, description="Reason if not ready")
