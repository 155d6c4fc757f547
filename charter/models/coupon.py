"""Coupon domain model."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import Field, field_validator

from .relations import Money, resolve_id
from .reservation import _Document


class CouponType(str, Enum):
    """Coupon discount type."""

    PERCENTAGE = "percentage"
    FIXED = "fixed"


class Coupon(_Document):
    """Discount coupon referenced by reservations."""

    id: Optional[str] = None
    code: str = Field(min_length=1)
    type: CouponType
    amount: Money = Field(ge=1)
    is_active: bool = True
    expires_at: Optional[datetime] = None
    usage_count: int = Field(default=0, ge=0)
    apply_to_all_boats: bool = False
    boats: list[str] = Field(default_factory=list)

    @field_validator("code", mode="before")
    @classmethod
    def normalise_code(cls, v: Any) -> Any:
        """Codes are unique case-insensitively: store trimmed upper-case."""
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("boats", mode="before")
    @classmethod
    def boat_ids(cls, v: Any) -> Any:
        return [resolve_id(b) for b in v or [] if resolve_id(b)]

    @field_validator("expires_at", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        return None if v == "" else v
