"""Boat, boat rule and location domain models."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import Field, field_serializer, field_validator

from .relations import Money, Relation, resolve_id, to_relation
from .reservation import _Document

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


class RuleType(str, Enum):
    """Advanced booking rule types."""

    MIN_HOURS = "minHours"
    SPECIAL_EVENT = "specialEvent"


class RuleDateMode(str, Enum):
    """How a special event rule selects its dates."""

    DAY = "day"
    DATE = "date"


class DiscountType(str, Enum):
    """Boat discount types."""

    FIXED = "fixed"
    PERCENTAGE = "percentage"
    B1G1 = "b1g1"
    BULK_FIXED = "bulk_fixed"
    BULK_PERCENTAGE = "bulk_percentage"


class BoatRule(_Document):
    """Minimum-hours or special-event rule overriding the boat's default."""

    rule_type: RuleType = RuleType.MIN_HOURS
    days: list[str] = Field(default_factory=list)
    min_hours: Optional[int] = Field(default=None, ge=1)
    special_event_name: Optional[str] = None
    date_mode: RuleDateMode = RuleDateMode.DAY
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    package_hours: Optional[int] = Field(default=None, ge=1)
    package_price: Optional[Money] = None

    @field_validator("days", mode="before")
    @classmethod
    def normalise_days(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = [v]
        return [str(d).strip().lower() for d in v or []]

    @field_validator("start_date", "end_date", mode="before")
    @classmethod
    def date_only(cls, v: Any) -> Any:
        if v == "":
            return None
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str) and "T" in v:
            return datetime.fromisoformat(v.replace("Z", "+00:00")).date()
        return v

    def applies_on_day(self, day: date) -> bool:
        """Whether the rule's day selector covers the given date."""
        weekday = WEEKDAY_NAMES[day.weekday()]
        for selector in self.days:
            if selector == "all" or selector == weekday:
                return True
            if selector == "weekdays" and day.weekday() < 5:
                return True
            if selector == "weekend" and day.weekday() >= 5:
                return True
        return False

    def applies_on(self, day: date) -> bool:
        """Whether the rule is in force on the given date."""
        if self.rule_type == RuleType.SPECIAL_EVENT and self.date_mode == RuleDateMode.DATE:
            if self.start_date is None:
                return False
            end = self.end_date or self.start_date
            return self.start_date <= day <= end
        return self.applies_on_day(day)


class BoatDiscount(_Document):
    """Discount configured on a boat."""

    type: DiscountType = DiscountType.FIXED
    variable: Optional[int] = Field(default=None, ge=1)
    amount: Money = Field(ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None


class Boat(_Document):
    """Boat listing: the pricing source of truth for reservations."""

    id: Optional[str] = None
    name: str = ""
    price: Money = Field(default=Decimal("0"), ge=0, description="Hourly rate")
    price_day: Money = Field(default=Decimal("0"), ge=0, description="Daily rate")
    min_hours: int = Field(default=1, ge=1)
    advanced_min_hours: list[BoatRule] = Field(default_factory=list)
    discounts: list[BoatDiscount] = Field(default_factory=list)
    location: Optional[Relation] = None

    @field_validator("location", mode="before")
    @classmethod
    def normalise_location(cls, v: Any) -> Any:
        return to_relation(v)

    @field_validator("discounts")
    @classmethod
    def validate_discount_combination(cls, v: list[BoatDiscount]) -> list[BoatDiscount]:
        """Ensure fixed and percentage discounts are never combined."""
        types = {d.type for d in v}
        if DiscountType.FIXED in types and DiscountType.PERCENTAGE in types:
            raise ValueError(
                "Cannot have both Fixed and Percentage discounts active at the same time. "
                "Please remove one."
            )
        return v

    @field_serializer("location")
    def serialize_location(self, value: Any) -> Optional[str]:
        return resolve_id(value)

    @property
    def location_id(self) -> Optional[str]:
        return resolve_id(self.location)

    def minimum_hours_on(self, day: date) -> int:
        """Minimum bookable hours on a date.

        Special events win over day rules, day rules over the boat default.
        """
        events = [
            r for r in self.advanced_min_hours
            if r.rule_type == RuleType.SPECIAL_EVENT and r.package_hours and r.applies_on(day)
        ]
        if events:
            return max(r.package_hours for r in events)

        day_rules = [
            r for r in self.advanced_min_hours
            if r.rule_type == RuleType.MIN_HOURS and r.min_hours and r.applies_on(day)
        ]
        if day_rules:
            return max(r.min_hours for r in day_rules)
        return self.min_hours


class Location(_Document):
    """Departure location (marina / harbour)."""

    id: Optional[str] = None
    name: str = ""
    harbour: str = ""
    city: str = ""
    country: str = ""

    @field_validator("name", "harbour", "city", "country", mode="before")
    @classmethod
    def none_to_blank(cls, v: Any) -> Any:
        return "" if v is None else v

    @property
    def label(self) -> str:
        """Display label: name, else harbour, else "city, country"."""
        if self.name.strip():
            return self.name.strip()
        if self.harbour.strip():
            return self.harbour.strip()
        return ", ".join(part for part in (self.city, self.country) if part)
