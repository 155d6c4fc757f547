"""Models package - Pydantic domain models."""

from .boat import Boat, BoatDiscount, BoatRule, DiscountType, Location, RuleDateMode, RuleType
from .coupon import Coupon, CouponType
from .relations import Expanded, Money, Reference, Relation, resolve_id, to_relation
from .reservation import (
    FULFILMENT_FIELDS,
    InstallmentStage,
    Payment,
    PaymentKind,
    PaymentMethod,
    PaymentStatus,
    Reservation,
    ReservationStatus,
)

__all__ = [
    "Boat",
    "BoatDiscount",
    "BoatRule",
    "DiscountType",
    "Location",
    "RuleDateMode",
    "RuleType",
    "Coupon",
    "CouponType",
    "Expanded",
    "Money",
    "Reference",
    "Relation",
    "resolve_id",
    "to_relation",
    "FULFILMENT_FIELDS",
    "InstallmentStage",
    "Payment",
    "PaymentKind",
    "PaymentMethod",
    "PaymentStatus",
    "Reservation",
    "ReservationStatus",
]
