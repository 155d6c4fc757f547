"""Reservation and payment obligation domain models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from .relations import Money, Relation, resolve_id, to_relation


class ReservationStatus(str, Enum):
    """Reservation status enumeration."""

    PENDING = "pending"
    AWAITING_PAYMENT = "awaiting payment"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """How the guest settles the reservation."""

    FULL = "full"
    INSTALLMENTS = "installments"


class PaymentKind(str, Enum):
    """Kind of payment obligation."""

    FULL = "full"
    DOWNPAYMENT = "downpayment"
    INSTALLMENT = "installment"


class InstallmentStage(str, Enum):
    """Activation sub-state of a payment obligation."""

    READY_TO_BE_INSTALLED = "ready_to_be_installed"
    INSTALLED_READY_TO_BE_PAID = "installed_ready_to_be_paid"
    PAID = "paid"


class PaymentStatus(str, Enum):
    """Settlement status of a payment obligation."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class _Document(BaseModel):
    """Base for models persisted as camelCase store documents."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_document(self, exclude_none: bool = True) -> dict[str, Any]:
        """Serialise to a JSON-compatible store document."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=exclude_none)


def _blank_to_none(value: Any) -> Any:
    return None if value == "" else value


def _none_to_blank(value: Any) -> Any:
    return "" if value is None else value


class Payment(_Document):
    """One payment obligation within a reservation's payment plan."""

    id: str
    kind: PaymentKind = PaymentKind.FULL
    installment_stage: Optional[InstallmentStage] = None
    amount: Money = Field(ge=0)
    balance: Money = Decimal("0")
    status: PaymentStatus = PaymentStatus.PENDING
    method: str = "Mamo Pay"
    date: Optional[datetime] = Field(default=None, description="Due date or payment date")
    created_at: Optional[datetime] = None
    installed_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    # Empty string means "no link created yet"
    payment_link: str = ""
    payment_link_id: str = ""
    notes: str = ""

    @field_validator(
        "installment_stage", "date", "created_at", "installed_at", "paid_at", mode="before"
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """Treat legacy empty strings as unset."""
        return _blank_to_none(v)

    @field_validator("payment_link", "payment_link_id", "notes", "method", mode="before")
    @classmethod
    def none_to_blank(cls, v: Any) -> Any:
        return _none_to_blank(v)

    @property
    def is_activated(self) -> bool:
        """Whether a provider link exists for this obligation."""
        return bool(self.payment_link_id.strip())

    @property
    def is_pending(self) -> bool:
        return self.status == PaymentStatus.PENDING


FULFILMENT_FIELDS: dict[str, str] = {
    "meeting_point_name": "Meeting Point - Name",
    "meeting_point_pin": "Meeting Point - Google Maps Pin",
    "contact_person_name": "Contact Person - Name",
    "contact_person_number": "Contact Person - Number",
    "parking_location_name": "Car Parking Location - Name",
    "parking_location_pin": "Car Parking Location - Google Maps Pin",
}


class Reservation(_Document):
    """Boat charter reservation."""

    id: Optional[str] = None
    transaction_id: Optional[str] = Field(
        default=None, description="Customer-facing booking id, immutable after creation"
    )
    boat: Optional[Relation] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    status: ReservationStatus = ReservationStatus.PENDING

    total_price: Money = Decimal("0")
    boat_hourly_price: Money = Decimal("0")
    boat_daily_price: Money = Decimal("0")

    payment_method: PaymentMethod = PaymentMethod.FULL
    number_of_installments: Optional[int] = 3
    down_payment_amount: Optional[Money] = None
    payments: list[Payment] = Field(default_factory=list)
    payment_link: str = ""
    payment_link_id: str = ""
    method: str = "Mamo Pay"

    coupon: Optional[Relation] = None
    coupon_code: Optional[str] = None

    meeting_point_name: str = ""
    meeting_point_pin: str = ""
    contact_person_name: str = ""
    contact_person_number: str = ""
    parking_location_name: str = ""
    parking_location_pin: str = ""
    departure_location: str = ""

    guests: Optional[int] = None
    user: Optional[str] = None
    guest_name: str = ""
    guest_email: str = ""
    guest_phone: str = ""
    special_requests: str = ""

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("boat", "coupon", mode="before")
    @classmethod
    def normalise_relation(cls, v: Any) -> Any:
        """Accept bare ids, expanded documents or tagged relations."""
        return to_relation(v)

    @field_validator(
        "start_time", "end_time", "down_payment_amount", "created_at", "updated_at", mode="before"
    )
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        return _blank_to_none(v)

    @field_validator(
        "payment_link",
        "payment_link_id",
        "meeting_point_name",
        "meeting_point_pin",
        "contact_person_name",
        "contact_person_number",
        "parking_location_name",
        "parking_location_pin",
        "departure_location",
        "guest_name",
        "guest_email",
        "guest_phone",
        "special_requests",
        "method",
        mode="before",
    )
    @classmethod
    def none_to_blank(cls, v: Any) -> Any:
        return _none_to_blank(v)

    @field_validator("payments", mode="before")
    @classmethod
    def drop_empty_payments(cls, v: Any) -> Any:
        if v is None:
            return []
        return [p for p in v if p]

    @field_serializer("boat", "coupon")
    def serialize_relation(self, value: Any) -> Optional[str]:
        """Relations are stored as plain ids."""
        return resolve_id(value)

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "Reservation":
        """Build a reservation from a raw store document."""
        return cls.model_validate(document)

    @property
    def boat_id(self) -> Optional[str]:
        return resolve_id(self.boat)

    @property
    def coupon_id(self) -> Optional[str]:
        return resolve_id(self.coupon)

    @property
    def booking_reference(self) -> str:
        """Booking id shown to guests."""
        return self.transaction_id or self.id or ""

    @property
    def uses_installments(self) -> bool:
        return self.payment_method == PaymentMethod.INSTALLMENTS

    @property
    def all_paid(self) -> bool:
        """Whether every obligation of the plan is settled."""
        return bool(self.payments) and all(
            p.status == PaymentStatus.COMPLETED for p in self.payments
        )

    def missing_fulfilment_fields(self) -> list[str]:
        """Human labels of the fulfilment fields that are still blank."""
        return [
            label
            for name, label in FULFILMENT_FIELDS.items()
            if not str(getattr(self, name) or "").strip()
        ]
