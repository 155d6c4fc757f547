"""Booking price calculation and the price trust boundary."""

import math
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from charter.models.boat import Boat

HOURS_PER_DAY = 24


def billable_hours(start: Optional[datetime], end: Optional[datetime]) -> int:
    """Whole hours between start and end, rounded up (0 for an empty range)."""
    if start is None or end is None or end <= start:
        return 0
    return math.ceil((end - start).total_seconds() / 3600)


def calculate_total_price(
    hourly_rate: Decimal,
    daily_rate: Decimal,
    start: Optional[datetime],
    end: Optional[datetime],
) -> Decimal:
    """
    Price a charter.

    Bookings of 24 hours or more are charged per started day at the daily
    rate, shorter ones per started hour at the hourly rate. A missing or
    inverted time range is priced at zero rather than rejected.

    Args:
        hourly_rate: Boat hourly price
        daily_rate: Boat daily price
        start: Charter start
        end: Charter end

    Returns:
        Total price
    """
    hours = billable_hours(start, end)
    if hours == 0:
        return Decimal("0")
    if hours >= HOURS_PER_DAY:
        days = math.ceil(hours / HOURS_PER_DAY)
        return Decimal(days) * Decimal(daily_rate or 0)
    return Decimal(hours) * Decimal(hourly_rate or 0)


@dataclass(frozen=True)
class PriceQuote:
    """Price of a charter together with the boat's minimum-hours rule."""

    hours: int
    total: Decimal
    minimum_hours: int

    @property
    def meets_minimum(self) -> bool:
        return self.hours >= self.minimum_hours


def quote(boat: Boat, start: Optional[datetime], end: Optional[datetime]) -> PriceQuote:
    """Price a charter of ``boat`` and report its minimum-hours rule for the start day."""
    total = calculate_total_price(boat.price, boat.price_day, start, end)
    minimum = boat.minimum_hours_on(start.date()) if start is not None else boat.min_hours
    return PriceQuote(hours=billable_hours(start, end), total=total, minimum_hours=minimum)


def should_recalculate_price(
    *,
    is_create: bool,
    trusted: bool,
    explicit_price: Optional[Decimal],
    stored_price: Optional[Decimal],
    dependent_changed: bool,
) -> bool:
    """
    Decide whether the server computes ``totalPrice`` for a write.

    Untrusted (public) writes never keep a supplied price. Trusted writes
    keep an explicit price, except an update that re-sends the stored price
    unchanged while the boat or times moved.

    Args:
        is_create: Whether the write creates the reservation
        trusted: Whether an authenticated actor made the write
        explicit_price: Price supplied with the write, if any
        stored_price: Price currently stored (None on create)
        dependent_changed: Whether boat, start or end changed

    Returns:
        True when the price must be computed from the boat rates
    """
    if not trusted or explicit_price is None:
        return is_create or dependent_changed
    return (
        not is_create
        and dependent_changed
        and stored_price is not None
        and Decimal(explicit_price) == Decimal(stored_price)
    )
