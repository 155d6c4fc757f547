"""Payment plans: down payment plus evenly split installments."""

from datetime import datetime, timedelta
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

from charter.models.reservation import InstallmentStage, Payment, PaymentKind

DEFAULT_INSTALLMENTS = 3
INSTALLMENT_INTERVAL = timedelta(days=30)


def _millis(moment: datetime) -> int:
    return int(moment.timestamp() * 1000)


def normalise_installment_count(raw: Any) -> int:
    """Installment count: default 3 when missing or non-numeric, floored, never negative."""
    try:
        count = Decimal(str(raw)) if raw is not None and raw != "" else None
    except InvalidOperation:
        count = None
    if count is None or not count.is_finite():
        return DEFAULT_INSTALLMENTS
    return max(0, int(count.to_integral_value(rounding=ROUND_FLOOR)))


def default_down_payment(total: Decimal, count: int) -> Decimal:
    """round(total / (count + 1)), at least 1, capped at total."""
    if total <= 0:
        return Decimal("0")
    share = (total / (count + 1)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return min(max(Decimal("1"), share), total)


def resolve_down_payment(total: Decimal, count: int, requested: Optional[Decimal] = None) -> Decimal:
    """Down payment amount for a plan; an explicit positive request wins, capped at total."""
    if count == 0:
        return total
    if requested is not None and requested > 0:
        return min(Decimal(requested), total)
    return default_down_payment(total, count)


def split_installments(remainder: Decimal, count: int) -> list[Decimal]:
    """
    Split ``remainder`` into ``count`` amounts that sum to it exactly.

    Whole units are distributed by largest remainder: every installment gets
    ``floor(whole / count)`` and the first ``whole % count`` get one more.
    A fractional part of the remainder is added to the first installment.

    >>> split_installments(Decimal("800"), 3)
    [Decimal('267'), Decimal('267'), Decimal('266')]
    """
    if count <= 0:
        return []
    remainder = max(Decimal("0"), Decimal(remainder))
    whole = remainder.to_integral_value(rounding=ROUND_FLOOR)
    fraction = remainder - whole
    base, extra = divmod(int(whole), count)
    amounts = [Decimal(base + (1 if i < extra else 0)) for i in range(count)]
    amounts[0] += fraction
    return amounts


def plan_installments(
    total: Decimal,
    installment_count: Any,
    down_payment: Optional[Decimal],
    now: datetime,
    method: str = "Mamo Pay",
) -> list[Payment]:
    """
    Build an installment plan.

    The down payment comes first, active immediately (its link is created by
    the caller). Installments follow, due every 30 days from ``now`` and left
    without a link until they are activated.

    Args:
        total: Reservation total price
        installment_count: Requested number of installments (after the down payment)
        down_payment: Explicit down payment amount, if any
        now: Plan creation time
        method: Payment method label stored on each obligation

    Returns:
        Ordered payment obligations summing to ``total``
    """
    total = max(Decimal("0"), Decimal(total))
    count = normalise_installment_count(installment_count)
    down = resolve_down_payment(total, count, down_payment)
    amounts = split_installments(total - down, count)
    stamp = _millis(now)

    remaining = total - down
    plan = [
        Payment(
            id=f"downpayment-{stamp}",
            kind=PaymentKind.DOWNPAYMENT,
            installment_stage=InstallmentStage.INSTALLED_READY_TO_BE_PAID,
            amount=down,
            balance=remaining,
            method=method,
            date=now,
            created_at=now,
            installed_at=now,
            notes="Down payment",
        )
    ]
    for i, amount in enumerate(amounts):
        remaining -= amount
        plan.append(
            Payment(
                id=f"installment-{i + 1}-{stamp}",
                kind=PaymentKind.INSTALLMENT,
                installment_stage=InstallmentStage.READY_TO_BE_INSTALLED,
                amount=amount,
                balance=remaining,
                method=method,
                date=now + INSTALLMENT_INTERVAL * (i + 1),
                created_at=now,
                # Numbered with the down payment as installment 1
                notes=f"Installment {i + 2} of {count + 1}",
            )
        )
    return plan


def plan_full_payment(total: Decimal, now: datetime, method: str = "Mamo Pay") -> Payment:
    """Single obligation settling the whole reservation."""
    return Payment(
        id=f"full-{_millis(now)}",
        kind=PaymentKind.FULL,
        installment_stage=InstallmentStage.INSTALLED_READY_TO_BE_PAID,
        amount=max(Decimal("0"), Decimal(total)),
        balance=Decimal("0"),
        method=method,
        date=now,
        created_at=now,
        installed_at=now,
        notes="Full payment",
    )
