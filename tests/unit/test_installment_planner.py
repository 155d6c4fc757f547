"""Unit tests for the installment planner."""

from datetime import timedelta
from decimal import Decimal

import pytest

from charter.models.reservation import InstallmentStage, PaymentKind, PaymentStatus
from charter.services.installment_planner import (
    default_down_payment,
    normalise_installment_count,
    plan_full_payment,
    plan_installments,
    resolve_down_payment,
    split_installments,
)
from conftest import NOW


def test_split_distributes_remainder_to_first_installments():
    """Test 800 over 3 installments gives [267, 267, 266]."""
    amounts = split_installments(Decimal("800"), 3)

    assert amounts == [Decimal("267"), Decimal("267"), Decimal("266")]
    assert sum(amounts) == Decimal("800")


def test_split_puts_fraction_on_first_installment():
    amounts = split_installments(Decimal("800.50"), 3)

    assert amounts == [Decimal("267.50"), Decimal("267"), Decimal("266")]
    assert sum(amounts) == Decimal("800.50")


def test_split_with_no_installments_is_empty():
    assert split_installments(Decimal("100"), 0) == []


@pytest.mark.parametrize(
    "raw, expected",
    [(None, 3), ("", 3), ("abc", 3), (2, 2), (2.7, 2), ("4", 4), (-1, 0), (0, 0)],
)
def test_normalise_installment_count(raw, expected):
    assert normalise_installment_count(raw) == expected


def test_default_down_payment_rounds_half_up():
    assert default_down_payment(Decimal("900"), 2) == Decimal("300")
    assert default_down_payment(Decimal("1002"), 3) == Decimal("251")
    assert default_down_payment(Decimal("1001"), 3) == Decimal("250")
    assert default_down_payment(Decimal("2"), 5) == Decimal("1")
    assert default_down_payment(Decimal("0"), 3) == Decimal("0")


def test_explicit_down_payment_capped_at_total():
    assert resolve_down_payment(Decimal("500"), 2, Decimal("800")) == Decimal("500")
    assert resolve_down_payment(Decimal("500"), 2, Decimal("100")) == Decimal("100")
    assert resolve_down_payment(Decimal("500"), 2, Decimal("0")) == default_down_payment(
        Decimal("500"), 2
    )


def test_plan_with_explicit_down_payment():
    """Test total=1000, down=200, N=3 splits the 800 remainder exactly."""
    plan = plan_installments(Decimal("1000"), 3, Decimal("200"), NOW)

    assert [p.amount for p in plan] == [Decimal("200"), Decimal("267"), Decimal("267"), Decimal("266")]
    assert [p.balance for p in plan] == [Decimal("800"), Decimal("533"), Decimal("266"), Decimal("0")]
    assert sum(p.amount for p in plan) == Decimal("1000")


def test_plan_structure_and_due_dates():
    """Test total=900, N=2, no down payment gives 300/300/300 due at +0, +30, +60 days."""
    plan = plan_installments(Decimal("900"), 2, None, NOW)

    down, first, second = plan
    assert [p.amount for p in plan] == [Decimal("300")] * 3

    assert down.kind == PaymentKind.DOWNPAYMENT
    assert down.installment_stage == InstallmentStage.INSTALLED_READY_TO_BE_PAID
    assert down.date == NOW
    assert down.notes == "Down payment"

    for number, installment in enumerate((first, second), start=1):
        assert installment.kind == PaymentKind.INSTALLMENT
        assert installment.installment_stage == InstallmentStage.READY_TO_BE_INSTALLED
        assert installment.status == PaymentStatus.PENDING
        assert installment.date == NOW + timedelta(days=30 * number)
        assert installment.payment_link == ""
        assert installment.payment_link_id == ""
        assert installment.notes == f"Installment {number + 1} of 3"

    assert len({p.id for p in plan}) == 3


def test_plan_without_installments_is_single_down_payment():
    plan = plan_installments(Decimal("750"), 0, Decimal("100"), NOW)

    assert len(plan) == 1
    assert plan[0].amount == Decimal("750")
    assert plan[0].balance == Decimal("0")


def test_full_payment_obligation():
    payment = plan_full_payment(Decimal("500"), NOW)

    assert payment.kind == PaymentKind.FULL
    assert payment.amount == Decimal("500")
    assert payment.balance == Decimal("0")
    assert payment.installment_stage == InstallmentStage.INSTALLED_READY_TO_BE_PAID
    assert payment.notes == "Full payment"
