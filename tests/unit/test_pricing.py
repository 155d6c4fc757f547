"""Unit tests for the pricing calculator."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from charter.models.boat import Boat
from charter.services.pricing import (
    billable_hours,
    calculate_total_price,
    quote,
    should_recalculate_price,
)

START = datetime(2026, 4, 6, 9, 0, tzinfo=timezone.utc)  # a Monday
HOURLY = Decimal("100")
DAILY = Decimal("2000")


@pytest.mark.parametrize(
    "duration, expected",
    [
        (timedelta(hours=5), Decimal("500")),
        (timedelta(hours=1, minutes=30), Decimal("200")),
        (timedelta(hours=23), Decimal("2300")),
        (timedelta(hours=23, minutes=59), Decimal("2000")),
        (timedelta(hours=24), Decimal("2000")),
        (timedelta(hours=30), Decimal("4000")),
        (timedelta(hours=49), Decimal("6000")),
    ],
)
def test_calculate_total_price(duration, expected):
    """Test hourly pricing below a day and per-day pricing from 24 hours."""
    assert calculate_total_price(HOURLY, DAILY, START, START + duration) == expected


def test_inverted_or_missing_range_is_free():
    """Test end before start, equal times and missing times price at zero."""
    assert calculate_total_price(HOURLY, DAILY, START, START - timedelta(hours=2)) == 0
    assert calculate_total_price(HOURLY, DAILY, START, START) == 0
    assert calculate_total_price(HOURLY, DAILY, None, START) == 0
    assert calculate_total_price(HOURLY, DAILY, START, None) == 0


def test_billable_hours_rounds_up_partial_hours():
    assert billable_hours(START, START + timedelta(minutes=1)) == 1
    assert billable_hours(START, START + timedelta(hours=3)) == 3


class TestShouldRecalculatePrice:
    """Tests for the explicit-price trust boundary."""

    def test_public_create_ignores_supplied_price(self):
        assert should_recalculate_price(
            is_create=True,
            trusted=False,
            explicit_price=Decimal("1"),
            stored_price=None,
            dependent_changed=True,
        )

    def test_operator_create_keeps_explicit_price(self):
        assert not should_recalculate_price(
            is_create=True,
            trusted=True,
            explicit_price=Decimal("750"),
            stored_price=None,
            dependent_changed=True,
        )

    def test_create_without_price_is_computed(self):
        assert should_recalculate_price(
            is_create=True,
            trusted=True,
            explicit_price=None,
            stored_price=None,
            dependent_changed=True,
        )

    def test_update_without_dependent_change_keeps_price(self):
        assert not should_recalculate_price(
            is_create=False,
            trusted=True,
            explicit_price=None,
            stored_price=Decimal("500"),
            dependent_changed=False,
        )

    def test_update_with_new_explicit_price_keeps_it_even_when_times_move(self):
        assert not should_recalculate_price(
            is_create=False,
            trusted=True,
            explicit_price=Decimal("650"),
            stored_price=Decimal("500"),
            dependent_changed=True,
        )

    def test_update_resending_stored_price_with_moved_times_recomputes(self):
        assert should_recalculate_price(
            is_create=False,
            trusted=True,
            explicit_price=Decimal("500"),
            stored_price=Decimal("500"),
            dependent_changed=True,
        )

    def test_untrusted_update_recomputes_only_on_dependent_change(self):
        assert should_recalculate_price(
            is_create=False,
            trusted=False,
            explicit_price=Decimal("1"),
            stored_price=Decimal("500"),
            dependent_changed=True,
        )
        assert not should_recalculate_price(
            is_create=False,
            trusted=False,
            explicit_price=Decimal("1"),
            stored_price=Decimal("500"),
            dependent_changed=False,
        )


def test_quote_reports_minimum_hours_rules():
    """Test special events win over day rules, which win over the boat default."""
    boat = Boat(
        name="Sea Breeze",
        price=100,
        price_day=2000,
        min_hours=2,
        advanced_min_hours=[
            {"ruleType": "minHours", "days": ["weekend"], "minHours": 4},
            {
                "ruleType": "specialEvent",
                "specialEventName": "New Year",
                "dateMode": "date",
                "startDate": "2026-12-31",
                "endDate": "2027-01-01",
                "packageHours": 6,
                "packagePrice": 5000,
            },
        ],
    )

    weekday = quote(boat, START, START + timedelta(hours=3))
    assert weekday.total == Decimal("300")
    assert weekday.minimum_hours == 2
    assert weekday.meets_minimum

    saturday = START + timedelta(days=5)
    weekend = quote(boat, saturday, saturday + timedelta(hours=3))
    assert weekend.minimum_hours == 4
    assert not weekend.meets_minimum

    new_year = datetime(2026, 12, 31, 20, 0, tzinfo=timezone.utc)
    assert quote(boat, new_year, new_year + timedelta(hours=6)).minimum_hours == 6
