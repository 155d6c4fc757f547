"""Integration tests for installment activation and reminders."""

from datetime import timedelta

import pytest

from charter.models.reservation import InstallmentStage, Reservation
from charter.services.installment_scheduler import InstallmentActivationScheduler
from charter.services.reservation_lifecycle import ReservationLifecycle
from conftest import NOW, book_awaiting_payment, live_gateway


@pytest.fixture
def engine(store, settings, scope, notifications, retry_policy, clock, provider):
    """Lifecycle and activation scheduler sharing a gateway backed by the provider stub."""
    gateway = live_gateway(settings, scope, provider)
    lifecycle = ReservationLifecycle(store, gateway, notifications, settings, retry_policy, clock=clock)
    activation = InstallmentActivationScheduler(store, gateway, lifecycle, notifications, scope)
    return lifecycle, activation


def seeded_reservation(first_due, paid=False):
    """Installment reservation whose first installment is already activated."""
    return {
        "id": "res-seeded",
        "transactionId": "BTB-5EED0001",
        "boat": "boat-1",
        "status": "awaiting payment",
        "paymentMethod": "installments",
        "totalPrice": 900,
        "guestName": "Layla",
        "guestEmail": "layla@example.com",
        "payments": [
            {
                "id": "downpayment-1",
                "kind": "downpayment",
                "installmentStage": "paid",
                "amount": 300,
                "status": "completed",
                "paymentLinkId": "MB-LINK-DOWN",
            },
            {
                "id": "installment-1-1",
                "kind": "installment",
                "installmentStage": "paid" if paid else "installed_ready_to_be_paid",
                "amount": 300,
                "status": "completed" if paid else "pending",
                "date": first_due.isoformat(),
                "paymentLink": "https://pay.example.com/MB-LINK-I1",
                "paymentLinkId": "MB-LINK-I1",
            },
            {
                "id": "installment-2-1",
                "kind": "installment",
                "installmentStage": "ready_to_be_installed",
                "amount": 300,
                "date": (first_due + timedelta(days=30)).isoformat(),
            },
        ],
    }


def reminder_subjects(notifier):
    return [subject for _, subject, _ in notifier.outbox if subject.startswith("Reminder:")]


class TestActivation:
    """Tests for creating links for due installments."""

    @pytest.mark.asyncio
    async def test_nothing_due_before_first_interval(self, engine):
        lifecycle, activation = engine
        await book_awaiting_payment(lifecycle, paymentMethod="installments", numberOfInstallments=2)

        stats = await activation.run()

        assert stats["activated"] == 0

    @pytest.mark.asyncio
    async def test_due_installment_activated(self, engine, store, clock, notifier, provider):
        lifecycle, activation = engine
        reservation = await book_awaiting_payment(
            lifecycle, paymentMethod="installments", numberOfInstallments=2
        )

        clock.advance(days=30)
        stats = await activation.run()

        assert stats["activated"] == 1
        stored = Reservation.from_document(await store.find_by_id("reservations", reservation.id))
        _, first, second = stored.payments
        assert first.payment_link_id == "MB-LINK-TEST0002"
        assert first.installment_stage == InstallmentStage.INSTALLED_READY_TO_BE_PAID
        assert first.installed_at == clock()
        assert not second.is_activated
        assert stored.status.value == "awaiting payment"

        subjects = [s for _, s, _ in notifier.outbox]
        assert "Payment Request: Installment 2 of 3 for Sea Breeze" in subjects
        assert "[Admin] Installment 2 of 3 requested: Sea Breeze" in subjects

    @pytest.mark.asyncio
    async def test_installment_activated_once(self, engine, clock, provider):
        lifecycle, activation = engine
        await book_awaiting_payment(lifecycle, paymentMethod="installments", numberOfInstallments=2)
        clock.advance(days=31)

        await activation.run()
        stats = await activation.run()

        assert stats["activated"] == 0
        link_requests = [r for r in provider.requests if r.method == "POST"]
        assert len(link_requests) == 2

    @pytest.mark.asyncio
    async def test_all_overdue_installments_activated(self, engine, store, clock):
        lifecycle, activation = engine
        reservation = await book_awaiting_payment(
            lifecycle, paymentMethod="installments", numberOfInstallments=2
        )
        clock.advance(days=61)

        stats = await activation.run()

        assert stats["activated"] == 2
        stored = Reservation.from_document(await store.find_by_id("reservations", reservation.id))
        assert all(p.is_activated for p in stored.payments)

    @pytest.mark.asyncio
    async def test_full_payment_reservations_ignored(self, engine, clock, provider):
        lifecycle, activation = engine
        await book_awaiting_payment(lifecycle)
        clock.advance(days=60)

        stats = await activation.run()

        assert stats == {"activated": 0, "reminders_scheduled": 0, "reminders_sent": 0, "failed": 0}


class TestReminders:
    """Tests for installment reminder scheduling."""

    @pytest.mark.asyncio
    async def test_overdue_installment_reminded_on_next_run(self, engine, clock, notifier):
        lifecycle, activation = engine
        await book_awaiting_payment(lifecycle, paymentMethod="installments", numberOfInstallments=2)
        clock.advance(days=30)

        first = await activation.run()
        second = await activation.run()
        third = await activation.run()

        assert first["reminders_sent"] == 0
        assert second["reminders_scheduled"] == 1
        assert second["reminders_sent"] == 1
        assert third["reminders_sent"] == 0
        assert reminder_subjects(notifier) == ["Reminder: Installment 2 of 3 for Sea Breeze is Due"]
        assert "is overdue" in notifier.outbox[-1][2]

    @pytest.mark.asyncio
    async def test_future_reminder_sent_a_day_before_due(self, store, engine, scope, clock, notifier):
        _, activation = engine
        await store.create("reservations", seeded_reservation(first_due=NOW + timedelta(days=3)))

        stats = await activation.run()

        assert stats["reminders_scheduled"] == 1
        assert stats["reminders_sent"] == 0
        reminder = scope.installment_reminders["res-seeded-1"]
        assert reminder.scheduled_time == NOW + timedelta(days=2)

        clock.advance(days=2)
        stats = await activation.run()

        assert stats["reminders_sent"] == 1
        assert reminder.sent
        assert "is due on" in notifier.outbox[-1][2]

    @pytest.mark.asyncio
    async def test_paid_installment_not_reminded(self, store, engine, scope, clock, notifier):
        _, activation = engine
        await store.create("reservations", seeded_reservation(first_due=NOW + timedelta(days=3)))
        await activation.run()

        paid = seeded_reservation(first_due=NOW + timedelta(days=3), paid=True)
        await store.update("reservations", "res-seeded", {"payments": paid["payments"]})
        clock.advance(days=2)
        stats = await activation.run()

        assert stats["reminders_sent"] == 0
        assert scope.installment_reminders["res-seeded-1"].sent
        assert reminder_subjects(notifier) == []

    @pytest.mark.asyncio
    async def test_sent_reminders_pruned_after_a_week(self, store, engine, scope, clock):
        _, activation = engine
        await store.create("reservations", seeded_reservation(first_due=NOW))
        await activation.run()
        assert scope.installment_reminders["res-seeded-1"].sent

        clock.advance(days=8)
        await activation.run()

        assert "res-seeded-1" not in scope.installment_reminders
