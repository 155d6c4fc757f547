"""Installment activation scheduler.

Background job that creates payment links for installments whose due date
has arrived and reminds guests about activated installments that are due
soon or overdue.
"""

from datetime import datetime, timedelta
from typing import Optional

from charter.logging import get_logger
from charter.logging.audit import AuditEventType, AuditLogger
from charter.models.boat import Boat
from charter.models.reservation import (
    InstallmentStage,
    Payment,
    PaymentKind,
    PaymentMethod,
    Reservation,
    ReservationStatus,
)
from charter.services.notifications import ReservationNotifications
from charter.services.payment_gateway import PaymentGatewayClient, booking_link_text
from charter.services.reservation_lifecycle import BOATS, RESERVATIONS, ReservationLifecycle
from charter.services.runtime_scope import InstallmentReminder, RuntimeScope
from charter.storage.document_store import DocumentNotFound, DocumentStore

logger = get_logger(__name__)

REMINDER_LEAD_TIME = timedelta(hours=24)
REMINDER_RETENTION = timedelta(days=7)


def is_due_for_activation(payment: Payment, now: datetime) -> bool:
    """Scheduled installment, still unpaid, without a link, due date reached."""
    return (
        payment.kind == PaymentKind.INSTALLMENT
        and payment.installment_stage == InstallmentStage.READY_TO_BE_INSTALLED
        and payment.is_pending
        and not payment.is_activated
        and payment.date is not None
        and payment.date <= now
    )


def needs_reminder(payment: Payment) -> bool:
    """Activated installment that is still unpaid."""
    return (
        payment.kind == PaymentKind.INSTALLMENT
        and payment.installment_stage == InstallmentStage.INSTALLED_READY_TO_BE_PAID
        and payment.is_pending
        and bool(payment.payment_link)
        and payment.date is not None
    )


class InstallmentActivationScheduler:
    """Activates due installments and sends installment reminders."""

    def __init__(
        self,
        store: DocumentStore,
        gateway: PaymentGatewayClient,
        lifecycle: ReservationLifecycle,
        notifications: ReservationNotifications,
        scope: RuntimeScope,
    ):
        """
        Initialize activation scheduler.

        Args:
            store: Document store holding reservations and boats
            gateway: Payment provider client
            lifecycle: Reservation write path (system writes, no actor)
            notifications: Reservation email builder
            scope: Shared runtime scope (activation keys, reminder map)
        """
        self.store = store
        self.gateway = gateway
        self.lifecycle = lifecycle
        self.notifications = notifications
        self.scope = scope

    async def run(self) -> dict[str, int]:
        """
        Execute one activation and reminder pass.

        Returns:
            Dictionary with counts: activated, reminders_scheduled,
            reminders_sent, failed
        """
        logger.info("installment_scheduler_started")
        stats = {"activated": 0, "reminders_scheduled": 0, "reminders_sent": 0, "failed": 0}
        now = self.scope.now()

        try:
            documents = await self.store.find(
                RESERVATIONS,
                where={
                    "and": [
                        {"status": {"equals": ReservationStatus.AWAITING_PAYMENT.value}},
                        {"paymentMethod": {"equals": PaymentMethod.INSTALLMENTS.value}},
                    ]
                },
                depth=1,
            )
        except Exception as e:
            logger.error("installment_scheduler_error", error=str(e), exc_info=True)
            return stats

        reservations = []
        for document in documents:
            try:
                reservation = Reservation.from_document(document)
                reservations.append(reservation)
                stats["activated"] += await self._activate_due(reservation, now)
            except Exception as e:
                stats["failed"] += 1
                logger.error(
                    "installment_activation_failed",
                    reservation_id=document.get("id"),
                    error=str(e),
                    exc_info=True,
                )

        # Reminders work from the documents as loaded: an installment
        # activated in this pass gets its first reminder on a later run.
        stats["reminders_scheduled"] = self._schedule_reminders(reservations, now)
        stats["reminders_sent"] = await self._send_reminders(now)
        self._prune_reminders(now)

        logger.info("installment_scheduler_completed", **stats)
        return stats

    async def _boat_for(self, reservation: Reservation) -> Optional[Boat]:
        if reservation.boat is not None and reservation.boat.record is not None:
            return Boat.model_validate(reservation.boat.record)
        if not reservation.boat_id:
            return None
        document = await self.store.find_by_id(BOATS, reservation.boat_id)
        return Boat.model_validate(document) if document is not None else None

    async def _activate_due(self, reservation: Reservation, now: datetime) -> int:
        """Create links for due installments of one reservation; returns how many."""
        due = [
            (index, payment)
            for index, payment in enumerate(reservation.payments)
            if is_due_for_activation(payment, now)
        ]
        if not due:
            return 0

        boat = await self._boat_for(reservation)
        if boat is None:
            logger.warning(
                "installment_activation_skipped_boat_missing",
                reservation_id=reservation.id,
                boat_id=reservation.boat_id,
            )
            return 0

        title, description = booking_link_text(reservation, boat)
        total = len(reservation.payments)
        activated: dict[int, Payment] = {}

        for index, payment in due:
            key = f"{reservation.id}-{payment.id or index}"
            if key in self.scope.activated_installments:
                continue
            self.scope.activated_installments.add(key)

            link = await self.gateway.create_link(
                payment.amount,
                title,
                description,
                {
                    "external_id": reservation.id,
                    "installment_number": index + 1,
                    "total_installments": total,
                },
            )
            if link is None:
                logger.warning(
                    "installment_link_not_created",
                    reservation_id=reservation.id,
                    installment_number=index + 1,
                )
                AuditLogger.log_payment_link_failed(
                    reservation.id, index + 1, "Provider returned no link for the installment"
                )
                continue

            activated[index] = payment.model_copy(
                update={
                    "payment_link": link.url,
                    "payment_link_id": link.id,
                    "installment_stage": InstallmentStage.INSTALLED_READY_TO_BE_PAID,
                    "installed_at": now,
                }
            )

        if not activated:
            return 0

        updated = await self._persist_activation(reservation.id, activated)
        if updated is None:
            return 0

        for index, payment in sorted(activated.items()):
            logger.info(
                "installment_activated",
                reservation_id=reservation.id,
                installment_number=index + 1,
                total_installments=total,
                link_id=payment.payment_link_id,
            )
            AuditLogger.log_installment_activated(reservation.id, index + 1, payment.payment_link_id)
            await self.notifications.installment_due(updated, boat, index + 1, total, payment)
        return len(activated)

    async def _persist_activation(
        self, reservation_id: str, activated: dict[int, Payment]
    ) -> Optional[Reservation]:
        """Apply activated link fields onto the current stored payments and write them.

        Entries another writer already settled or activated are dropped from
        ``activated``.
        """
        applied: set[int] = set()

        def attach_links(fresh: Reservation) -> Optional[dict]:
            applied.clear()
            if fresh.status != ReservationStatus.AWAITING_PAYMENT:
                return None
            payments = fresh.payments
            for index, payment in activated.items():
                if index >= len(payments) or payments[index].id != payment.id:
                    continue
                if payments[index].is_activated or not payments[index].is_pending:
                    continue
                payments[index] = payments[index].model_copy(
                    update={
                        "payment_link": payment.payment_link,
                        "payment_link_id": payment.payment_link_id,
                        "installment_stage": payment.installment_stage,
                        "installed_at": payment.installed_at,
                    }
                )
                applied.add(index)
            if not applied:
                return None
            return {"payments": [p.to_document() for p in payments]}

        try:
            updated = await self.lifecycle.modify(reservation_id, attach_links)
        except DocumentNotFound:
            logger.warning("activation_reservation_missing", reservation_id=reservation_id)
            return None
        if not applied:
            logger.info("activation_discarded", reservation_id=reservation_id)
            return None
        for index in set(activated) - applied:
            del activated[index]
        return updated

    def _schedule_reminders(self, reservations: list[Reservation], now: datetime) -> int:
        scheduled = 0
        for reservation in reservations:
            for index, payment in enumerate(reservation.payments):
                if not needs_reminder(payment):
                    continue
                key = f"{reservation.id}-{index}"
                if key in self.scope.installment_reminders:
                    continue
                remind_at = payment.date - REMINDER_LEAD_TIME
                self.scope.installment_reminders[key] = InstallmentReminder(
                    reservation_id=reservation.id,
                    payment_index=index,
                    scheduled_time=now if payment.date <= now else remind_at,
                )
                scheduled += 1
        return scheduled

    async def _send_reminders(self, now: datetime) -> int:
        sent = 0
        for key, reminder in list(self.scope.installment_reminders.items()):
            if reminder.sent or reminder.scheduled_time > now:
                continue
            try:
                if await self._send_reminder(reminder, now):
                    sent += 1
            except Exception as e:
                logger.error("installment_reminder_failed", reminder=key, error=str(e), exc_info=True)
        return sent

    async def _send_reminder(self, reminder: InstallmentReminder, now: datetime) -> bool:
        document = await self.store.find_by_id(RESERVATIONS, reminder.reservation_id, depth=1)
        if document is None:
            reminder.sent = True
            return False
        reservation = Reservation.from_document(document)
        if reservation.status != ReservationStatus.AWAITING_PAYMENT or reminder.payment_index >= len(
            reservation.payments
        ):
            reminder.sent = True
            return False

        payment = reservation.payments[reminder.payment_index]
        if not needs_reminder(payment):
            # Paid (or otherwise settled) since it was scheduled
            reminder.sent = True
            return False

        boat = await self._boat_for(reservation)
        if boat is None:
            logger.warning("installment_reminder_skipped_boat_missing", reservation_id=reservation.id)
            return False

        number = reminder.payment_index + 1
        total = len(reservation.payments)
        await self.notifications.installment_reminder(
            reservation, boat, number, total, payment, overdue=payment.date <= now
        )
        reminder.sent = True

        AuditLogger.log_event(
            event_type=AuditEventType.INSTALLMENT_REMINDER_SENT,
            actor_id=None,
            resource_type="payment",
            resource_id=f"{reservation.id}:{reminder.payment_index}",
            action=f"Reminder for installment {number} of {total}",
        )
        return True

    def _prune_reminders(self, now: datetime) -> None:
        cutoff = now - REMINDER_RETENTION
        for key, reminder in list(self.scope.installment_reminders.items()):
            if reminder.sent and reminder.scheduled_time < cutoff:
                del self.scope.installment_reminders[key]
