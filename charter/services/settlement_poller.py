"""Settlement poller.

Background job that asks the payment provider whether outstanding payment
links were paid, marks the matching obligations completed and confirms
reservations whose plan is fully settled.
"""

from dataclasses import dataclass
from typing import Optional

from charter.config import Settings
from charter.logging import get_logger
from charter.logging.audit import AuditLogger
from charter.models.boat import Boat
from charter.models.reservation import (
    InstallmentStage,
    PaymentStatus,
    Reservation,
    ReservationStatus,
)
from charter.services.installment_planner import plan_full_payment
from charter.services.notifications import ReservationNotifications
from charter.services.payment_gateway import PaymentGatewayClient, is_mock_link_id, is_real_link_id
from charter.services.reservation_lifecycle import BOATS, RESERVATIONS, ReservationLifecycle
from charter.services.runtime_scope import RuntimeScope
from charter.storage.document_store import DocumentNotFound, DocumentStore

logger = get_logger(__name__)


@dataclass(frozen=True)
class PollEntry:
    """One payment link to check, and the obligation it settles."""

    index: int
    link_id: str


def full_payment_link(reservation: Reservation) -> str:
    """
    Link id to poll for a full-payment reservation.

    A real provider id on the reservation wins over the first payment's
    id, so a mock id left on the payment never hides a real one.
    """
    top_level = reservation.payment_link_id.strip()
    first = reservation.payments[0].payment_link_id.strip() if reservation.payments else ""

    if is_real_link_id(top_level):
        return top_level
    return first or top_level


def entries_to_poll(reservation: Reservation) -> list[PollEntry]:
    """Payment entries of a reservation that may have been paid since the last poll."""
    if not reservation.uses_installments:
        link_id = full_payment_link(reservation)
        return [PollEntry(index=0, link_id=link_id)] if link_id else []

    entries = []
    for index, payment in enumerate(reservation.payments):
        if not payment.is_pending or not payment.is_activated:
            continue
        if payment.installment_stage != InstallmentStage.INSTALLED_READY_TO_BE_PAID:
            continue
        entries.append(PollEntry(index=index, link_id=payment.payment_link_id.strip()))
    return entries


class SettlementPoller:
    """Background job confirming payments captured at the provider."""

    def __init__(
        self,
        store: DocumentStore,
        gateway: PaymentGatewayClient,
        lifecycle: ReservationLifecycle,
        notifications: ReservationNotifications,
        scope: RuntimeScope,
        settings: Settings,
    ):
        """
        Initialize settlement poller.

        Args:
            store: Document store holding reservations and boats
            gateway: Payment provider client
            lifecycle: Reservation write path (system writes, no actor)
            notifications: Reservation email builder
            scope: Shared runtime scope (throttle map, processed markers)
            settings: Application settings
        """
        self.store = store
        self.gateway = gateway
        self.lifecycle = lifecycle
        self.notifications = notifications
        self.scope = scope
        self.settings = settings

    async def tick(self) -> dict[str, int]:
        """
        Poll every reservation awaiting payment once.

        Returns:
            Dictionary with counts: checked, captured, confirmed, failed
        """
        stats = {"checked": 0, "captured": 0, "confirmed": 0, "failed": 0}

        try:
            documents = await self.store.find(
                RESERVATIONS,
                where={"status": {"equals": ReservationStatus.AWAITING_PAYMENT.value}},
            )
        except Exception as e:
            logger.error("settlement_poll_error", error=str(e), exc_info=True)
            return stats

        for document in documents:
            try:
                await self._poll_reservation(Reservation.from_document(document), stats)
            except Exception as e:
                stats["failed"] += 1
                logger.error(
                    "settlement_poll_reservation_failed",
                    reservation_id=document.get("id"),
                    error=str(e),
                    exc_info=True,
                )

        if stats["checked"]:
            logger.info("settlement_poll_completed", **stats)
        return stats

    async def _poll_reservation(self, reservation: Reservation, stats: dict[str, int]) -> None:
        if not reservation.id:
            return
        if not reservation.boat_id:
            logger.warning("settlement_poll_skipped_no_boat", reservation_id=reservation.id)
            return

        for entry in entries_to_poll(reservation):
            if is_mock_link_id(entry.link_id):
                continue
            if not self.scope.claim_link_check(entry.link_id, self.settings.link_check_throttle_seconds):
                continue

            key = f"{reservation.id}-{entry.index}-{entry.link_id}"
            if key in self.scope.processed_payments:
                continue

            stats["checked"] += 1
            if not await self.gateway.query_captured(entry.link_id):
                continue

            recorded, updated = await self._record_capture(reservation.id, entry)
            self.scope.processed_payments.add(key)
            if recorded:
                stats["captured"] += 1

            if updated is not None and updated.status == ReservationStatus.CONFIRMED:
                stats["confirmed"] += 1
                await self._announce_confirmation(updated)

            if not reservation.uses_installments:
                break

    async def _record_capture(
        self, reservation_id: str, entry: PollEntry
    ) -> tuple[bool, Optional[Reservation]]:
        """
        Mark the captured obligation completed.

        The change is computed on the reservation as it stands at write
        time, and recomputed if another writer gets in first. An obligation
        already completed (or a reservation no longer awaiting payment) is
        left untouched.

        Returns:
            Whether this call recorded the capture, and the reservation when
            this call confirmed it
        """
        now = self.scope.now()
        outcome: dict = {}

        def mark_paid(fresh: Reservation) -> Optional[dict]:
            outcome.clear()
            if fresh.status != ReservationStatus.AWAITING_PAYMENT:
                logger.info(
                    "capture_ignored_status",
                    reservation_id=reservation_id,
                    status=fresh.status.value,
                )
                return None

            payments = [p.model_copy() for p in fresh.payments]
            installments = fresh.uses_installments
            if not payments and not installments:
                synthesised = plan_full_payment(
                    fresh.total_price, now, self.settings.payment_method_label
                )
                synthesised.payment_link = fresh.payment_link
                synthesised.payment_link_id = entry.link_id
                payments.append(synthesised)

            if entry.index >= len(payments):
                logger.warning(
                    "captured_payment_missing",
                    reservation_id=reservation_id,
                    payment_index=entry.index,
                )
                return None

            payment = payments[entry.index]
            if payment.status == PaymentStatus.COMPLETED:
                return None

            payment.status = PaymentStatus.COMPLETED
            payment.paid_at = now
            payment.payment_link_id = entry.link_id
            if installments:
                payment.installment_stage = InstallmentStage.PAID

            fully_paid = all(p.status == PaymentStatus.COMPLETED for p in payments)
            changes: dict = {"payments": [p.to_document() for p in payments]}
            if fully_paid:
                changes["status"] = ReservationStatus.CONFIRMED.value
            if not installments:
                changes["paymentLinkId"] = entry.link_id
            outcome.update(kind=payment.kind.value, fully_paid=fully_paid)
            return changes

        try:
            updated = await self.lifecycle.modify(reservation_id, mark_paid)
        except DocumentNotFound:
            logger.warning("captured_reservation_missing", reservation_id=reservation_id)
            return False, None
        if not outcome:
            return False, None

        logger.info(
            "payment_captured",
            reservation_id=reservation_id,
            payment_index=entry.index,
            kind=outcome["kind"],
            link_id=entry.link_id,
            fully_paid=outcome["fully_paid"],
        )
        AuditLogger.log_payment_captured(
            reservation_id, entry.index, entry.link_id, outcome["fully_paid"]
        )
        return True, updated if outcome["fully_paid"] else None

    async def _announce_confirmation(self, reservation: Reservation) -> None:
        document = await self.store.find_by_id(BOATS, reservation.boat_id)
        if document is None:
            logger.warning(
                "confirmation_skipped_boat_missing",
                reservation_id=reservation.id,
                boat_id=reservation.boat_id,
            )
            return
        await self.notifications.payment_confirmed(reservation, Boat.model_validate(document))
