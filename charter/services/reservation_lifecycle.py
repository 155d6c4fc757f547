"""Reservation write path.

Every create or update runs three phases in order:

1. before-change: status guard (the only hard failure), transaction id,
   price and boat-rate snapshot, coupon code snapshot;
2. persist, awaited before anything else can observe the new state;
3. after-change: coupon usage count, payment plan creation on entering
   "awaiting payment", status notifications.

Failures in phase 3 and in price calculation are logged and never undo or
block the write.
"""

import secrets
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

from charter.config import Settings
from charter.logging import get_logger
from charter.logging.audit import AuditLogger
from charter.models.boat import Boat, Location
from charter.models.coupon import Coupon
from charter.models.relations import Expanded
from charter.models.reservation import Reservation, ReservationStatus
from charter.services.errors import RelatedDocumentNotFound, ReservationValidationError
from charter.services.installment_planner import plan_full_payment, plan_installments
from charter.services.notifications import ReservationNotifications
from charter.services.payment_gateway import PaymentGatewayClient, booking_link_text
from charter.services.pricing import calculate_total_price, quote, should_recalculate_price
from charter.services.reservation_state_machine import transition
from charter.services.retry import RetryPolicy, is_write_conflict
from charter.services.runtime_scope import utcnow
from charter.storage.document_store import DocumentNotFound, DocumentStore

logger = get_logger(__name__)

RESERVATIONS = "reservations"
BOATS = "boats"
COUPONS = "coupons"
LOCATIONS = "locations"

_SERVER_MANAGED = ("id", "createdAt", "updatedAt")


def _document_keys(data: dict[str, Any]) -> dict[str, Any]:
    """Accept snake_case input keys; the store speaks camelCase."""
    normalised = {}
    for key, value in data.items():
        if "_" in key:
            head, *rest = key.split("_")
            key = head + "".join(part.capitalize() for part in rest)
        normalised[key] = value
    return normalised


def _explicit_price(data: dict[str, Any]) -> Optional[Decimal]:
    raw = data.get("totalPrice")
    if raw is None or raw == "":
        return None
    try:
        return Decimal(str(raw))
    except InvalidOperation:
        return None


class ReservationLifecycle:
    """Creates and updates reservations, running the booking business rules."""

    def __init__(
        self,
        store: DocumentStore,
        gateway: PaymentGatewayClient,
        notifications: ReservationNotifications,
        settings: Settings,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the write path.

        Args:
            store: Document store holding reservations, boats, coupons
            gateway: Payment link client
            notifications: Reservation email builder
            settings: Application settings
            retry_policy: Policy for writes that may hit conflicts
            clock: Returns the current aware datetime
        """
        self.store = store
        self.gateway = gateway
        self.notifications = notifications
        self.settings = settings
        self.retry = retry_policy or RetryPolicy()
        self.clock = clock or utcnow

    async def create(self, data: dict[str, Any], actor: Optional[str] = None) -> Reservation:
        """
        Create a reservation.

        Args:
            data: Reservation fields (camelCase or snake_case keys)
            actor: Authenticated operator id; None for public booking requests

        Returns:
            The persisted reservation, including any payment plan created

        Raises:
            ReservationValidationError: The initial status is not allowed or
                its guard fails
        """
        data = _document_keys(data)
        data.pop("id", None)
        explicit_price = _explicit_price(data)
        candidate = Reservation.from_document(data)

        try:
            transition(None, candidate.status, candidate)
        except ReservationValidationError as e:
            AuditLogger.log_transition_rejected(actor, "new", candidate.status.value, str(e))
            raise

        if not candidate.transaction_id:
            candidate.transaction_id = self._new_transaction_id()

        await self._before_change(candidate, None, explicit_price, actor)

        document = await self.store.create(RESERVATIONS, candidate.to_document())
        saved = Reservation.from_document(document)

        logger.info(
            "reservation_created",
            reservation_id=saved.id,
            transaction_id=saved.transaction_id,
            status=saved.status.value,
            total_price=float(saved.total_price),
        )
        AuditLogger.log_reservation_created(actor, saved.id, saved.transaction_id, saved.total_price)

        return await self._after_change(saved, None, actor)

    async def update(
        self, id: str, data: dict[str, Any], actor: Optional[str] = None
    ) -> Reservation:
        """
        Update a reservation.

        Only fields that differ from the stored document are written.

        Args:
            id: Reservation id
            data: Fields to change (camelCase or snake_case keys)
            actor: Authenticated operator id; None for background tasks

        Returns:
            The persisted reservation after after-change actions

        Raises:
            DocumentNotFound: No reservation with this id
            ReservationValidationError: The status change is not allowed or
                its guard fails
            WriteConflictError: Concurrent writers kept winning until the
                retry policy gave up
        """
        return await self.modify(id, lambda current: data, actor)

    async def modify(
        self,
        id: str,
        build_changes: Callable[[Reservation], Optional[dict[str, Any]]],
        actor: Optional[str] = None,
    ) -> Reservation:
        """
        Update a reservation from changes computed on its current state.

        Each attempt reads the reservation and its version, calls
        ``build_changes`` with it, validates the status change against that
        read and writes the diff only if nobody wrote in between. On a write
        conflict the whole cycle starts again from a fresh read, so a status
        change is always checked against the state it replaces.

        Args:
            id: Reservation id
            build_changes: Returns the fields to change, or None to leave the
                reservation untouched
            actor: Authenticated operator id; None for background tasks

        Returns:
            The persisted reservation after after-change actions
        """
        try:
            saved, previous = await self.retry.run(
                lambda: self._write_once(id, build_changes, actor)
            )
        except Exception as e:
            # Exhausted conflicts propagate so background callers leave
            # their processed markers unset.
            if is_write_conflict(e):
                logger.error(
                    "reservation_write_conflict_exhausted",
                    reservation_id=id,
                    actor=actor,
                    error=str(e),
                )
            raise
        if saved is previous:
            return previous
        return await self._after_change(saved, previous, actor)

    async def _write_once(
        self,
        id: str,
        build_changes: Callable[[Reservation], Optional[dict[str, Any]]],
        actor: Optional[str],
    ) -> tuple[Reservation, Reservation]:
        loaded = await self.store.find_versioned(RESERVATIONS, id)
        if loaded is None:
            raise DocumentNotFound(RESERVATIONS, id)
        stored, version = loaded
        previous = Reservation.from_document(stored)

        data = build_changes(previous)
        if data is None:
            return previous, previous
        data = _document_keys(data)
        data.pop("id", None)

        if "transactionId" in data and data["transactionId"] != previous.transaction_id:
            logger.warning("transaction_id_change_ignored", reservation_id=id)
        data.pop("transactionId", None)

        explicit_price = _explicit_price(data)
        candidate = Reservation.from_document({**stored, **data})

        try:
            transition(previous.status, candidate.status, candidate)
        except ReservationValidationError as e:
            AuditLogger.log_transition_rejected(actor, id, candidate.status.value, str(e))
            raise

        await self._before_change(candidate, previous, explicit_price, actor)

        baseline = previous.to_document(exclude_none=False)
        changes = {
            key: value
            for key, value in candidate.to_document(exclude_none=False).items()
            if key not in _SERVER_MANAGED and baseline.get(key) != value
        }
        if not changes:
            return previous, previous

        document = await self.store.update(RESERVATIONS, id, changes, expected_version=version)
        logger.info("reservation_updated", reservation_id=id, fields=sorted(changes))
        return Reservation.from_document(document), previous

    def _new_transaction_id(self) -> str:
        """Generate booking id in format BTB-XXXXXXXX."""
        return f"BTB-{secrets.token_hex(4).upper()}"

    async def _load_boat(self, boat_id: Optional[str]) -> Boat:
        if not boat_id:
            raise RelatedDocumentNotFound(BOATS, boat_id)
        document = await self.store.find_by_id(BOATS, boat_id, depth=1)
        if document is None:
            raise RelatedDocumentNotFound(BOATS, boat_id)
        return Boat.model_validate(document)

    async def _departure_label(self, boat: Boat) -> str:
        location = boat.location
        if location is None:
            return ""
        if isinstance(location, Expanded):
            return Location.model_validate(location.record).label
        document = await self.store.find_by_id(LOCATIONS, location.id)
        if document is None:
            logger.warning("location_not_found", boat_id=boat.id, location_id=location.id)
            return ""
        return Location.model_validate(document).label

    async def _before_change(
        self,
        candidate: Reservation,
        previous: Optional[Reservation],
        explicit_price: Optional[Decimal],
        actor: Optional[str],
    ) -> None:
        await self._apply_pricing(candidate, previous, explicit_price, actor)
        await self._snapshot_coupon_code(candidate, previous)

    async def _apply_pricing(
        self,
        candidate: Reservation,
        previous: Optional[Reservation],
        explicit_price: Optional[Decimal],
        actor: Optional[str],
    ) -> None:
        is_create = previous is None
        boat_changed = is_create or candidate.boat_id != previous.boat_id
        dependent_changed = boat_changed or (
            candidate.start_time != previous.start_time
            or candidate.end_time != previous.end_time
        )
        recalculate = should_recalculate_price(
            is_create=is_create,
            trusted=actor is not None,
            explicit_price=explicit_price,
            stored_price=previous.total_price if previous else None,
            dependent_changed=dependent_changed,
        )

        try:
            boat = None
            if candidate.boat_id and (boat_changed or recalculate):
                boat = await self._load_boat(candidate.boat_id)

            if boat is not None and boat_changed:
                candidate.boat_hourly_price = boat.price
                candidate.boat_daily_price = boat.price_day
                label = await self._departure_label(boat)
                if label:
                    candidate.departure_location = label
            elif previous is not None:
                # Rates are a snapshot: later boat price edits never reach existing bookings
                candidate.boat_hourly_price = previous.boat_hourly_price
                candidate.boat_daily_price = previous.boat_daily_price

            if recalculate:
                candidate.total_price = calculate_total_price(
                    candidate.boat_hourly_price,
                    candidate.boat_daily_price,
                    candidate.start_time,
                    candidate.end_time,
                )
                if boat is not None:
                    self._warn_below_minimum(candidate, boat)
            elif actor is None and previous is not None:
                candidate.total_price = previous.total_price

        except Exception as e:
            logger.error(
                "price_calculation_failed",
                reservation_id=candidate.id,
                boat_id=candidate.boat_id,
                error=str(e),
            )
            if recalculate:
                candidate.total_price = Decimal("0")

    def _warn_below_minimum(self, candidate: Reservation, boat: Boat) -> None:
        booking = quote(boat, candidate.start_time, candidate.end_time)
        if booking.hours and not booking.meets_minimum:
            logger.warning(
                "booking_below_minimum_hours",
                reservation_id=candidate.id,
                boat_id=boat.id,
                hours=booking.hours,
                minimum_hours=booking.minimum_hours,
            )

    async def _snapshot_coupon_code(
        self, candidate: Reservation, previous: Optional[Reservation]
    ) -> None:
        coupon_id = candidate.coupon_id
        previous_coupon = previous.coupon_id if previous else None

        if coupon_id is None:
            if previous_coupon is not None:
                candidate.coupon_code = None
            return
        if coupon_id == previous_coupon and candidate.coupon_code:
            return

        try:
            document = await self.store.find_by_id(COUPONS, coupon_id)
        except Exception as e:
            logger.error("coupon_lookup_failed", coupon_id=coupon_id, error=str(e))
            return
        if document is None:
            logger.warning("coupon_not_found", coupon_id=coupon_id)
            return
        candidate.coupon_code = Coupon.model_validate(document).code

    async def _after_change(
        self,
        saved: Reservation,
        previous: Optional[Reservation],
        actor: Optional[str],
    ) -> Reservation:
        await self._count_coupon_usage(saved, previous, actor)

        if previous is not None and saved.status == previous.status:
            return saved

        if previous is not None:
            AuditLogger.log_status_changed(actor, saved.id, previous.status.value, saved.status.value)

        if (
            actor is None
            and previous is not None
            and previous.status == ReservationStatus.AWAITING_PAYMENT
            and saved.status == ReservationStatus.CONFIRMED
        ):
            # The settlement poller sends its own confirmation
            logger.info("confirmation_notification_suppressed", reservation_id=saved.id)
            return saved

        try:
            boat = await self._load_boat(saved.boat_id)
        except Exception as e:
            logger.error(
                "status_change_actions_skipped",
                reservation_id=saved.id,
                status=saved.status.value,
                error=str(e),
            )
            return saved

        if saved.status == ReservationStatus.AWAITING_PAYMENT:
            try:
                return await self._start_payment_plan(saved, boat)
            except Exception as e:
                logger.error("payment_plan_failed", reservation_id=saved.id, error=str(e))
                return saved

        await self.notifications.status_changed(saved, boat)
        return saved

    async def _count_coupon_usage(
        self,
        saved: Reservation,
        previous: Optional[Reservation],
        actor: Optional[str],
    ) -> None:
        """Increment usage once per reservation/coupon association."""
        coupon_id = saved.coupon_id
        if not coupon_id or (previous is not None and previous.coupon_id == coupon_id):
            return

        async def increment() -> int:
            loaded = await self.store.find_versioned(COUPONS, coupon_id)
            if loaded is None:
                raise RelatedDocumentNotFound(COUPONS, coupon_id)
            document, version = loaded
            count = int(document.get("usageCount") or 0) + 1
            await self.store.update(
                COUPONS,
                coupon_id,
                {"usageCount": count},
                override_access=True,
                expected_version=version,
            )
            return count

        try:
            count = await self.retry.run(increment)
        except Exception as e:
            logger.error(
                "coupon_usage_increment_failed",
                coupon_id=coupon_id,
                reservation_id=saved.id,
                error=str(e),
            )
            return
        AuditLogger.log_coupon_redeemed(actor, coupon_id, saved.id, count)

    async def _start_payment_plan(self, reservation: Reservation, boat: Boat) -> Reservation:
        """Entry action for "awaiting payment": build the plan and request the first payment."""
        now = self.clock()
        method = self.settings.payment_method_label
        title, description = booking_link_text(reservation, boat)

        if reservation.uses_installments:
            payments = plan_installments(
                reservation.total_price,
                reservation.number_of_installments,
                reservation.down_payment_amount,
                now,
                method,
            )
            down = payments[0]
            link = await self.gateway.create_link(
                down.amount,
                title,
                description,
                {
                    "external_id": reservation.id,
                    "installment_number": 1,
                    "total_installments": len(payments),
                },
            )
            if link is not None:
                down.payment_link = link.url
                down.payment_link_id = link.id
            else:
                logger.error("down_payment_link_not_created", reservation_id=reservation.id)
                AuditLogger.log_payment_link_failed(
                    reservation.id, 1, "Provider returned no link for the down payment"
                )
        else:
            link = await self.gateway.create_link(
                reservation.total_price,
                title,
                description,
                {"external_id": reservation.id},
            )
            if link is None:
                # No obligation is recorded, so the poller has nothing to
                # check until an operator attaches a link by hand.
                logger.error(
                    "payment_link_not_created",
                    reservation_id=reservation.id,
                    transaction_id=reservation.transaction_id,
                    total_price=float(reservation.total_price),
                )
                AuditLogger.log_payment_link_failed(
                    reservation.id, None, "Provider returned no link; no payment recorded"
                )
                return reservation
            payment = plan_full_payment(reservation.total_price, now, method)
            payment.payment_link = link.url
            payment.payment_link_id = link.id
            payments = [payment]

        changes = {
            "payments": [p.to_document() for p in payments],
            "paymentLink": payments[0].payment_link,
            "paymentLinkId": payments[0].payment_link_id,
        }
        document = await self.retry.run(lambda: self._attach_plan(reservation.id, changes))
        if document is None:
            return reservation
        updated = Reservation.from_document(document)

        logger.info(
            "payment_plan_created",
            reservation_id=updated.id,
            payment_method=updated.payment_method.value,
            obligations=len(payments),
            link_id=payments[0].payment_link_id,
        )
        AuditLogger.log_payment_plan_created(
            updated.id, updated.payment_method.value, len(payments), updated.total_price
        )

        if updated.uses_installments:
            await self.notifications.installment_due(
                updated, boat, 1, len(updated.payments), updated.payments[0]
            )
        else:
            await self.notifications.awaiting_payment(updated, boat)
        return updated

    async def _attach_plan(self, reservation_id: str, changes: dict[str, Any]) -> Optional[dict]:
        """Write the plan onto the current version, unless the reservation moved on."""
        loaded = await self.store.find_versioned(RESERVATIONS, reservation_id)
        if loaded is None:
            raise DocumentNotFound(RESERVATIONS, reservation_id)
        document, version = loaded
        status = document.get("status")
        if status != ReservationStatus.AWAITING_PAYMENT.value:
            logger.warning(
                "payment_plan_discarded",
                reservation_id=reservation_id,
                status=status,
            )
            return None
        return await self.store.update(
            RESERVATIONS, reservation_id, changes, override_access=True, expected_version=version
        )
