"""Outbound email notifications for reservations."""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from html import escape
from typing import Optional

import resend

from charter.config import Settings
from charter.logging import get_logger
from charter.models.boat import Boat
from charter.models.reservation import Payment, Reservation, ReservationStatus

logger = get_logger(__name__)


class Notifier(ABC):
    """Email transport. ``send_notification`` never raises."""

    async def send_notification(self, to: str, subject: str, html: str) -> bool:
        """
        Send one email.

        Returns:
            True if the transport accepted the message, False otherwise
        """
        if not to or not to.strip():
            logger.warning("notification_skipped_no_recipient", subject=subject)
            return False
        try:
            await self._deliver(to.strip(), subject, html)
        except Exception as e:
            logger.error("notification_failed", to=to, subject=subject, error=str(e))
            return False
        logger.info("notification_sent", to=to, subject=subject)
        return True

    @abstractmethod
    async def _deliver(self, to: str, subject: str, html: str) -> None:
        """Hand the message to the transport; raise on failure."""


class ResendNotifier(Notifier):
    """Sends email through the Resend API."""

    def __init__(self, api_key: str, sender: str):
        resend.api_key = api_key
        self.sender = sender

    async def _deliver(self, to: str, subject: str, html: str) -> None:
        params = {
            "from": self.sender,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        # The SDK is synchronous
        await asyncio.to_thread(resend.Emails.send, params)


class LoggingNotifier(Notifier):
    """Development transport: logs messages and keeps them in ``outbox``."""

    def __init__(self):
        self.outbox: list[tuple[str, str, str]] = []

    async def _deliver(self, to: str, subject: str, html: str) -> None:
        self.outbox.append((to, subject, html))
        logger.info("notification_logged", to=to, subject=subject)


def build_notifier(settings: Settings) -> Notifier:
    """Resend when an API key is configured, logging otherwise."""
    if settings.resend_api_key.strip():
        return ResendNotifier(settings.resend_api_key.strip(), settings.email_from)
    logger.warning("notifier_fallback_to_logging")
    return LoggingNotifier()


def _money(value: Decimal) -> str:
    return f"{value:,.2f}"


def _when(moment: Optional[datetime]) -> str:
    return moment.strftime("%d %b %Y %H:%M") if moment else "TBD"


def _render(*lines: str) -> str:
    return "".join(f"<p>{escape(line)}</p>" for line in lines if line)


def _link(url: str, label: str) -> str:
    return f'<p><a href="{escape(url, quote=True)}">{escape(label)}</a></p>'


class ReservationNotifications:
    """Subjects and minimal bodies for guest and admin reservation emails."""

    def __init__(self, notifier: Notifier, settings: Settings):
        self.notifier = notifier
        self.admin_email = settings.admin_email
        self.brand = settings.brand_name
        self.currency = settings.payment_currency

    def _summary(self, reservation: Reservation, boat: Boat) -> list[str]:
        return [
            f"Booking #{reservation.booking_reference}",
            f"Boat: {boat.name}",
            f"From {_when(reservation.start_time)} to {_when(reservation.end_time)}",
            f"Total: {_money(reservation.total_price)} {self.currency}",
            f"Departure: {reservation.departure_location}" if reservation.departure_location else "",
        ]

    async def _to_guest(self, reservation: Reservation, subject: str, html: str) -> bool:
        if not reservation.guest_email.strip():
            logger.debug("guest_notification_skipped_no_email", reservation_id=reservation.id)
            return False
        return await self.notifier.send_notification(reservation.guest_email, subject, html)

    async def _to_admin(self, subject: str, html: str) -> bool:
        return await self.notifier.send_notification(self.admin_email, subject, html)

    async def status_changed(self, reservation: Reservation, boat: Boat) -> None:
        """Guest and admin emails for a status other than awaiting payment."""
        status = reservation.status
        ref = reservation.booking_reference
        if status == ReservationStatus.PENDING:
            guest_subject = f"Reservation Request #{ref} has been received"
            intro = "We have received your reservation request and will be in touch shortly."
        elif status == ReservationStatus.CONFIRMED:
            guest_subject = f"{self.brand} - Booking #{ref}"
            intro = "Your booking is confirmed. We look forward to welcoming you on board."
        elif status == ReservationStatus.CANCELLED:
            guest_subject = f"{self.brand} - Booking #{ref}"
            intro = "Your booking has been cancelled."
        else:
            return

        body = _render(f"Dear {reservation.guest_name or 'guest'},", intro, *self._summary(reservation, boat))
        await self._to_guest(reservation, guest_subject, body)
        await self._to_admin(
            f"[Admin] Booking {status.value}: {boat.name}",
            _render(f"Status: {status.value}", *self._summary(reservation, boat)),
        )

    async def awaiting_payment(self, reservation: Reservation, boat: Boat) -> None:
        """Full-payment request with the payment link."""
        summary = self._summary(reservation, boat)
        body = _render(
            f"Dear {reservation.guest_name or 'guest'},",
            "Your booking is ready. Please complete the payment to confirm it.",
            *summary,
        )
        if reservation.payment_link:
            body += _link(reservation.payment_link, "Pay now")
        await self._to_guest(reservation, f"{self.brand} - Booking #{reservation.booking_reference}", body)
        await self._to_admin(
            "[Admin] Payment Required for Booking",
            _render("Payment link sent to guest.", *summary, f"Link: {reservation.payment_link_id}"),
        )

    async def installment_due(
        self, reservation: Reservation, boat: Boat, number: int, total: int, payment: Payment
    ) -> None:
        """Payment request for one obligation of an installment plan."""
        lines = [
            f"Dear {reservation.guest_name or 'guest'},",
            f"Installment {number} of {total} for your booking is now payable.",
            f"Amount: {_money(payment.amount)} {self.currency}",
            f"Remaining after this payment: {_money(payment.balance)} {self.currency}",
            *self._summary(reservation, boat),
        ]
        body = _render(*lines)
        if payment.payment_link:
            body += _link(payment.payment_link, "Pay installment")
        await self._to_guest(
            reservation, f"Payment Request: Installment {number} of {total} for {boat.name}", body
        )
        await self._to_admin(
            f"[Admin] Installment {number} of {total} requested: {boat.name}",
            _render(*lines[1:], f"Link: {payment.payment_link_id}"),
        )

    async def installment_reminder(
        self,
        reservation: Reservation,
        boat: Boat,
        number: int,
        total: int,
        payment: Payment,
        overdue: bool,
    ) -> bool:
        """Reminder for an activated, unpaid installment. Guest only."""
        state = "is overdue" if overdue else f"is due on {_when(payment.date)}"
        body = _render(
            f"Dear {reservation.guest_name or 'guest'},",
            f"Installment {number} of {total} for your booking {state}.",
            f"Amount: {_money(payment.amount)} {self.currency}",
            *self._summary(reservation, boat),
        )
        if payment.payment_link:
            body += _link(payment.payment_link, "Pay installment")
        return await self._to_guest(
            reservation, f"Reminder: Installment {number} of {total} for {boat.name} is Due", body
        )

    async def payment_confirmed(self, reservation: Reservation, boat: Boat) -> None:
        """Confirmation after the provider reported full settlement."""
        summary = self._summary(reservation, boat)
        await self._to_guest(
            reservation,
            "Booking Status: confirmed",
            _render(
                f"Dear {reservation.guest_name or 'guest'},",
                "We have received your payment. Your booking is confirmed.",
                *summary,
            ),
        )
        await self._to_admin(
            f"[Admin] Booking confirmed: {boat.name}",
            _render("Payment received in full.", *summary),
        )
