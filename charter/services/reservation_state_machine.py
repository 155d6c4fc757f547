"""Reservation status transitions and the fulfilment guard."""

from typing import Optional

from charter.models.reservation import Reservation, ReservationStatus
from charter.services.errors import ReservationValidationError, TransitionError

ALLOWED_TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    ReservationStatus.PENDING: frozenset(
        {ReservationStatus.AWAITING_PAYMENT, ReservationStatus.CANCELLED}
    ),
    ReservationStatus.AWAITING_PAYMENT: frozenset(
        {ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED}
    ),
    ReservationStatus.CONFIRMED: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
}

# Statuses a reservation may be created in
INITIAL_STATUSES = frozenset({ReservationStatus.PENDING, ReservationStatus.AWAITING_PAYMENT})

TERMINAL_STATUSES = frozenset({ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED})


def check_fulfilment(reservation: Reservation) -> None:
    """Raise if any meeting point, contact or parking field is blank."""
    missing = reservation.missing_fulfilment_fields()
    if missing:
        raise ReservationValidationError(
            f'Cannot change status from "{ReservationStatus.PENDING.value}" to '
            f'"{ReservationStatus.AWAITING_PAYMENT.value}" until these fields are completed: '
            f"{', '.join(missing)}",
            missing_fields=missing,
        )


def transition(
    previous: Optional[ReservationStatus],
    requested: ReservationStatus,
    reservation: Reservation,
) -> ReservationStatus:
    """
    Validate a status change.

    Args:
        previous: Stored status, or None when the reservation is being created
        requested: Status the write asks for
        reservation: Reservation as it would be persisted (used by guards)

    Returns:
        The accepted status

    Raises:
        TransitionError: Move out of a terminal status or not in the table
        ReservationValidationError: Entering awaiting payment with missing
            fulfilment fields
    """
    if previous is None:
        if requested not in INITIAL_STATUSES:
            raise TransitionError(None, requested.value)
    elif requested == previous:
        return requested
    elif requested not in ALLOWED_TRANSITIONS[previous]:
        raise TransitionError(previous.value, requested.value)

    if requested == ReservationStatus.AWAITING_PAYMENT:
        check_fulfilment(reservation)
    return requested


def is_terminal(status: ReservationStatus) -> bool:
    return status in TERMINAL_STATUSES
