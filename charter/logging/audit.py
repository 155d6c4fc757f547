"""Structured audit logging for reservation lifecycle actions.

Provides an audit trail of status transitions, payment captures and
installment activations for operators reconciling bookings against the
payment provider.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from charter.logging import get_logger

logger = get_logger(__name__)

SYSTEM_ACTOR = "system"


class AuditEventType(str, Enum):
    """Types of auditable events."""

    # Reservation lifecycle
    RESERVATION_CREATED = "reservation_created"
    RESERVATION_STATUS_CHANGED = "reservation_status_changed"
    RESERVATION_TRANSITION_REJECTED = "reservation_transition_rejected"

    # Payment plan
    PAYMENT_PLAN_CREATED = "payment_plan_created"
    PAYMENT_CAPTURED = "payment_captured"
    PAYMENT_LINK_FAILED = "payment_link_failed"
    INSTALLMENT_ACTIVATED = "installment_activated"
    INSTALLMENT_REMINDER_SENT = "installment_reminder_sent"

    # Coupons
    COUPON_REDEEMED = "coupon_redeemed"


class AuditLogger:
    """Centralized audit logging service."""

    @staticmethod
    def log_event(
        event_type: AuditEventType,
        actor_id: Optional[str],
        resource_type: str,
        resource_id: str,
        action: str,
        success: bool = True,
        metadata: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Log an auditable event with structured context.

        Args:
            event_type: Type of audit event
            actor_id: Authenticated operator id, or None for background tasks
            resource_type: Type of resource (reservation, coupon, payment)
            resource_id: ID of the affected resource
            action: Human-readable action description
            success: Whether the action succeeded
            metadata: Additional context (amounts, link ids, stages)
            error: Error message if action failed
        """
        audit_entry = {
            "event_type": event_type.value,
            "actor_id": actor_id or SYSTEM_ACTOR,
            "resource_type": resource_type,
            "resource_id": str(resource_id),
            "action": action,
            "success": success,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "metadata": metadata or {},
        }

        if error:
            audit_entry["error"] = error

        logger.info(
            "audit_event",
            **audit_entry,
        )

    @staticmethod
    def log_reservation_created(
        actor_id: Optional[str],
        reservation_id: str,
        transaction_id: str,
        total_price: Decimal,
    ) -> None:
        """Log reservation creation."""
        AuditLogger.log_event(
            event_type=AuditEventType.RESERVATION_CREATED,
            actor_id=actor_id,
            resource_type="reservation",
            resource_id=reservation_id,
            action=f"Created reservation {transaction_id}",
            metadata={"transaction_id": transaction_id, "total_price": str(total_price)},
        )

    @staticmethod
    def log_status_changed(
        actor_id: Optional[str],
        reservation_id: str,
        previous_status: Optional[str],
        new_status: str,
    ) -> None:
        """Log a reservation status transition."""
        AuditLogger.log_event(
            event_type=AuditEventType.RESERVATION_STATUS_CHANGED,
            actor_id=actor_id,
            resource_type="reservation",
            resource_id=reservation_id,
            action=f"Status {previous_status} -> {new_status}",
            metadata={"previous_status": previous_status, "new_status": new_status},
        )

    @staticmethod
    def log_transition_rejected(
        actor_id: Optional[str],
        reservation_id: str,
        attempted_status: str,
        reason: str,
    ) -> None:
        """Log a rejected status transition."""
        AuditLogger.log_event(
            event_type=AuditEventType.RESERVATION_TRANSITION_REJECTED,
            actor_id=actor_id,
            resource_type="reservation",
            resource_id=reservation_id,
            action=f"Rejected transition to {attempted_status}",
            success=False,
            error=reason,
        )

    @staticmethod
    def log_payment_plan_created(
        reservation_id: str,
        payment_method: str,
        obligations: int,
        total: Decimal,
    ) -> None:
        """Log creation of a reservation's payment plan."""
        AuditLogger.log_event(
            event_type=AuditEventType.PAYMENT_PLAN_CREATED,
            actor_id=None,
            resource_type="reservation",
            resource_id=reservation_id,
            action=f"Created {payment_method} payment plan",
            metadata={"obligations": obligations, "total": str(total)},
        )

    @staticmethod
    def log_payment_captured(
        reservation_id: str,
        payment_index: int,
        link_id: str,
        fully_paid: bool,
    ) -> None:
        """Log a settlement observed at the payment provider."""
        AuditLogger.log_event(
            event_type=AuditEventType.PAYMENT_CAPTURED,
            actor_id=None,
            resource_type="payment",
            resource_id=f"{reservation_id}:{payment_index}",
            action="Payment captured",
            metadata={"link_id": link_id, "fully_paid": fully_paid},
        )

    @staticmethod
    def log_installment_activated(
        reservation_id: str,
        installment_number: int,
        link_id: str,
    ) -> None:
        """Log activation of a scheduled installment."""
        AuditLogger.log_event(
            event_type=AuditEventType.INSTALLMENT_ACTIVATED,
            actor_id=None,
            resource_type="payment",
            resource_id=f"{reservation_id}:{installment_number - 1}",
            action=f"Activated installment {installment_number}",
            metadata={"link_id": link_id},
        )

    @staticmethod
    def log_coupon_redeemed(
        actor_id: Optional[str],
        coupon_id: str,
        reservation_id: str,
        usage_count: int,
    ) -> None:
        """Log a coupon usage increment."""
        AuditLogger.log_event(
            event_type=AuditEventType.COUPON_REDEEMED,
            actor_id=actor_id,
            resource_type="coupon",
            resource_id=coupon_id,
            action="Coupon redeemed",
            metadata={"reservation_id": reservation_id, "usage_count": usage_count},
        )

    @staticmethod
    def log_payment_link_failed(
        reservation_id: str,
        installment_number: Optional[int],
        reason: str,
    ) -> None:
        """Log a payment link the provider did not create."""
        label = f"installment {installment_number}" if installment_number else "full payment"
        AuditLogger.log_event(
            event_type=AuditEventType.PAYMENT_LINK_FAILED,
            actor_id=None,
            resource_type="reservation",
            resource_id=reservation_id,
            action=f"Payment link for {label} not created",
            success=False,
            error=reason,
        )
