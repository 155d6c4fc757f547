"""Process-wide mutable state shared by the gateway client and background jobs.

Nothing here is persisted: losing it on restart costs at most one extra
poll or activation check, because the reservation documents remain the
source of truth.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InstallmentReminder:
    """Reminder bookkeeping for one activated installment."""

    reservation_id: str
    payment_index: int
    scheduled_time: datetime
    sent: bool = False


class RuntimeScope:
    """Cooldowns, throttles and idempotency markers for one running process."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize an empty scope.

        Args:
            clock: Returns the current aware datetime; injectable for tests
        """
        self.clock = clock or utcnow
        self.rate_limited_until: Optional[datetime] = None
        self.auth_blocked_until: Optional[datetime] = None
        self.last_checked_by_link: dict[str, datetime] = {}
        self.processed_payments: set[str] = set()
        self.activated_installments: set[str] = set()
        self.installment_reminders: dict[str, InstallmentReminder] = {}

    def now(self) -> datetime:
        return self.clock()

    def block_rate_limited(self, seconds: float) -> None:
        """Start a provider rate-limit cooldown."""
        self.rate_limited_until = self.now() + timedelta(seconds=seconds)

    def block_auth(self, seconds: float) -> None:
        """Start a provider credential cooldown."""
        self.auth_blocked_until = self.now() + timedelta(seconds=seconds)

    def rate_limit_remaining(self) -> float:
        """Seconds left in the rate-limit cooldown (0 when inactive)."""
        return self._remaining(self.rate_limited_until)

    def auth_block_remaining(self) -> float:
        """Seconds left in the auth cooldown (0 when inactive)."""
        return self._remaining(self.auth_blocked_until)

    def _remaining(self, until: Optional[datetime]) -> float:
        if until is None:
            return 0.0
        return max(0.0, (until - self.now()).total_seconds())

    def claim_link_check(self, link_id: str, throttle_seconds: float) -> bool:
        """Record a status check for ``link_id`` unless one ran within the throttle window."""
        now = self.now()
        last = self.last_checked_by_link.get(link_id)
        if last is not None and (now - last).total_seconds() < throttle_seconds:
            return False
        self.last_checked_by_link[link_id] = now
        return True

    def clear_caches(self) -> None:
        """Drop processed markers, link throttles and activation keys."""
        self.processed_payments.clear()
        self.last_checked_by_link.clear()
        self.activated_installments.clear()
