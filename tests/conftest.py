"""Pytest configuration and shared fixtures."""

import asyncio
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from unittest.mock import AsyncMock

import httpx
import pytest

from charter.config import Settings
from charter.services.installment_scheduler import InstallmentActivationScheduler
from charter.services.notifications import LoggingNotifier, ReservationNotifications
from charter.services.payment_gateway import PaymentGatewayClient
from charter.services.reservation_lifecycle import ReservationLifecycle
from charter.services.retry import RetryPolicy
from charter.services.runtime_scope import RuntimeScope
from charter.services.settlement_poller import SettlementPoller
from charter.storage import InMemoryDocumentStore, WriteConflictError

NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)

BOAT = {
    "id": "boat-1",
    "name": "Sea Breeze",
    "price": 100,
    "priceDay": 2000,
    "minHours": 2,
    "location": "loc-1",
}

LOCATION = {
    "id": "loc-1",
    "name": "Dubai Harbour",
    "harbour": "Dubai Harbour Marina",
    "city": "Dubai",
    "country": "UAE",
}

COUPONS = [
    {"id": "coupon-1", "code": "SUMMER10", "type": "percentage", "amount": 10, "usageCount": 0},
    {"id": "coupon-2", "code": "WINTER50", "type": "fixed", "amount": 50, "usageCount": 3},
]

FULFILMENT = {
    "meetingPointName": "Dubai Harbour Gate 2",
    "meetingPointPin": "https://maps.google.com/?q=25.09,55.14",
    "contactPersonName": "Captain Omar",
    "contactPersonNumber": "+971500000000",
    "parkingLocationName": "Marina Mall P2",
    "parkingLocationPin": "https://maps.google.com/?q=25.08,55.14",
}


class FakeClock:
    """Controllable clock returning aware UTC datetimes."""

    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FlakyStore(InMemoryDocumentStore):
    """In-memory store whose next ``conflicts`` updates raise a write conflict."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.conflicts = 0

    async def update(
        self, collection, id, data, override_access=False, disable_transaction=False,
        expected_version=None,
    ):
        if self.conflicts > 0:
            self.conflicts -= 1
            raise WriteConflictError(collection, id)
        return await super().update(
            collection, id, data, override_access, disable_transaction, expected_version
        )


class InterleavingStore(InMemoryDocumentStore):
    """In-memory store that yields to the event loop around every read and write.

    Concurrent tasks interleave at each store call the way they would
    against a networked database.
    """

    async def find(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().find(*args, **kwargs)

    async def find_by_id(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().find_by_id(*args, **kwargs)

    async def find_versioned(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().find_versioned(*args, **kwargs)

    async def update(self, *args, **kwargs):
        await asyncio.sleep(0)
        return await super().update(*args, **kwargs)


def booking_request(**overrides) -> dict:
    """Public booking request: 5 hours on Sea Breeze, ten days out."""
    start = NOW + timedelta(days=10)
    data = {
        "boat": "boat-1",
        "startTime": start.isoformat(),
        "endTime": (start + timedelta(hours=5)).isoformat(),
        "guestName": "Layla Haddad",
        "guestEmail": "layla@example.com",
        "guestPhone": "+971511111111",
        "guests": 6,
    }
    data.update(overrides)
    return data


def live_gateway(
    settings: Settings,
    scope: RuntimeScope,
    handler: Callable[[httpx.Request], httpx.Response],
) -> PaymentGatewayClient:
    """Gateway with a real credential talking to an httpx mock transport."""
    live_settings = settings.model_copy(update={"payment_api_key": "sk_test_live_key"})
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PaymentGatewayClient(live_settings, scope, client=client)


class ProviderStub:
    """Scripted payment provider: link creation plus captured charges."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.captured: set[str] = set()
        self._next_link = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.method == "POST" and request.url.path.endswith("/links"):
            self._next_link += 1
            link_id = f"MB-LINK-TEST{self._next_link:04d}"
            return httpx.Response(
                201,
                json={"id": link_id, "payment_url": f"https://pay.example.com/{link_id}"},
            )
        if request.method == "GET" and request.url.path.endswith("/charges"):
            link_id = request.url.params.get("payment_link_id")
            data = [
                {"status": "captured", "payment_link_id": link_id, "amount": 100}
            ] if link_id in self.captured else []
            return httpx.Response(200, json={"data": data, "pagination_meta": {"next_page": None}})
        return httpx.Response(404, json={"error": "not found"})

    def charge_checks(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "GET"]


def make_store(store_class=InMemoryDocumentStore, reservations: Optional[list[dict]] = None):
    return store_class(
        seed={
            "boats": [BOAT],
            "locations": [LOCATION],
            "coupons": COUPONS,
            "reservations": reservations or [],
        }
    )


@pytest.fixture
def clock():
    """Clock fixed at NOW, advanced explicitly by tests."""
    return FakeClock(NOW)


@pytest.fixture
def settings():
    """Development settings with no provider credentials."""
    return Settings(
        _env_file=None,
        environment="development",
        payment_api_key="",
        resend_api_key="",
        admin_email="ops@example.com",
        frontend_base_url="https://example.com",
    )


@pytest.fixture
def store():
    """In-memory store seeded with a boat, its location and two coupons."""
    return make_store()


@pytest.fixture
def scope(clock):
    return RuntimeScope(clock=clock)


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def notifications(notifier, settings):
    return ReservationNotifications(notifier, settings)


@pytest.fixture
def gateway(settings, scope):
    """Gateway in mock mode (no API key)."""
    return PaymentGatewayClient(settings, scope)


@pytest.fixture
def provider():
    return ProviderStub()


@pytest.fixture
def retry_policy():
    """Retry policy that never actually sleeps."""
    return RetryPolicy(sleep=AsyncMock())


@pytest.fixture
def lifecycle(store, gateway, notifications, settings, retry_policy, clock):
    return ReservationLifecycle(store, gateway, notifications, settings, retry_policy, clock=clock)


@pytest.fixture
def poller(store, gateway, lifecycle, notifications, scope, settings):
    return SettlementPoller(store, gateway, lifecycle, notifications, scope, settings)


@pytest.fixture
def activation(store, gateway, lifecycle, notifications, scope):
    return InstallmentActivationScheduler(store, gateway, lifecycle, notifications, scope)


async def book_awaiting_payment(lifecycle: ReservationLifecycle, **overrides):
    """Public booking request moved to awaiting payment by an operator."""
    created = await lifecycle.create(booking_request(**overrides))
    return await lifecycle.update(
        created.id, {**FULFILMENT, "status": "awaiting payment"}, actor="admin-1"
    )
