"""Payment link provider client (Mamo Pay business API)."""

import re
import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

import httpx

from charter.config import Settings
from charter.logging import get_logger
from charter.models.boat import Boat
from charter.models.reservation import Reservation
from charter.services.errors import PaymentGatewayError
from charter.services.runtime_scope import RuntimeScope

logger = get_logger(__name__)

API_PREFIX = "/manage_api/v1"
MOCK_LINK_PREFIX = "mock-link-"
LINK_TEXT_LIMIT = 75

_REAL_LINK_ID = re.compile(r"^MB-LINK-[A-Z0-9]+$", re.IGNORECASE)


def is_mock_link_id(link_id: Optional[str]) -> bool:
    """Whether a link id was synthesised locally in mock mode."""
    value = str(link_id or "").strip()
    return value.startswith(MOCK_LINK_PREFIX) or value.startswith("mock-")


def is_real_link_id(link_id: Optional[str]) -> bool:
    """Whether a link id has the provider's ``MB-LINK-`` shape."""
    return bool(_REAL_LINK_ID.match(str(link_id or "").strip()))


def _format_day(moment: Optional[datetime]) -> str:
    return moment.strftime("%Y-%m-%d %H:%M") if moment else "TBD"


def booking_link_text(reservation: Reservation, boat: Boat) -> tuple[str, str]:
    """Title and description shown on the provider's payment page."""
    title = f"Reservation for {boat.name or 'boat'}"
    description = (
        f"Booking {_format_day(reservation.start_time)} to "
        f"{_format_day(reservation.end_time)}, {reservation.booking_reference}"
    )
    return title[:LINK_TEXT_LIMIT], description[:LINK_TEXT_LIMIT]


@dataclass(frozen=True)
class PaymentLink:
    """A payable link returned by the provider (or synthesised in mock mode)."""

    url: str
    id: str

    @property
    def is_mock(self) -> bool:
        return is_mock_link_id(self.id)


class PaymentGatewayClient:
    """
    Create payment links and look up captured charges.

    Cooldown state lives on the injected ``RuntimeScope`` so every component
    of the process sees the same rate-limit and auth windows.
    """

    CHARGES_PAGE_SIZE = 50
    MAX_CHARGE_PAGES = 2
    MIN_RETRY_AFTER_SECONDS = 5
    TIMEOUT_SECONDS = 30.0

    def __init__(
        self,
        settings: Settings,
        scope: RuntimeScope,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize gateway client.

        Args:
            settings: Application settings (provider URL, key, return URLs)
            scope: Shared runtime scope holding cooldowns
            client: HTTP client; one is created when omitted
        """
        self.settings = settings
        self.scope = scope
        self.base_url = settings.resolved_payment_base_url
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=self.TIMEOUT_SECONDS)

    @property
    def mock_mode(self) -> bool:
        """No usable credential configured: links are synthesised locally."""
        key = self.settings.payment_api_key.strip()
        return not key or key == "invalid"

    @property
    def mode(self) -> str:
        return "mock" if self.mock_mode else "live"

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.payment_api_key.strip()}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _mock_link(self, reference: str) -> PaymentLink:
        stamp = int(self.scope.now().timestamp() * 1000)
        suffix = secrets.token_hex(3)
        return PaymentLink(
            url=f"{self.base_url}/pay/mock-{stamp}-{reference}-{suffix}",
            id=f"{MOCK_LINK_PREFIX}{stamp}-{reference}-{suffix}",
        )

    async def create_link(
        self,
        amount: Decimal,
        title: str,
        description: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[PaymentLink]:
        """
        Create a payment link.

        Args:
            amount: Amount to charge in the configured currency
            title: Link title, truncated to the provider limit
            description: Link description, truncated to the provider limit
            metadata: Custom data echoed back by the provider (external id,
                installment number and total)

        Returns:
            The created link; a mock link when no credential is configured or
            the provider fails outside production; None when it fails in
            production
        """
        metadata = dict(metadata or {})
        reference = str(metadata.get("external_id") or "reservation")

        if self.mock_mode:
            link = self._mock_link(reference)
            logger.info("payment_link_mocked", reference=reference, link_id=link.id)
            return link

        body = {
            "title": title[:LINK_TEXT_LIMIT],
            "description": description[:LINK_TEXT_LIMIT],
            "amount": float(amount),
            "amount_currency": self.settings.payment_currency,
            "return_url": self.settings.success_url,
            "failure_return_url": self.settings.failure_url,
            "processing_fee_percentage": self.settings.payment_processing_fee_percentage,
            "link_type": "standalone",
            "enable_tabby": False,
            "enable_message": False,
            "enable_tips": False,
            "save_card": "off",
            "enable_customer_details": False,
            "enable_quantity": False,
            "enable_qr_code": False,
            "send_customer_receipt": False,
            "custom_data": metadata,
        }

        try:
            response = await self.client.post(
                f"{self.base_url}{API_PREFIX}/links", json=body, headers=self._headers()
            )
            if response.status_code in (401, 403):
                self.scope.block_auth(self.settings.auth_cooldown_seconds)
                raise PaymentGatewayError("Payment provider rejected credentials", response.status_code)
            if response.status_code == 429:
                self.scope.block_rate_limited(self._retry_after_seconds(response))
                raise PaymentGatewayError("Payment provider rate limit", 429)
            if not response.is_success:
                raise PaymentGatewayError(
                    f"Payment link creation failed: {response.text[:200]}", response.status_code
                )

            data = response.json()
            url = data.get("payment_url") or data.get("url")
            link_id = data.get("id")
            if not url or not link_id:
                raise PaymentGatewayError("Payment provider response missing url or id")

            logger.info(
                "payment_link_created",
                reference=reference,
                link_id=link_id,
                amount=float(amount),
            )
            return PaymentLink(url=str(url), id=str(link_id))

        except (httpx.HTTPError, PaymentGatewayError, ValueError) as e:
            status_code = getattr(e, "status_code", None)
            if self.settings.is_production:
                logger.error(
                    "payment_link_creation_failed",
                    reference=reference,
                    status_code=status_code,
                    error=str(e),
                )
                return None
            link = self._mock_link(reference)
            logger.warning(
                "payment_link_fallback_to_mock",
                reference=reference,
                status_code=status_code,
                error=str(e),
                link_id=link.id,
            )
            return link

    def _retry_after_seconds(self, response: httpx.Response) -> float:
        """Cooldown length for a 429: the retry-after hint (min 5 s) or the default."""
        raw = response.headers.get("retry-after")
        try:
            hinted = float(raw) if raw is not None else None
        except ValueError:
            hinted = None
        if hinted is None or hinted != hinted or hinted in (float("inf"), float("-inf")):
            return float(self.settings.rate_limit_cooldown_seconds)
        return max(float(self.MIN_RETRY_AFTER_SECONDS), hinted)

    async def query_captured(self, link_id: str) -> bool:
        """
        Whether a captured charge exists for ``link_id``.

        Walks at most two pages of the provider's charge list. Every failure
        mode (cooldown, mock link, HTTP error) answers False: "not captured
        yet" is always safe because the next poll asks again.
        """
        link_id = str(link_id or "").strip()
        if not link_id:
            return False
        if is_mock_link_id(link_id):
            logger.debug("payment_check_skipped_mock_link", link_id=link_id)
            return False
        if self.mock_mode:
            logger.debug("payment_check_skipped_no_credentials", link_id=link_id)
            return False

        remaining = self.scope.rate_limit_remaining()
        if remaining > 0:
            logger.debug("payment_check_rate_limited", link_id=link_id, seconds_remaining=round(remaining))
            return False
        remaining = self.scope.auth_block_remaining()
        if remaining > 0:
            logger.debug("payment_check_auth_blocked", link_id=link_id, seconds_remaining=round(remaining))
            return False

        page = 1
        try:
            for _ in range(self.MAX_CHARGE_PAGES):
                response = await self.client.get(
                    f"{self.base_url}{API_PREFIX}/charges",
                    params={
                        "page": page,
                        "per_page": self.CHARGES_PAGE_SIZE,
                        "payment_link_id": link_id,
                    },
                    headers=self._headers(),
                )

                if response.status_code == 429:
                    cooldown = self._retry_after_seconds(response)
                    self.scope.block_rate_limited(cooldown)
                    logger.warning("payment_provider_rate_limited", link_id=link_id, cooldown_seconds=cooldown)
                    return False
                if response.status_code in (401, 403):
                    self.scope.block_auth(self.settings.auth_cooldown_seconds)
                    logger.error(
                        "payment_provider_auth_failed",
                        link_id=link_id,
                        status_code=response.status_code,
                        cooldown_seconds=self.settings.auth_cooldown_seconds,
                    )
                    return False
                if not response.is_success:
                    logger.warning(
                        "payment_check_failed",
                        link_id=link_id,
                        status_code=response.status_code,
                    )
                    return False

                data = response.json()
                charges = data.get("data") or []
                for charge in charges:
                    status = str(charge.get("status") or "").lower()
                    if status == "captured" and str(charge.get("payment_link_id") or "") == link_id:
                        logger.info("payment_captured_found", link_id=link_id, page=page)
                        return True

                next_page = self._next_page(data)
                if not next_page:
                    break
                page = next_page

        except (httpx.HTTPError, ValueError) as e:
            logger.error("payment_check_error", link_id=link_id, error=str(e))
            return False

        return False

    @staticmethod
    def _next_page(data: dict[str, Any]) -> Optional[int]:
        meta = data.get("pagination_meta") or {}
        raw = meta.get("next_page", data.get("next_page"))
        try:
            value = int(raw) if raw is not None else None
        except (TypeError, ValueError):
            return None
        return value if value and value > 0 else None
