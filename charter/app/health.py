"""Health check endpoint for production monitoring.

Reports document store reachability and the payment provider state
(live or mock mode, active cooldowns). Used by container health checks
and uptime monitors.
"""

import asyncio
import json
import os
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional

from charter.logging import get_logger
from charter.services.payment_gateway import PaymentGatewayClient
from charter.storage.document_store import DocumentStore

logger = get_logger(__name__)

_start_time: float = time.time()

APP_VERSION: str = os.environ.get("APP_VERSION", "0.0.0-dev")


@dataclass
class DependencyHealth:
    """Health status for a single dependency."""

    status: str  # "healthy", "degraded" or "unhealthy"
    response_time_ms: Optional[int] = None
    error: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class HealthCheckResult:
    """Complete health check response."""

    status: str  # "healthy", "degraded", or "unhealthy"
    version: str
    uptime_seconds: int
    timestamp: str
    dependencies: dict[str, DependencyHealth] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dictionary."""
        result: dict[str, Any] = {
            "status": self.status,
            "version": self.version,
            "uptime_seconds": self.uptime_seconds,
            "timestamp": self.timestamp,
            "dependencies": {},
        }

        for name, dep in self.dependencies.items():
            dep_dict: dict[str, Any] = {"status": dep.status}
            if dep.response_time_ms is not None:
                dep_dict["response_time_ms"] = dep.response_time_ms
            if dep.error:
                dep_dict["error"] = dep.error
            dep_dict.update(dep.details)
            result["dependencies"][name] = dep_dict

        if self.warnings:
            result["warnings"] = self.warnings
        if self.errors:
            result["errors"] = self.errors

        return result


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _failed_result(message: str) -> HealthCheckResult:
    return HealthCheckResult(
        status="unhealthy",
        version=APP_VERSION,
        uptime_seconds=int(time.time() - _start_time),
        timestamp=_timestamp(),
        errors=[message],
    )


async def check_store_health(store: DocumentStore) -> DependencyHealth:
    """Check the document store answers a trivial query."""
    start = time.perf_counter()
    try:
        await store.find("reservations", limit=1)
        response_time = int((time.perf_counter() - start) * 1000)
        return DependencyHealth(status="healthy", response_time_ms=response_time)
    except Exception as e:
        logger.error("store_health_check_failed", error=str(e))
        return DependencyHealth(status="unhealthy", error=f"Query failed: {str(e)[:100]}")


def check_gateway_health(gateway: PaymentGatewayClient) -> DependencyHealth:
    """Report provider mode and cooldowns without calling the provider."""
    scope = gateway.scope
    details = {
        "mode": gateway.mode,
        "rate_limit_seconds_remaining": int(scope.rate_limit_remaining()),
        "auth_block_seconds_remaining": int(scope.auth_block_remaining()),
    }
    if details["auth_block_seconds_remaining"]:
        return DependencyHealth(status="degraded", error="Provider rejected credentials", details=details)
    if details["rate_limit_seconds_remaining"]:
        return DependencyHealth(status="degraded", error="Provider rate limit", details=details)
    return DependencyHealth(status="healthy", details=details)


async def perform_health_check(
    store: Optional[DocumentStore] = None,
    gateway: Optional[PaymentGatewayClient] = None,
) -> HealthCheckResult:
    """Perform health check of the store and payment provider.

    Args:
        store: Document store to probe
        gateway: Payment gateway client whose state is reported

    Returns:
        HealthCheckResult with overall status and dependency details
    """
    result = HealthCheckResult(
        status="healthy",
        version=APP_VERSION,
        uptime_seconds=int(time.time() - _start_time),
        timestamp=_timestamp(),
    )

    if store is not None:
        result.dependencies["store"] = await check_store_health(store)
    else:
        result.dependencies["store"] = DependencyHealth(status="unhealthy", error="Store not available")

    if gateway is not None:
        provider = check_gateway_health(gateway)
        result.dependencies["payment_provider"] = provider
        if provider.details.get("mode") == "mock":
            result.warnings.append("Payment provider in mock mode")

    if result.dependencies["store"].status == "unhealthy":
        result.status = "unhealthy"
        result.errors.append("Critical: store unavailable")
    elif any(dep.status != "healthy" for dep in result.dependencies.values()):
        result.status = "degraded"
        for name, dep in result.dependencies.items():
            if dep.status != "healthy":
                result.warnings.append(f"{name} {dep.status}: {dep.error}")

    return result


def get_http_status_code(health_status: str) -> int:
    """HTTP status for a health status: 503 when unhealthy, else 200."""
    if health_status == "unhealthy":
        return 503
    return 200


class HealthCheckHandler(BaseHTTPRequestHandler):
    """Simple HTTP handler for health check endpoint."""

    # Class-level references to resources (set during server startup)
    store: Optional[DocumentStore] = None
    gateway: Optional[PaymentGatewayClient] = None
    loop: Optional[asyncio.AbstractEventLoop] = None

    def log_message(self, format: str, *args: Any) -> None:
        """Override to use structured logging."""
        logger.debug("health_http_request", message=format % args)

    def do_GET(self) -> None:
        """Handle GET requests to /health endpoint."""
        if self.path != "/health":
            self.send_response(404)
            self.end_headers()
            self.wfile.write(b'{"error": "Not Found"}')
            return

        loop = self.loop
        if loop is None or loop.is_closed():
            logger.error("health_check_error", error="Event loop unavailable for health check")
            result = _failed_result("Health check loop unavailable")
        else:
            future = asyncio.run_coroutine_threadsafe(
                perform_health_check(self.store, self.gateway), loop
            )
            try:
                result = future.result(timeout=10)
            except Exception as e:
                future.cancel()
                logger.error("health_check_error", error=str(e))
                result = _failed_result(f"Health check error: {str(e)}")

        status_code = get_http_status_code(result.status)
        response_body = json.dumps(result.to_dict())

        self.send_response(status_code)
        self.send_header("Content-Type", "application/json")
        self.send_header("Cache-Control", "no-cache")
        self.end_headers()
        self.wfile.write(response_body.encode("utf-8"))


def start_health_server(
    host: str = "127.0.0.1",
    port: int = 8000,
    store: Optional[DocumentStore] = None,
    gateway: Optional[PaymentGatewayClient] = None,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> HTTPServer:
    """Create the HTTP server for the health endpoint.

    Args:
        host: Host to bind to
        port: Port to listen on
        store: Document store to probe
        gateway: Payment gateway client to report on
        loop: Event loop used to execute async health checks

    Returns:
        HTTPServer instance; call ``serve_forever`` in a thread
    """
    HealthCheckHandler.store = store
    HealthCheckHandler.gateway = gateway
    HealthCheckHandler.loop = loop or asyncio.get_event_loop()

    server = HTTPServer((host, port), HealthCheckHandler)
    logger.info("health_server_started", host=host, port=port)
    return server


def reset_start_time() -> None:
    """Reset start time for testing purposes."""
    global _start_time
    _start_time = time.time()
