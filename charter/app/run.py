"""Reservation payment engine startup and main application entry point."""

import asyncio
import threading

from charter.config import load_settings
from charter.logging import get_logger, setup_logging
from charter.app.health import start_health_server
from charter.services.installment_scheduler import InstallmentActivationScheduler
from charter.services.notifications import ReservationNotifications, build_notifier
from charter.services.payment_gateway import PaymentGatewayClient
from charter.services.reservation_lifecycle import ReservationLifecycle
from charter.services.retry import RetryPolicy
from charter.services.runtime_scope import RuntimeScope
from charter.services.scheduler import SchedulerService
from charter.services.settlement_poller import SettlementPoller
from charter.storage.database import Database
from charter.storage.sql_store import SqlDocumentStore


async def main() -> None:
    """Wire the engine and run the background jobs until interrupted."""
    settings = load_settings()
    setup_logging(settings.log_level)
    logger = get_logger(__name__)

    logger.info(
        "starting_reservation_engine",
        environment=settings.environment,
        payment_base_url=settings.resolved_payment_base_url,
    )

    # Initialize database
    db = Database(settings)
    await db.connect()
    await db.ping()
    if settings.database_url.startswith("sqlite"):
        await db.create_tables()

    store = SqlDocumentStore(db)
    scope = RuntimeScope()

    # Initialize services
    gateway = PaymentGatewayClient(settings, scope)
    notifications = ReservationNotifications(build_notifier(settings), settings)
    lifecycle = ReservationLifecycle(
        store, gateway, notifications, settings, RetryPolicy(), clock=scope.now
    )
    poller = SettlementPoller(store, gateway, lifecycle, notifications, scope, settings)
    activation = InstallmentActivationScheduler(store, gateway, lifecycle, notifications, scope)

    # Initialize background scheduler
    scheduler = SchedulerService(
        poller,
        activation,
        scope,
        poll_interval_seconds=settings.poll_interval_seconds,
        daily_hour=settings.installment_scheduler_hour,
        daily_minute=settings.installment_scheduler_minute,
        cleanup_interval_seconds=settings.cache_cleanup_interval_seconds,
    )

    health_server = start_health_server(
        settings.health_host,
        settings.health_port,
        store=store,
        gateway=gateway,
        loop=asyncio.get_running_loop(),
    )
    threading.Thread(target=health_server.serve_forever, name="health", daemon=True).start()

    logger.info("engine_initialized", payment_mode=gateway.mode)
    await scheduler.start()

    # Run until stopped
    try:
        await asyncio.Event().wait()
    except (KeyboardInterrupt, SystemExit, asyncio.CancelledError):
        logger.info("shutting_down_engine")
    finally:
        await scheduler.stop()
        health_server.shutdown()
        await gateway.close()
        await db.disconnect()


def cli() -> None:
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    cli()
