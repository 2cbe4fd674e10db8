"""Azure Functions entry point for Marketplace Core."""
import json
import logging

import azure.functions as func
import pika
from sqlalchemy import text

from marketplace_core.application.coordinators.notification_emitter import NotificationEmitter
from marketplace_core.application.use_cases.reconcile_sold_listings import (
    ReconcileSoldListings,
    ReconcileSoldListingsOutput,
)
from marketplace_core.config import settings
from marketplace_core.infrastructure.database.connection import AsyncSessionLocal
from marketplace_core.infrastructure.database.store_scope import SqlAlchemyStoreScope
from marketplace_core.infrastructure.messaging.noop_publisher import NoOpEventPublisher
from marketplace_core.infrastructure.messaging.rabbitmq_publisher import RabbitMQPublisher
from marketplace_core.logging_config import configure_logging

configure_logging()

app = func.FunctionApp(http_auth_level=func.AuthLevel.FUNCTION)


async def run_reconciliation() -> ReconcileSoldListingsOutput:
    """Cancel offers left pending on sold listings and hand back stale reservations."""
    publisher = RabbitMQPublisher() if settings.events_enabled else NoOpEventPublisher()

    async with SqlAlchemyStoreScope().open() as stores:
        use_case = ReconcileSoldListings(
            stores.listings,
            stores.offers,
            NotificationEmitter(stores.inbox, publisher),
            publisher,
        )
        return await use_case.execute()


def _summary(output: ReconcileSoldListingsOutput) -> dict:  # type: ignore[type-arg]
    return {
        "listings_checked": output.listings_checked,
        "cancelled_offer_ids": [str(i) for i in output.cancelled_offer_ids],
        "released_listing_ids": [str(i) for i in output.released_listing_ids],
        "unresolved_listing_ids": [str(i) for i in output.unresolved_listing_ids],
    }


# ============================================================================
# Health Check
# ============================================================================

@app.route(route="health", methods=["GET"])
async def health(req: func.HttpRequest) -> func.HttpResponse:
    """Health check endpoint."""
    db_status = "connected"
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except Exception as exc:
        db_status = f"error: {exc}"

    rabbitmq_status = "disabled"
    if settings.events_enabled:
        rabbitmq_status = "connected"
        try:
            connection = pika.BlockingConnection(pika.URLParameters(settings.rabbitmq_url))
            connection.close()
        except Exception as exc:
            rabbitmq_status = f"error: {exc}"

    healthy = db_status == "connected" and rabbitmq_status in ("connected", "disabled")

    return func.HttpResponse(
        json.dumps({
            "status": "healthy" if healthy else "degraded",
            "database": db_status,
            "rabbitmq": rabbitmq_status,
        }),
        mimetype="application/json",
    )


# ============================================================================
# Admin API - Trigger reconciliation
# ============================================================================

@app.route(route="admin/reconcile", methods=["POST"])
async def trigger_reconciliation(req: func.HttpRequest) -> func.HttpResponse:
    """Run the stale-offer sweep on demand."""
    try:
        output = await run_reconciliation()
    except Exception as exc:
        logging.error(f"Reconciliation failed: {exc}")
        return func.HttpResponse(
            json.dumps({"error": str(exc)}),
            mimetype="application/json",
            status_code=503,
        )

    return func.HttpResponse(json.dumps(_summary(output)), mimetype="application/json")


# ============================================================================
# Timer Trigger - Scheduled reconciliation
# ============================================================================

@app.schedule(schedule="0 */15 * * * *", arg_name="timer", run_on_startup=False)
async def scheduled_reconciliation(timer: func.TimerRequest) -> None:
    """
    Runs every 15 minutes.

    Finalization cancels competing offers itself; this only picks up the ones
    it had to leave pending after exhausting its retries, plus listings whose
    sale was interrupted between reservation and commit.
    """
    if timer.past_due:
        logging.warning("Reconciliation timer is past due")

    try:
        output = await run_reconciliation()
    except Exception as exc:
        logging.error(f"Scheduled reconciliation failed: {exc}")
        return

    logging.info(
        f"Reconciliation checked {output.listings_checked} listings, "
        f"cancelled {len(output.cancelled_offer_ids)} offers, "
        f"released {len(output.released_listing_ids)} stale reservations, "
        f"{len(output.unresolved_listing_ids)} unresolved"
    )
