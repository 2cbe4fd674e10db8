import pika
from fastapi import APIRouter
from sqlalchemy import text

from marketplace_core.config import settings
from marketplace_core.infrastructure.database.connection import AsyncSessionLocal

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict:  # type: ignore[type-arg]
    """Liveness + dependency health check."""
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

    return {
        "status": "healthy" if healthy else "degraded",
        "database": db_status,
        "rabbitmq": rabbitmq_status,
    }
