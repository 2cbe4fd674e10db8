"""
No-op event publisher, used in tests and when the realtime feed is disabled.
"""
import structlog

from marketplace_core.application.interfaces.event_publisher import EventPublisher
from marketplace_core.domain.events.domain_events import DomainEvent

logger = structlog.get_logger(__name__)


class NoOpEventPublisher(EventPublisher):
    """Records events in memory instead of publishing them."""

    def __init__(self) -> None:
        self.published: list[DomainEvent] = []

    async def publish(self, event: DomainEvent) -> None:
        self.published.append(event)
        logger.debug("noop_event_discarded", event_type=type(event).__name__)
