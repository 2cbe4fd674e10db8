from abc import ABC, abstractmethod
from uuid import UUID


class ChatGateway(ABC):
    """Port for posting conversational messages to the chat service."""

    @abstractmethod
    async def post_message(
        self, *, listing_id: UUID, sender_id: UUID, receiver_id: UUID, content: str
    ) -> None:
        ...
