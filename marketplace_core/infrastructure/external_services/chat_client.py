"""HTTP client for the marketplace chat service."""
from uuid import UUID

import httpx
import structlog

from marketplace_core.application.interfaces.chat_gateway import ChatGateway
from marketplace_core.config import settings

logger = structlog.get_logger(__name__)


class ChatClientError(Exception):
    pass


class ChatClient(ChatGateway):
    """Thin HTTP wrapper around the chat service REST API."""

    def __init__(
        self,
        base_url: str = settings.chat_api_url,
        api_key: str = settings.chat_api_key,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._headers = {
            "x-api-key": api_key,
            "Content-Type": "application/json",
        }

    async def post_message(
        self, *, listing_id: UUID, sender_id: UUID, receiver_id: UUID, content: str
    ) -> None:
        """
        POST /messages → {"id": "...", "created_at": "..."}
        """
        payload = {
            "listing_id": str(listing_id),
            "sender_id": str(sender_id),
            "receiver_id": str(receiver_id),
            "content": content,
        }

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            try:
                response = await client.post(
                    f"{self._base_url}/messages",
                    json=payload,
                    headers=self._headers,
                )
                response.raise_for_status()
                logger.info(
                    "chat_message_posted",
                    listing_id=str(listing_id),
                    receiver_id=str(receiver_id),
                )
            except httpx.HTTPStatusError as exc:
                logger.error(
                    "chat_request_failed",
                    status_code=exc.response.status_code,
                    response=exc.response.text,
                )
                raise ChatClientError(
                    f"Chat service returned {exc.response.status_code}: {exc.response.text}"
                ) from exc
            except httpx.RequestError as exc:
                logger.error("chat_connection_failed", error=str(exc))
                raise ChatClientError(f"Failed to reach chat service: {exc}") from exc
