"""API client for the Forgechat backend."""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any

import httpx
from httpx_sse import aconnect_sse

from forgechat.events import EndOfStream, StreamEvent, UnknownEvent, decode_event
from forgechat.log import logger


class ForgechatAPIClient:
    """API client for the Forgechat backend."""

    def __init__(
        self,
        base_url: str,
        api_token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the API client.

        Args:
            base_url: The base URL of the API.
            api_token: Optional API token for authentication.
            client: Optional preconfigured httpx client, e.g. one bound to an ASGI app.
        """
        self.base_url = base_url.rstrip("/")
        self.headers = {"Authorization": f"Bearer {api_token}"} if api_token else {}
        self.client = client or httpx.AsyncClient(headers=self.headers, timeout=httpx.Timeout(30, read=None))
        logger.info(f"Initialized API client with base URL: {base_url}")

    async def __aenter__(self) -> ForgechatAPIClient:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def test_connection(self) -> dict[str, Any]:
        """Test the connection to the backend."""
        response = await self.client.get(f"{self.base_url}/")
        response.raise_for_status()
        return response.json()

    async def create_conversation(self) -> str:
        """Create a new conversation and return its ID."""
        url = f"{self.base_url}/api/v1/conversation/create"
        response = await self.client.post(url)
        response.raise_for_status()
        data = response.json()
        logger.info(f"Created conversation with ID: {data['conversation_id']}")
        return data["conversation_id"]

    async def get_conversations(
        self,
        limit: int = 100,
        offset: int = 0,
        order_by: str = "created_at",
        order: str = "desc",
    ) -> dict[str, Any]:
        """Get a page of conversations.

        Args:
            limit: The maximum number of conversations to return.
            offset: The offset to start from.
            order_by: `created_at` or `updated_at`.
            order: `asc` or `desc`.
        """
        url = f"{self.base_url}/api/v1/conversation/list"
        response = await self.client.get(
            url,
            params={"limit": limit, "offset": offset, "order_by": order_by, "order": order},
        )
        response.raise_for_status()
        return response.json()

    async def get_conversation_info(self, conversation_id: str) -> dict[str, Any]:
        url = f"{self.base_url}/api/v1/conversation/info/{conversation_id}"
        response = await self.client.get(url)
        response.raise_for_status()
        return response.json()

    async def delete_conversation(self, conversation_id: str) -> None:
        url = f"{self.base_url}/api/v1/conversation/delete/{conversation_id}"
        response = await self.client.post(url)
        response.raise_for_status()
        logger.info(f"Deleted conversation: {conversation_id}")

    async def get_modes(self) -> dict[str, Any]:
        response = await self.client.get(f"{self.base_url}/api/config/modes")
        response.raise_for_status()
        return response.json()

    async def chat_stream(
        self,
        message: str,
        conversation_id: str | None = None,
        mode: str | None = None,
        system_prompt: str | None = None,
        allowed_tools: list[str] | None = None,
        restrictions: list[str] | None = None,
    ) -> AsyncIterator[StreamEvent | UnknownEvent]:
        """Send one message and stream the decoded events of the reply.

        Stops at the end-of-stream frame. Events of unknown types are yielded
        as `UnknownEvent` so callers can skip them.

        Raises:
            httpx.HTTPStatusError: the request was rejected before streaming began.
        """
        url = f"{self.base_url}/api/v1/conversation/chat"
        payload: dict[str, Any] = {"message": message}
        if conversation_id:
            payload["conversationId"] = conversation_id
        if mode:
            payload["mode"] = mode
        if system_prompt is not None:
            payload["systemPrompt"] = system_prompt
        if allowed_tools is not None:
            payload["allowedTools"] = allowed_tools
        if restrictions is not None:
            payload["restrictions"] = restrictions

        async with aconnect_sse(self.client, "POST", url, json=payload) as event_source:
            if event_source.response.is_error:
                await event_source.response.aread()
                event_source.response.raise_for_status()
            async for sse in event_source.aiter_sse():
                if not sse.data:
                    continue
                event = decode_event(sse.data)
                if isinstance(event, EndOfStream):
                    return
                yield event

    async def close(self) -> None:
        """Close the client."""
        await self.client.aclose()
