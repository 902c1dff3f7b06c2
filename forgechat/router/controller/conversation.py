from __future__ import annotations

from fastapi import Depends, HTTPException, status

from forgechat.errors import ChatRequestError, ConversationNotFound, PersistenceError
from forgechat.log import logger
from forgechat.orchestrator import StreamOrchestrator
from forgechat.router.api.params import (
    ChatRequest,
    ConversationInfo,
    NewConversation,
    QueryConversations,
)
from forgechat.router.streamer import ChatEventSourceResponse
from forgechat.store.conversation import (
    ConversationGateway,
    ConversationRecord,
    get_conversation_gateway,
)


def get_conversation_controller(
    gateway: ConversationGateway = Depends(get_conversation_gateway),
) -> ConversationController:
    return ConversationController(gateway)


def _unavailable(e: PersistenceError) -> HTTPException:
    logger.exception(f"Conversation storage failed: {e}")
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.user_message)


def _to_info(c: ConversationRecord, with_messages: bool) -> ConversationInfo:
    return ConversationInfo(
        conversation_id=c.conversation_id,
        title=c.title,
        created_at=c.created_at,
        updated_at=c.updated_at,
        metadata=c.metadata,
        messages=c.messages if with_messages else None,
    )


class ConversationController:
    def __init__(self, gateway: ConversationGateway) -> None:
        self.gateway = gateway

    async def create_conversation(self) -> NewConversation:
        try:
            c = await self.gateway.create_conversation()
        except PersistenceError as e:
            raise _unavailable(e) from e
        return NewConversation(conversation_id=c.conversation_id, title=c.title)

    async def get_conversations(self, limit: int, offset: int, order_by: str, order: str) -> QueryConversations:
        if order not in ["asc", "desc"]:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Order must be 'asc' or 'desc'",
            )
        if order_by not in ["created_at", "updated_at"]:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Order by must be 'created_at' or 'updated_at'",
            )

        try:
            conversations = await self.gateway.list_conversations(limit, offset, order_by, order)
        except PersistenceError as e:
            raise _unavailable(e) from e

        return QueryConversations(
            datas=[_to_info(c, with_messages=False) for c in conversations],
            limit=limit,
            offset=offset,
            has_more=len(conversations) == limit,
        )

    async def get_conversation_info(self, conversation_id: str) -> ConversationInfo:
        try:
            conversation = await self.gateway.get_conversation(conversation_id)
        except PersistenceError as e:
            raise _unavailable(e) from e
        if not conversation:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
        return _to_info(conversation, with_messages=True)

    async def delete_conversation(self, conversation_id: str) -> None:
        try:
            deleted = await self.gateway.delete_conversation(conversation_id)
        except PersistenceError as e:
            raise _unavailable(e) from e
        if not deleted:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")

    async def chat(self, params: ChatRequest, orchestrator: StreamOrchestrator) -> ChatEventSourceResponse:
        try:
            turn = await orchestrator.prepare(params)
        except ChatRequestError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.user_message) from e
        except ConversationNotFound as e:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found") from e

        return ChatEventSourceResponse(orchestrator.stream(turn), cancel=turn.cancel)
