from fastapi import APIRouter, Depends, Response, status
from sse_starlette.sse import EventSourceResponse

from forgechat.orchestrator import StreamOrchestrator, get_stream_orchestrator
from forgechat.router.api.params import (
    ChatRequest,
    ConversationInfo,
    NewConversation,
    QueryConversations,
)
from forgechat.router.controller.conversation import (
    ConversationController,
    get_conversation_controller,
)

router = APIRouter(
    tags=["conversation"],
    prefix="/api/v1/conversation",
)


@router.post("/create")
async def create_conversation(
    conversation_controller: ConversationController = Depends(get_conversation_controller),
) -> NewConversation:
    return await conversation_controller.create_conversation()


@router.get("/list")
async def get_conversations(
    conversation_controller: ConversationController = Depends(get_conversation_controller),
    limit: int = 100,
    offset: int = 0,
    order_by: str = "created_at",
    order: str = "desc",
) -> QueryConversations:
    return await conversation_controller.get_conversations(limit, offset, order_by, order)


@router.get("/info/{conversation_id}")
async def get_conversation_info(
    conversation_id: str,
    conversation_controller: ConversationController = Depends(get_conversation_controller),
) -> ConversationInfo:
    return await conversation_controller.get_conversation_info(conversation_id)


@router.post("/delete/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_conversation(
    conversation_id: str,
    conversation_controller: ConversationController = Depends(get_conversation_controller),
) -> Response:
    await conversation_controller.delete_conversation(conversation_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/chat", response_class=EventSourceResponse)
async def chat(
    params: ChatRequest,
    conversation_controller: ConversationController = Depends(get_conversation_controller),
    orchestrator: StreamOrchestrator = Depends(get_stream_orchestrator),
) -> EventSourceResponse:
    return await conversation_controller.chat(params, orchestrator)
