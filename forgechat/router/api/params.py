from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from forgechat.modes import Mode
from forgechat.store.conversation import MessageRecord


class NewConversation(BaseModel):
    conversation_id: str
    title: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str = ""
    conversation_id: str | None = Field(None, alias="conversationId")
    mode: Mode | None = None
    system_prompt: str | None = Field(None, alias="systemPrompt")
    allowed_tools: list[str] | None = Field(None, alias="allowedTools")
    restrictions: list[str] | None = None


class ConversationInfo(BaseModel):
    conversation_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
    messages: list[MessageRecord] | None = None


class QueryConversations(BaseModel):
    datas: list[ConversationInfo]
    limit: int
    offset: int
    has_more: bool


class ModeInfo(BaseModel):
    mode: Mode
    name: str
    description: str
    capabilities: list[str]
    restrictions: list[str]
    tools: list[str]


class GetModesResponse(BaseModel):
    default_mode: Mode
    modes: list[ModeInfo]
