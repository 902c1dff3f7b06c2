from __future__ import annotations

import enum
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from fastapi import Depends
from pydantic import BaseModel, Field
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from forgechat.dbutils import get_session_factory
from forgechat.errors import PersistenceError
from forgechat.orm import Conversation, Message, utcnow

TITLE_MAX_LENGTH = 50


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class MessageRecord(BaseModel):
    message_id: str
    conversation_id: str
    role: MessageRole
    content: str
    created_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)


class ConversationRecord(BaseModel):
    conversation_id: str
    title: str
    created_at: datetime
    updated_at: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
    messages: list[MessageRecord] = Field(default_factory=list)


def generate_title(first_message: str) -> str:
    first_sentence = re.split(r"[.!?]", first_message, maxsplit=1)[0].strip()
    if 0 < len(first_sentence) <= TITLE_MAX_LENGTH:
        return first_sentence

    first_message = first_message.strip()
    if len(first_message) > TITLE_MAX_LENGTH:
        return first_message[:TITLE_MAX_LENGTH] + "..."
    return first_message or "Untitled"


class ConversationGateway(ABC):
    """Append-only conversation log."""

    @abstractmethod
    async def get_conversation(self, conversation_id: str) -> ConversationRecord | None: ...

    @abstractmethod
    async def create_conversation(
        self, title: str = "Untitled", metadata: dict[str, Any] | None = None
    ) -> ConversationRecord: ...

    @abstractmethod
    async def add_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
        message_id: str | None = None,
    ) -> MessageRecord:
        """Append a message. Appending the same `message_id` twice returns the stored message."""

    @abstractmethod
    async def get_recent_messages(self, conversation_id: str, count: int) -> list[MessageRecord]:
        """Last `count` messages, oldest first."""

    @abstractmethod
    async def list_conversations(
        self, limit: int, offset: int, order_by: str, order: str
    ) -> list[ConversationRecord]: ...

    @abstractmethod
    async def delete_conversation(self, conversation_id: str) -> bool: ...


def get_conversation_gateway(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> ConversationGateway:
    return SqlConversationGateway(session_factory)


class SqlConversationGateway(ConversationGateway):
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    @staticmethod
    def _to_message(m: Message) -> MessageRecord:
        return MessageRecord(
            message_id=m.message_id,
            conversation_id=m.conversation_id,
            role=MessageRole(m.role),
            content=m.content,
            created_at=m.created_at,
            metadata=m.meta or {},
        )

    @staticmethod
    def _to_conversation(c: Conversation, messages: list[Message] | None = None) -> ConversationRecord:
        return ConversationRecord(
            conversation_id=c.conversation_id,
            title=c.title,
            created_at=c.created_at,
            updated_at=c.updated_at,
            metadata=c.meta or {},
            messages=[SqlConversationGateway._to_message(m) for m in messages or []],
        )

    async def get_conversation(self, conversation_id: str) -> ConversationRecord | None:
        try:
            async with self.session_factory() as session:
                conversation = await session.get(Conversation, conversation_id)
                if conversation is None:
                    return None
                result = await session.execute(
                    select(Message).where(Message.conversation_id == conversation_id).order_by(Message.id)
                )
                return self._to_conversation(conversation, list(result.scalars().all()))
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to get conversation {conversation_id}: {e}") from e

    async def create_conversation(
        self, title: str = "Untitled", metadata: dict[str, Any] | None = None
    ) -> ConversationRecord:
        try:
            async with self.session_factory() as session:
                c = Conversation(title=title, meta=metadata or {})
                session.add(c)
                await session.commit()
                return self._to_conversation(c)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to create conversation: {e}") from e

    async def add_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
        message_id: str | None = None,
    ) -> MessageRecord:
        try:
            async with self.session_factory() as session:
                if message_id:
                    existing = await self._find_message(session, message_id)
                    if existing is not None:
                        return self._to_message(existing)

                if await session.get(Conversation, conversation_id) is None:
                    raise PersistenceError(f"Conversation {conversation_id} does not exist")

                m = Message(
                    conversation_id=conversation_id,
                    role=MessageRole(role).value,
                    content=content,
                    meta=metadata or {},
                )
                if message_id:
                    m.message_id = message_id
                session.add(m)
                await session.execute(
                    update(Conversation)
                    .where(Conversation.conversation_id == conversation_id)
                    .values(updated_at=utcnow())
                )
                try:
                    await session.commit()
                except IntegrityError:
                    # Lost a race on the same message id
                    await session.rollback()
                    existing = await self._find_message(session, m.message_id)
                    if existing is None:
                        raise
                    return self._to_message(existing)
                return self._to_message(m)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to add message to {conversation_id}: {e}") from e

    @staticmethod
    async def _find_message(session: AsyncSession, message_id: str) -> Message | None:
        result = await session.execute(select(Message).where(Message.message_id == message_id))
        return result.scalars().one_or_none()

    async def get_recent_messages(self, conversation_id: str, count: int) -> list[MessageRecord]:
        if count <= 0:
            return []
        try:
            async with self.session_factory() as session:
                result = await session.execute(
                    select(Message)
                    .where(Message.conversation_id == conversation_id)
                    .order_by(Message.id.desc())
                    .limit(count)
                )
                return [self._to_message(m) for m in reversed(result.scalars().all())]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to get messages of {conversation_id}: {e}") from e

    async def list_conversations(
        self, limit: int, offset: int, order_by: str, order: str
    ) -> list[ConversationRecord]:
        column = Conversation.created_at if order_by == "created_at" else Conversation.updated_at
        statement = select(Conversation).order_by(column if order == "asc" else column.desc())
        try:
            async with self.session_factory() as session:
                result = await session.execute(statement.limit(limit).offset(offset))
                return [self._to_conversation(c) for c in result.scalars().all()]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to list conversations: {e}") from e

    async def delete_conversation(self, conversation_id: str) -> bool:
        try:
            async with self.session_factory() as session:
                if await session.get(Conversation, conversation_id) is None:
                    return False
                await session.execute(delete(Message).where(Message.conversation_id == conversation_id))
                await session.execute(delete(Conversation).where(Conversation.conversation_id == conversation_id))
                await session.commit()
                return True
        except SQLAlchemyError as e:
            raise PersistenceError(f"Failed to delete conversation {conversation_id}: {e}") from e
