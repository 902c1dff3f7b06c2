from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import Any, Union

from forgechat.store.conversation import MessageRecord
from forgechat.tools.schemas import ToolSpec


@dataclass(frozen=True)
class Prompt:
    system_prompt: str
    user_message: str
    history: list[MessageRecord] = field(default_factory=list)


@dataclass(frozen=True)
class TextDelta:
    text: str


@dataclass(frozen=True)
class ToolCallStarted:
    invocation_id: str
    tool_name: str


@dataclass(frozen=True)
class ToolCallInputReady:
    invocation_id: str
    tool_name: str
    # Parsed arguments, or the raw argument string when the model sent invalid JSON
    args: dict[str, Any] | str


@dataclass(frozen=True)
class TurnEnded:
    pass


AdapterEvent = Union[TextDelta, ToolCallStarted, ToolCallInputReady, TurnEnded]


class ModelStreamAdapter(ABC):
    @abstractmethod
    def open_stream(
        self, prompt: Prompt, tools: list[ToolSpec]
    ) -> AbstractAsyncContextManager[AsyncIterator[AdapterEvent]]:
        """Connect to the model. Entering the context connects, iterating streams the turn."""
