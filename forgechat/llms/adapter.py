from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from functools import cache

from fastapi import Depends, HTTPException, status
from pydantic_ai.exceptions import UnexpectedModelBehavior
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelRequestPart,
    ModelResponse,
    PartDeltaEvent,
    PartStartEvent,
    SystemPromptPart,
    TextPart,
    TextPartDelta,
    ToolCallPart,
    UserPromptPart,
)
from pydantic_ai.models import Model, ModelRequestParameters, StreamedResponse
from pydantic_ai.settings import ModelSettings
from pydantic_ai.tools import ToolDefinition

from forgechat.config import Config, get_config
from forgechat.errors import AdapterConnectionError, ForgechatError, MalformedStreamError
from forgechat.llms import (
    AdapterEvent,
    ModelStreamAdapter,
    Prompt,
    TextDelta,
    ToolCallInputReady,
    ToolCallStarted,
    TurnEnded,
)
from forgechat.llms.models import init_model, model_params_from_config, model_settings_from_config
from forgechat.log import logger
from forgechat.store.conversation import MessageRole
from forgechat.tools.schemas import ToolSpec


def get_model_stream_adapter(config: Config = Depends(get_config)) -> ModelStreamAdapter:
    try:
        return _get_model_stream_adapter(config)
    except Exception as e:
        logger.exception(f"Cannot initialize model {config.model_provider}:{config.model_name}: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Model provider is not configured",
        ) from e


@cache
def _get_model_stream_adapter(config: Config) -> PydanticAIStreamAdapter:
    return PydanticAIStreamAdapter(
        model=init_model(model_params_from_config(config)),
        model_settings=model_settings_from_config(config),
    )


def to_model_messages(prompt: Prompt) -> list[ModelMessage]:
    messages: list[ModelMessage] = []
    pending: list[ModelRequestPart] = [SystemPromptPart(content=prompt.system_prompt)]

    for message in prompt.history:
        if message.role == MessageRole.USER:
            pending.append(UserPromptPart(content=message.content))
        elif message.role == MessageRole.ASSISTANT and message.content:
            messages.append(ModelRequest(parts=pending))
            messages.append(ModelResponse(parts=[TextPart(content=message.content)]))
            pending = []

    pending.append(UserPromptPart(content=prompt.user_message))
    messages.append(ModelRequest(parts=pending))
    return messages


def to_tool_definition(spec: ToolSpec) -> ToolDefinition:
    return ToolDefinition(
        name=spec.name,
        description=spec.description,
        parameters_json_schema=spec.parameters_json_schema(),
    )


class PydanticAIStreamAdapter(ModelStreamAdapter):
    def __init__(self, model: Model, model_settings: ModelSettings | None = None) -> None:
        self.model = model
        self.model_settings = model_settings

    @asynccontextmanager
    async def open_stream(self, prompt: Prompt, tools: list[ToolSpec]) -> AsyncIterator[AsyncIterator[AdapterEvent]]:
        parameters = ModelRequestParameters(function_tools=[to_tool_definition(t) for t in tools])
        async with AsyncExitStack() as stack:
            try:
                response = await stack.enter_async_context(
                    self.model.request_stream(to_model_messages(prompt), self.model_settings, parameters)
                )
            except ForgechatError:
                raise
            except Exception as e:
                raise AdapterConnectionError(f"Failed to open model stream: {e!r}") from e
            yield self._events(response)

    async def _events(self, response: StreamedResponse) -> AsyncIterator[AdapterEvent]:
        open_tool_calls: dict[int, ToolCallPart] = {}
        try:
            async for event in response:
                if isinstance(event, PartStartEvent):
                    # A new part means every other open tool call has all of its arguments
                    for ready in self._take_ready(response, open_tool_calls, keep=event.index):
                        yield ready

                    part = event.part
                    if isinstance(part, TextPart):
                        if part.content:
                            yield TextDelta(part.content)
                    elif isinstance(part, ToolCallPart):
                        if event.index not in open_tool_calls:
                            open_tool_calls[event.index] = part
                            yield ToolCallStarted(part.tool_call_id, part.tool_name)
                elif isinstance(event, PartDeltaEvent):
                    if isinstance(event.delta, TextPartDelta) and event.delta.content_delta:
                        yield TextDelta(event.delta.content_delta)

            for ready in self._take_ready(response, open_tool_calls):
                yield ready
        except UnexpectedModelBehavior as e:
            raise MalformedStreamError(f"Unexpected model behavior: {e}") from e
        except ForgechatError:
            raise
        except Exception as e:
            raise AdapterConnectionError(f"Model stream interrupted: {e!r}") from e

        yield TurnEnded()

    @staticmethod
    def _take_ready(
        response: StreamedResponse, open_tool_calls: dict[int, ToolCallPart], keep: int | None = None
    ) -> list[ToolCallInputReady]:
        ready_indexes = sorted(i for i in open_tool_calls if i != keep)
        if not ready_indexes:
            return []

        current = {
            part.tool_call_id: part for part in response.get().parts if isinstance(part, ToolCallPart)
        }
        ready = []
        for index in ready_indexes:
            started = open_tool_calls.pop(index)
            part = current.get(started.tool_call_id, started)
            try:
                args = part.args_as_dict()
            except ValueError:
                args = part.args if isinstance(part.args, str) else ""
            ready.append(ToolCallInputReady(started.tool_call_id, part.tool_name, args))
        return ready
