"""Runs one chat turn: from a user message to a stream of normalized events.

A turn moves through

    IDLE -> VALIDATING -> CONNECTING -> STREAMING -> FINALIZING -> DONE
    any stage -> ERROR

`prepare` covers validation and raises before anything is streamed, so the
caller can answer with a plain HTTP error. `stream` covers everything after
and reports failures in-band.
"""

from __future__ import annotations

import asyncio
import enum
import uuid
from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, aclosing
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import partial
from typing import TYPE_CHECKING, Any

from fastapi import Depends

from forgechat.config import Config, get_config
from forgechat.errors import (
    AdapterConnectionError,
    ChatRequestError,
    ConversationNotFound,
    ForgechatError,
    MalformedStreamError,
    PersistenceError,
    StaleStreamError,
)
from forgechat.events import (
    END_OF_STREAM,
    CompleteEvent,
    EndOfStream,
    ErrorEvent,
    ModeStatusEvent,
    ProgressEvent,
    StreamEvent,
    TextDeltaEvent,
    ToolExecutionEvent,
    ToolStatus,
)
from forgechat.events import TextDelta as WireTextDelta
from forgechat.llms import (
    AdapterEvent,
    ModelStreamAdapter,
    Prompt,
    TextDelta,
    ToolCallInputReady,
    ToolCallStarted,
    TurnEnded,
)
from forgechat.llms.adapter import get_model_stream_adapter
from forgechat.log import logger
from forgechat.modes import Mode, ModePolicy, build_system_prompt
from forgechat.store.conversation import (
    ConversationGateway,
    MessageRecord,
    MessageRole,
    generate_title,
    get_conversation_gateway,
)
from forgechat.tools.executor import ToolContext, ToolExecutor, ToolResult, get_tool_executor
from forgechat.tools.schemas import ToolSpec

if TYPE_CHECKING:
    from forgechat.router.api.params import ChatRequest

# Tool runs that outlived their turn
_detached_tool_runs: set[asyncio.Task] = set()


class TurnStage(str, enum.Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    DONE = "done"
    ERROR = "error"


class InvocationStatus(str, enum.Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    ERROR = "error"


_NEXT_STATUSES = {
    InvocationStatus.PENDING: {InvocationStatus.EXECUTING},
    InvocationStatus.EXECUTING: {InvocationStatus.COMPLETED, InvocationStatus.ERROR},
    InvocationStatus.COMPLETED: set(),
    InvocationStatus.ERROR: set(),
}


@dataclass
class ToolInvocation:
    invocation_id: str
    tool_name: str
    input: dict[str, Any] | str | None = None
    status: InvocationStatus = InvocationStatus.PENDING

    def advance(self, status: InvocationStatus) -> None:
        if status not in _NEXT_STATUSES[self.status]:
            raise ValueError(f"Tool call {self.invocation_id} cannot go from {self.status.value} to {status.value}")
        self.status = status


@dataclass
class Turn:
    conversation_id: str
    transient: bool
    message: str
    mode: Mode
    system_prompt: str
    tools: list[ToolSpec]
    allowed_tools: frozenset[str] | None = None
    user_message_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    assistant_message_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    invocations: dict[str, ToolInvocation] = field(default_factory=dict)
    # Set by whoever consumes the stream when nobody is listening anymore
    cancel: asyncio.Event = field(default_factory=asyncio.Event)


@dataclass
class _TurnState:
    chunks: list[str] = field(default_factory=list)
    seen: set[str] = field(default_factory=set)
    tools_used: list[str] = field(default_factory=list)
    tools_denied: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "".join(self.chunks)


def get_stream_orchestrator(
    config: Config = Depends(get_config),
    gateway: ConversationGateway = Depends(get_conversation_gateway),
    adapter: ModelStreamAdapter = Depends(get_model_stream_adapter),
    executor: ToolExecutor = Depends(get_tool_executor),
) -> StreamOrchestrator:
    return StreamOrchestrator(gateway=gateway, adapter=adapter, executor=executor, config=config)


class StreamOrchestrator:
    """One instance per request."""

    def __init__(
        self,
        gateway: ConversationGateway,
        adapter: ModelStreamAdapter,
        executor: ToolExecutor,
        config: Config,
        policy: ModePolicy | None = None,
    ) -> None:
        self.gateway = gateway
        self.adapter = adapter
        self.executor = executor
        self.config = config
        self.policy = policy or ModePolicy()
        self.stage = TurnStage.IDLE

    def _enter(self, stage: TurnStage) -> None:
        logger.debug(f"Turn stage {self.stage.value} -> {stage.value}")
        self.stage = stage

    async def prepare(self, request: ChatRequest) -> Turn:
        """Validate the request and resolve its conversation.

        Raises:
            ChatRequestError: the message is missing or blank.
            ConversationNotFound: `conversation_id` names no conversation.
        """
        self._enter(TurnStage.VALIDATING)
        if not request.message or not request.message.strip():
            self._enter(TurnStage.ERROR)
            raise ChatRequestError("Message is required", user_message="Message is required")

        mode = request.mode or self.config.default_mode
        try:
            conversation_id, transient = await self._resolve_conversation(request.conversation_id, request.message)
        except ForgechatError:
            self._enter(TurnStage.ERROR)
            raise

        allowed_tools = frozenset(request.allowed_tools) if request.allowed_tools is not None else None
        return Turn(
            conversation_id=conversation_id,
            transient=transient,
            message=request.message,
            mode=mode,
            system_prompt=build_system_prompt(
                request.system_prompt or self.config.system_prompt, mode, request.restrictions
            ),
            tools=self.policy.tools_for_mode(mode, allowed_tools),
            allowed_tools=allowed_tools,
        )

    async def _resolve_conversation(self, conversation_id: str | None, message: str) -> tuple[str, bool]:
        if conversation_id:
            try:
                conversation = await self.gateway.get_conversation(conversation_id)
            except PersistenceError as e:
                logger.warning(f"Cannot look up conversation {conversation_id}, continuing without storage: {e}")
                return conversation_id, True
            if conversation is None:
                raise ConversationNotFound(f"Conversation {conversation_id} not found")
            return conversation.conversation_id, False

        try:
            conversation = await self.gateway.create_conversation(title=generate_title(message))
        except PersistenceError as e:
            local_id = f"local-{uuid.uuid4().hex}"
            logger.warning(f"Cannot create conversation, using transient {local_id}: {e}")
            return local_id, True
        logger.info(f"Created conversation {conversation.conversation_id}")
        return conversation.conversation_id, False

    async def stream(self, turn: Turn) -> AsyncIterator[StreamEvent | EndOfStream]:
        mode = turn.mode
        state = _TurnState()
        logger.info(
            f"Processing message in {mode.value.upper()} mode, "
            f"tools: {', '.join(t.name for t in turn.tools) or 'none'}"
        )
        yield ModeStatusEvent(mode=mode, tools_available=len(turn.tools), conversation_id=turn.conversation_id)

        try:
            self._enter(TurnStage.CONNECTING)
            yield ProgressEvent(stage="connecting", mode=mode)
            prompt = Prompt(
                system_prompt=turn.system_prompt,
                user_message=turn.message,
                history=await self._load_history(turn),
            )

            async with AsyncExitStack() as stack:
                events = await self._connect(stack, prompt, turn.tools)
                self._enter(TurnStage.STREAMING)
                yield ProgressEvent(stage="streaming", mode=mode)

                async with aclosing(self._with_idle_timeout(events)) as adapter_events:
                    async for event in adapter_events:
                        if turn.cancel.is_set():
                            logger.info(f"Turn in {turn.conversation_id} cancelled, closing model stream")
                            return
                        if isinstance(event, TurnEnded):
                            break
                        async with aclosing(self._handle(event, turn, state)) as outputs:
                            async for output in outputs:
                                yield output

                for invocation in list(turn.invocations.values()):
                    if invocation.status is not InvocationStatus.PENDING:
                        continue
                    logger.warning(f"Tool call {invocation.invocation_id} never got its input, running it without")
                    async with aclosing(self._execute(invocation, {}, turn, state)) as outputs:
                        async for output in outputs:
                            yield output
        except asyncio.CancelledError:
            logger.info(f"Turn in {turn.conversation_id} cancelled during {self.stage.value}")
            raise
        except ForgechatError as e:
            logger.warning(f"Turn in {turn.conversation_id} failed during {self.stage.value}: {e}")
            self._enter(TurnStage.ERROR)
            yield ErrorEvent(error=e.user_message, suggestion=e.suggestion, mode=mode)
            yield END_OF_STREAM
            return
        except Exception as e:
            logger.exception(f"Turn in {turn.conversation_id} crashed during {self.stage.value}: {e}")
            self._enter(TurnStage.ERROR)
            yield ErrorEvent(
                error="An unexpected error occurred",
                suggestion="Please try again or switch modes if needed",
                mode=mode,
            )
            yield END_OF_STREAM
            return

        self._enter(TurnStage.FINALIZING)
        text = state.text
        await self._persist(turn, state, text)
        yield CompleteEvent(
            mode=mode,
            tools_executed=len(state.tools_used),
            message_length=len(text),
            conversation_id=turn.conversation_id,
        )
        self._enter(TurnStage.DONE)
        yield END_OF_STREAM

    async def _load_history(self, turn: Turn) -> list[MessageRecord]:
        if turn.transient:
            return []
        try:
            return await self.gateway.get_recent_messages(turn.conversation_id, self.config.history_window)
        except PersistenceError as e:
            logger.warning(f"Cannot load history of {turn.conversation_id}, continuing without it: {e}")
            return []

    async def _connect(
        self, stack: AsyncExitStack, prompt: Prompt, tools: list[ToolSpec]
    ) -> AsyncIterator[AdapterEvent]:
        timeout = self.config.connect_timeout
        try:
            async with asyncio.timeout(timeout):
                return await stack.enter_async_context(self.adapter.open_stream(prompt, tools))
        except TimeoutError as e:
            raise AdapterConnectionError(f"Timed out after {timeout}s connecting to the model") from e
        except ForgechatError:
            raise
        except Exception as e:
            raise AdapterConnectionError(f"Failed to connect to the model: {e!r}") from e

    async def _with_idle_timeout(self, events: AsyncIterator[AdapterEvent]) -> AsyncIterator[AdapterEvent]:
        timeout = self.config.stream_idle_timeout
        iterator = aiter(events)
        try:
            while True:
                try:
                    async with asyncio.timeout(timeout):
                        event = await anext(iterator)
                except StopAsyncIteration:
                    return
                except TimeoutError as e:
                    raise StaleStreamError(f"No model events for {timeout}s") from e
                yield event
        finally:
            aclose = getattr(iterator, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _handle(
        self, event: AdapterEvent, turn: Turn, state: _TurnState
    ) -> AsyncIterator[StreamEvent]:
        if isinstance(event, TextDelta):
            if event.text:
                state.chunks.append(event.text)
                yield TextDeltaEvent(
                    delta=WireTextDelta(text=event.text),
                    mode=turn.mode,
                    restrictions=self.policy.restrictions_for(turn.mode),
                )

        elif isinstance(event, ToolCallStarted):
            output = self._start_invocation(event.invocation_id, event.tool_name, turn, state)
            if output is not None:
                yield output

        elif isinstance(event, ToolCallInputReady):
            if event.invocation_id not in state.seen:
                # Some providers only report a tool call once its input is complete
                output = self._start_invocation(event.invocation_id, event.tool_name, turn, state)
                if output is not None:
                    yield output

            invocation = turn.invocations.get(event.invocation_id)
            if invocation is None:
                return
            if invocation.status is not InvocationStatus.PENDING:
                logger.warning(f"Ignoring repeated input for tool call {event.invocation_id}")
                return

            async with aclosing(self._execute(invocation, event.args, turn, state)) as outputs:
                async for output in outputs:
                    yield output

        else:
            raise MalformedStreamError(f"Unexpected adapter event: {event!r}")

    def _start_invocation(
        self, invocation_id: str, tool_name: str, turn: Turn, state: _TurnState
    ) -> StreamEvent | None:
        if invocation_id in state.seen:
            logger.warning(f"Ignoring duplicate start for tool call {invocation_id} ({tool_name})")
            return None
        state.seen.add(invocation_id)

        decision = self.policy.check(tool_name, turn.mode, turn.allowed_tools)
        if not decision.allowed:
            logger.warning(f"Blocked tool {tool_name} in {turn.mode.value} mode: {decision.reason}")
            state.tools_denied.append(tool_name)
            return ErrorEvent(error=decision.reason, suggestion=decision.suggestion, mode=turn.mode, tool=tool_name)

        turn.invocations[invocation_id] = ToolInvocation(invocation_id=invocation_id, tool_name=tool_name)
        return ToolExecutionEvent(
            tool=tool_name,
            status=ToolStatus.STARTING,
            invocation_id=invocation_id,
            mode=turn.mode,
        )

    async def _execute(
        self,
        invocation: ToolInvocation,
        tool_input: dict[str, Any] | str,
        turn: Turn,
        state: _TurnState,
    ) -> AsyncIterator[StreamEvent]:
        invocation.input = tool_input
        invocation.advance(InvocationStatus.EXECUTING)
        state.tools_used.append(invocation.tool_name)
        yield ToolExecutionEvent(
            tool=invocation.tool_name,
            status=ToolStatus.EXECUTING,
            invocation_id=invocation.invocation_id,
            mode=turn.mode,
        )

        result = await self._run_tool(invocation, turn)
        if result.ok:
            invocation.advance(InvocationStatus.COMPLETED)
            yield ToolExecutionEvent(
                tool=invocation.tool_name,
                status=ToolStatus.COMPLETED,
                invocation_id=invocation.invocation_id,
                result=result.payload.model_dump(mode="json"),
                mode=turn.mode,
            )
        else:
            invocation.advance(InvocationStatus.ERROR)
            logger.info(f"Tool {invocation.tool_name} failed ({result.kind.value}): {result.message}")
            yield ToolExecutionEvent(
                tool=invocation.tool_name,
                status=ToolStatus.ERROR,
                invocation_id=invocation.invocation_id,
                error=result.message,
                mode=turn.mode,
            )

    async def _run_tool(self, invocation: ToolInvocation, turn: Turn) -> ToolResult:
        task = asyncio.create_task(
            self.executor.execute(
                invocation.tool_name,
                invocation.input,
                ToolContext(conversation_id=turn.conversation_id),
            )
        )
        try:
            # Shielded: a tool keeps running when the turn is cancelled
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.info(f"Turn cancelled while {invocation.tool_name} runs, letting it finish")
            _detached_tool_runs.add(task)
            task.add_done_callback(_detached_tool_runs.discard)
            task.add_done_callback(partial(_finish_detached, invocation))
            raise

    async def _persist(self, turn: Turn, state: _TurnState, text: str) -> None:
        if turn.transient:
            logger.warning(f"Conversation {turn.conversation_id} is transient, turn is not persisted")
            return

        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            await self.gateway.add_message(
                turn.conversation_id,
                MessageRole.USER,
                turn.message,
                metadata={"mode": turn.mode.value, "timestamp": timestamp},
                message_id=turn.user_message_id,
            )
            await self.gateway.add_message(
                turn.conversation_id,
                MessageRole.ASSISTANT,
                text,
                metadata={
                    "mode": turn.mode.value,
                    "tools_used": state.tools_used,
                    "tools_denied": state.tools_denied,
                    "timestamp": timestamp,
                },
                message_id=turn.assistant_message_id,
            )
        except Exception as e:
            # The answer was already streamed, only the stored copy is lost
            logger.exception(f"Failed to persist turn in {turn.conversation_id}: {e}")


def _finish_detached(invocation: ToolInvocation, task: asyncio.Task) -> None:
    if task.cancelled():
        invocation.advance(InvocationStatus.ERROR)
        logger.warning(f"Detached tool {invocation.tool_name} was cancelled")
        return

    result: ToolResult = task.result()
    invocation.advance(InvocationStatus.COMPLETED if result.ok else InvocationStatus.ERROR)
    logger.info(f"Detached tool {invocation.tool_name} finished with status {invocation.status.value}")
