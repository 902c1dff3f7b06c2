from __future__ import annotations

import asyncio
import contextlib
from collections import deque
from collections.abc import AsyncIterator
from typing import Any, Generic, TypeVar

from sse_starlette.sse import EventSourceResponse
from starlette.types import Receive, Scope, Send

from forgechat.events import EndOfStream, StreamEvent, encode_event
from forgechat.log import logger

T = TypeVar("T")


class EventChannel(Generic[T]):
    """
    Buffers the events of one response between the producer and the client.
    """

    def __init__(self):
        self.events: deque[T] = deque()
        self.completed: bool = False
        self.closed: bool = False
        self._event_added = asyncio.Event()

    def add_event(self, event: T) -> bool:
        """Add an event to the channel. Returns False, dropping the event, once the channel is closed."""
        if self.closed:
            return False
        self.events.append(event)
        self._event_added.set()
        self._event_added = asyncio.Event()
        return True

    def is_completed(self) -> bool:
        return self.completed

    def mark_completed(self) -> None:
        """Mark the channel as completed."""
        self.completed = True
        self._event_added.set()  # Wake up any waiting consumers

    def close(self) -> None:
        """Nobody is reading anymore."""
        self.closed = True
        self.mark_completed()

    async def stream_events(self) -> AsyncIterator[T]:
        """
        Stream events in the order they were added.
        Waits for new events until the channel is completed.
        """
        while True:
            while self.events:
                yield self.events.popleft()

            if self.completed:
                break

            await self._event_added.wait()


async def process_stream(source_iterator: AsyncIterator[Any], channel: EventChannel) -> None:
    """
    Drain a source iterator into a channel.
    This function should be run as a background task.
    """
    try:
        async for event in source_iterator:
            if not channel.add_event(event):
                logger.debug("Channel closed, stopping producer")
                break
    except Exception as e:
        logger.exception(f"Error processing stream: {e}")
    finally:
        aclose = getattr(source_iterator, "aclose", None)
        if aclose is not None:
            await aclose()
        channel.mark_completed()


class ChatEventSourceResponse(EventSourceResponse):
    """
    Streams the events of one chat turn.

    The turn runs in its own producer task. A client disconnect closes the
    channel, sets the turn's cancel event and cancels the producer.
    """

    def __init__(
        self,
        source: AsyncIterator[StreamEvent | EndOfStream],
        cancel: asyncio.Event | None = None,
        status_code: int = 200,
        **kwargs,
    ):
        self.source = source
        self.cancel = cancel
        self.channel: EventChannel[StreamEvent | EndOfStream] = EventChannel()
        self.producer: asyncio.Task | None = None

        async def event_generator():
            async for event in self.channel.stream_events():
                yield {"data": encode_event(event)}
                if isinstance(event, EndOfStream):
                    break

        super().__init__(
            content=event_generator(),
            status_code=status_code,
            sep="\n",
            **kwargs,
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """
        Run the producer while the response is streamed and stop it once the client is gone.
        """
        self.producer = asyncio.create_task(process_stream(self.source, self.channel))
        try:
            await super().__call__(scope, receive, send)
        finally:
            self.channel.close()
            if not self.producer.done():
                logger.info("Client went away before the turn finished, cancelling it")
                if self.cancel is not None:
                    self.cancel.set()
                self.producer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self.producer
