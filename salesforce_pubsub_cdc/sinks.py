"""
Event sinks: the single consumer interface the engine delivers records to.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Protocol, Union

from .models import DecodedRecord


class EventSink(Protocol):
    def on_event(self, record: DecodedRecord) -> Optional[Awaitable[None]]:
        """
        Called once per decoded event in delivery order, never concurrently.
        May be a coroutine function; the engine awaits it before the next event.
        """


async def deliver(sink: EventSink, record: DecodedRecord):
    result = sink.on_event(record)
    if inspect.isawaitable(result):
        await result


class CallbackSink:
    """Adapts a plain function or coroutine function to the sink interface."""

    def __init__(self, callback: Callable[[DecodedRecord], Union[None, Awaitable[None]]]):
        self.callback = callback

    def on_event(self, record: DecodedRecord):
        return self.callback(record)


class QueueSink:
    """
    Puts records on a bounded asyncio queue. A full queue suspends the
    engine's consumer, which in turn holds back the next FetchRequest.
    """

    def __init__(self, maxsize: int = 1000):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    async def on_event(self, record: DecodedRecord):
        await self.queue.put(record)

    async def get(self) -> DecodedRecord:
        return await self.queue.get()

    def qsize(self) -> int:
        return self.queue.qsize()


class LoggingSink:
    """Logs one line per event, e.g. for local testing."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger(__name__)

    def on_event(self, record: DecodedRecord):
        header = record.header
        if header is None:
            self.logger.info(f"Received event {record.event_id} (schema {record.schema_id})")
            return

        self.logger.info(
            f"Received {header.entity_name} {header.change_type.value} "
            f"{header.record_id or 'unknown'} changed={sorted(record.fields)}"
        )
