"""Single-producer/single-consumer event channel between worker and consumer.

Events are tagged with the id of the turn that produced them. The channel is
FIFO within a turn; the consumer compares the tag with the turn it is
following and discards events of any other (cancelled or superseded) turn.
"""

import asyncio
import logging
from dataclasses import dataclass

from relay_server.engine.events import EngineEvent

logger = logging.getLogger(__name__)


@dataclass
class Envelope:
    """An event together with the turn that produced it."""

    turn_id: str
    event: EngineEvent


class EventChannel:
    """Unbounded FIFO of :class:`Envelope` objects."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Envelope] = asyncio.Queue()

    def send(self, turn_id: str, event: EngineEvent) -> None:
        """Deliver an event without blocking the worker."""
        self._queue.put_nowait(Envelope(turn_id=turn_id, event=event))

    async def receive(self, timeout: float) -> Envelope | None:
        """Wait up to ``timeout`` seconds for the next event."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def drain(self) -> int:
        """Drop every queued event and return how many were dropped."""
        dropped = 0
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            dropped += 1
        if dropped:
            logger.debug(f"Drained {dropped} stale events")
        return dropped

    def __len__(self) -> int:
        return self._queue.qsize()


class TurnEmitter:
    """Worker-side handle that stamps every event with its turn id."""

    def __init__(self, channel: EventChannel, turn_id: str) -> None:
        self.channel = channel
        self.turn_id = turn_id

    def emit(self, event: EngineEvent) -> None:
        self.channel.send(self.turn_id, event)
