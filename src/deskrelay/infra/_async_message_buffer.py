from __future__ import annotations

import asyncio
import dataclasses
import threading
from asyncio.events import AbstractEventLoop
from typing import AsyncGenerator, Dict, List, Sequence

from ._messages import Message


@dataclasses.dataclass
class AsyncMessageBuffer:
    """Bounded outgoing buffer for one connection.

    Pushing never blocks: when the buffer is full or closed, the message is dropped.
    Messages with a shared redundancy key replace each other, so only the latest
    one is sent."""

    event_loop: AbstractEventLoop
    max_pending: int = 256
    message_event: asyncio.Event = dataclasses.field(default_factory=asyncio.Event)

    message_counter: int = 0
    message_from_id: Dict[int, Message] = dataclasses.field(default_factory=dict)
    id_from_redundancy_key: Dict[str, int] = dataclasses.field(default_factory=dict)

    buffer_lock: threading.Lock = dataclasses.field(default_factory=threading.Lock)
    """Lock to prevent race conditions when pushing messages from different threads."""

    done: bool = False

    def push(self, message: Message) -> bool:
        """Push a new message to our buffer, and remove an old redundant one.

        Returns:
            False if the message was dropped.
        """

        assert isinstance(message, Message)

        redundancy_key = message.redundancy_key()
        with self.buffer_lock:
            if self.done:
                return False

            # If an existing message with the same key is still waiting, we don't
            # need the old one anymore.
            if (
                redundancy_key is not None
                and redundancy_key in self.id_from_redundancy_key
            ):
                old_message_id = self.id_from_redundancy_key.pop(redundancy_key)
                self.message_from_id.pop(old_message_id, None)
            elif len(self.message_from_id) >= self.max_pending:
                return False

            new_message_id = self.message_counter
            self.message_from_id[new_message_id] = message
            self.message_counter += 1
            if redundancy_key is not None:
                self.id_from_redundancy_key[redundancy_key] = new_message_id

        # Pulse message event to notify the producer that a new message is available.
        self.event_loop.call_soon_threadsafe(self.message_event.set)
        return True

    def set_done(self) -> None:
        """Set the done flag. Messages that are already buffered are still yielded,
        then the generator exits."""
        with self.buffer_lock:
            self.done = True

        # Pulse message event to make sure we aren't waiting for a new message.
        self.event_loop.call_soon_threadsafe(self.message_event.set)

    def _pop_window(self) -> List[Message]:
        with self.buffer_lock:
            window = [
                self.message_from_id[message_id]
                for message_id in sorted(self.message_from_id)
            ]
            self.message_from_id.clear()
            self.id_from_redundancy_key.clear()
        return window

    async def window_generator(self) -> AsyncGenerator[Sequence[Message], None]:
        """Async iterator over windows of messages. Waits when no messages are
        available, and exits once the buffer is done and drained."""

        while True:
            self.message_event.clear()
            window = self._pop_window()
            if len(window) > 0:
                yield window
                continue
            if self.done:
                return

            # Wait for a new message to come in.
            await self.message_event.wait()
