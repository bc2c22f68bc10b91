from __future__ import annotations

import asyncio
import dataclasses
import itertools
import threading
import time
from asyncio.events import AbstractEventLoop
from typing import Any, Callable, Dict, List, NewType, Optional, Set, Type, TypeVar

import rich
import websockets.exceptions
from websockets.asyncio.server import Server, ServerConnection, serve

from ._async_message_buffer import AsyncMessageBuffer
from ._messages import MalformedMessage, Message, UnrecognizedMessage

ClientId = NewType("ClientId", int)
TMessage = TypeVar("TMessage", bound=Message)


@dataclasses.dataclass
class _ClientHandleState:
    # Internal state for WebsockClientConnection objects.
    message_buffer: AsyncMessageBuffer
    event_loop: AbstractEventLoop


class MessageHandler:
    """Mix-in for adding message handling to a class."""

    def __init__(self) -> None:
        self._incoming_handlers: Dict[
            Type[Message], List[Callable[[ClientId, Message], None]]
        ] = {}
        self._binary_handlers: List[Callable[[ClientId, bytes], None]] = []

    def register_handler(
        self,
        message_cls: Type[TMessage],
        callback: Callable[[ClientId, TMessage], Any],
    ) -> None:
        """Register a handler for a particular message type."""
        if message_cls not in self._incoming_handlers:
            self._incoming_handlers[message_cls] = []
        self._incoming_handlers[message_cls].append(callback)  # type: ignore

    def register_binary_handler(self, callback: Callable[[ClientId, bytes], Any]) -> None:
        """Register a handler for binary frames."""
        self._binary_handlers.append(callback)

    def _handle_incoming_message(self, client_id: ClientId, message: Message) -> bool:
        """Handle incoming messages. Returns False if nothing handled the message."""
        handlers = self._incoming_handlers.get(type(message), [])
        for cb in handlers:
            cb(client_id, message)
        return len(handlers) > 0

    def _handle_incoming_binary(self, client_id: ClientId, payload: bytes) -> None:
        for cb in self._binary_handlers:
            cb(client_id, payload)


class WebsockClientConnection:
    """Handle for interacting with a single connected client."""

    def __init__(
        self, client_id: ClientId, remote_address: str, state: _ClientHandleState
    ) -> None:
        self.client_id = client_id
        self.remote_address = remote_address
        self._state = state

    def send(self, message: Message) -> bool:
        """Queue a message for this client. Never blocks.

        Returns:
            False if the message was dropped (connection closing, or too many
            messages already waiting).
        """
        return self._state.message_buffer.push(message)

    def close(self) -> None:
        """Close the connection after any already-queued messages are sent."""
        self._state.message_buffer.set_done()

    @property
    def closed(self) -> bool:
        return self._state.message_buffer.done


class WebsockServer(MessageHandler):
    """Websocket server abstraction. Runs an event loop in a background thread,
    with one handler per connection.

    Args:
        host: Host to bind server to.
        port: Port to bind server to. 0 picks a free port.
        message_class: Base class for message types.
        verbose: Toggle for print messages.
        max_pending_messages: Size bound for each connection's outgoing buffer.
    """

    def __init__(
        self,
        host: str,
        port: int,
        message_class: Type[Message] = Message,
        verbose: bool = True,
        max_pending_messages: int = 256,
    ):
        super().__init__()

        self._client_connect_cb: List[Callable[[WebsockClientConnection], None]] = []
        self._client_disconnect_cb: List[Callable[[WebsockClientConnection], None]] = []
        self._client_activity_cb: List[Callable[[ClientId, float], None]] = []
        self._server_stop_cb: List[Callable[[], None]] = []

        self._host = host
        self._port = port
        self._message_class = message_class
        self._verbose = verbose
        self._max_pending_messages = max_pending_messages

        self._client_ids = itertools.count(start=1)
        self._connection_tasks: Set[asyncio.Task] = set()
        self._startup_error: Optional[BaseException] = None
        self._thread: Optional[threading.Thread] = None
        self._ws_server: Optional[Server] = None

    def start(self) -> None:
        """Start the server. Blocks until the listening socket is bound.

        Raises:
            OSError: if the listening socket can't be bound.
            Exception: whatever else stopped the server from starting.
        """

        ready_sem = threading.Semaphore(value=1)
        ready_sem.acquire()
        self._thread = threading.Thread(
            target=lambda: self._background_worker(ready_sem),
            daemon=True,
        )
        self._thread.start()

        # Wait for the thread to bind the socket, or fail to.
        ready_sem.acquire()

        if self._startup_error is not None:
            self._thread.join()
            raise self._startup_error

    def stop(self) -> None:
        """Run stop callbacks, wait for connections to finish sending, then close
        the listening socket and the event loop."""
        for cb in self._server_stop_cb:
            cb()

        future = asyncio.run_coroutine_threadsafe(
            self._close_listener(), self._event_loop
        )
        future.result()
        self._event_loop.call_soon_threadsafe(self._event_loop.stop)
        assert self._thread is not None
        self._thread.join()

    def get_port(self) -> int:
        return self._port

    def on_client_connect(self, cb: Callable[[WebsockClientConnection], Any]) -> None:
        """Attach a callback to run for newly connected clients."""
        self._client_connect_cb.append(cb)

    def on_client_disconnect(
        self, cb: Callable[[WebsockClientConnection], Any]
    ) -> None:
        """Attach a callback to run when clients disconnect."""
        self._client_disconnect_cb.append(cb)

    def on_client_activity(self, cb: Callable[[ClientId, float], Any]) -> None:
        """Attach a callback to run for every inbound frame."""
        self._client_activity_cb.append(cb)

    def on_server_stop(self, cb: Callable[[], Any]) -> None:
        """Attach a callback to run at the start of `stop()`."""
        self._server_stop_cb.append(cb)

    async def _close_listener(self, drain_timeout_sec: float = 2.0) -> None:
        # Give connections a chance to flush their final messages.
        if len(self._connection_tasks) > 0:
            await asyncio.wait(
                list(self._connection_tasks), timeout=drain_timeout_sec
            )
        assert self._ws_server is not None
        self._ws_server.close()
        await self._ws_server.wait_closed()

    def _background_worker(self, ready_sem: threading.Semaphore) -> None:
        event_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(event_loop)
        self._event_loop = event_loop

        connection_count = 0

        async def handle_connection(websocket: ServerConnection) -> None:
            """Server loop, run once per connection."""
            nonlocal connection_count

            client_id = ClientId(next(self._client_ids))
            connection_count += 1
            task = asyncio.current_task()
            assert task is not None
            self._connection_tasks.add(task)

            remote = websocket.remote_address
            remote_address = str(remote[0]) if remote else "unknown"
            if self._verbose:
                rich.print(
                    f"[bold](deskrelay)[/bold] Connection opened ({client_id},"
                    f" {connection_count} total) from {remote_address}"
                )

            client_state = _ClientHandleState(
                AsyncMessageBuffer(event_loop, max_pending=self._max_pending_messages),
                event_loop,
            )
            client_connection = WebsockClientConnection(
                client_id, remote_address, client_state
            )

            for cb in self._client_connect_cb:
                cb(client_connection)

            # The producer sends outgoing messages; this task consumes incoming
            # ones. A failed write closes the connection, which also ends the
            # consumer loop.
            producer = asyncio.create_task(
                _message_producer(websocket, client_state.message_buffer)
            )
            try:
                await self._message_consumer(websocket, client_id)
            except websockets.exceptions.ConnectionClosed:
                pass
            finally:
                client_state.message_buffer.set_done()

                for cb in self._client_disconnect_cb:
                    cb(client_connection)

                if not producer.done():
                    producer.cancel()
                await asyncio.gather(producer, return_exceptions=True)

                connection_count -= 1
                self._connection_tasks.discard(task)
                if self._verbose:
                    rich.print(
                        f"[bold](deskrelay)[/bold] Connection closed ({client_id},"
                        f" {connection_count} total)"
                    )

        async def start_server() -> Server:
            # `serve()` needs a running event loop.
            return await serve(
                handle_connection, self._host, self._port, compression=None
            )

        try:
            self._ws_server = event_loop.run_until_complete(start_server())
        except Exception as e:
            self._startup_error = e
            ready_sem.release()
            event_loop.close()
            return

        self._port = list(self._ws_server.sockets)[0].getsockname()[1]
        ready_sem.release()
        event_loop.run_forever()
        event_loop.close()
        if self._verbose:
            rich.print("[bold](deskrelay)[/bold] Server stopped")

    async def _message_consumer(
        self, websocket: ServerConnection, client_id: ClientId
    ) -> None:
        """Loop waiting for and then handling incoming frames."""
        async for raw in websocket:
            now = time.time()
            for cb in self._client_activity_cb:
                cb(client_id, now)

            if isinstance(raw, bytes):
                payload = raw
                error_print_wrapper(
                    lambda: self._handle_incoming_binary(client_id, payload)
                )()
                continue

            try:
                message = self._message_class.deserialize(raw)
            except UnrecognizedMessage as e:
                rich.print(
                    f"[bold](deskrelay)[/bold] [yellow]Client {client_id} sent an"
                    f" unrecognized message type: {e.type_name!r}[/yellow]"
                )
                continue
            except MalformedMessage as e:
                rich.print(
                    f"[bold](deskrelay)[/bold] [yellow]Dropped malformed message from"
                    f" client {client_id}: {e}[/yellow]"
                )
                continue

            handled = True

            def handle(message: Message = message) -> None:
                nonlocal handled
                handled = self._handle_incoming_message(client_id, message)

            error_print_wrapper(handle)()
            if not handled:
                rich.print(
                    f"[bold](deskrelay)[/bold] [yellow]No handler for"
                    f" {message.type_name!r} from client {client_id}[/yellow]"
                )


async def _message_producer(
    websocket: ServerConnection,
    buffer: AsyncMessageBuffer,
) -> None:
    """Send windows of messages from a buffer until it's done, then close the
    connection."""
    async for outgoing in buffer.window_generator():
        for message in outgoing:
            await websocket.send(message.serialize())
    await websocket.close()


def error_print_wrapper(inner: Callable[[], Any]) -> Callable[[], None]:
    """Wrap a Callable to print error messages when they happen.

    A bug in one message handler shouldn't take down the connection that sent the
    message, or the executor job that ran it.
    """

    def wrapped() -> None:
        try:
            inner()
        except Exception:
            rich.get_console().print_exception(max_frames=20)

    return wrapped
