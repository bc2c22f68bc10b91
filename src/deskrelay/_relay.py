from __future__ import annotations

import socket
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Union

import rich
from rich import box, style
from rich.panel import Panel
from rich.table import Table

from . import _messages, infra
from ._actuator import Actuator, ActuatorKind, make_actuator
from ._lifecycle import LifecycleManager
from ._pipeline import InputEventPipeline
from ._registry import ConnectionRegistry, Endpoint
from ._resolver import PeerResolver
from ._router import MessageRouter
from ._threadpool_exceptions import print_threadpool_errors


def get_local_ips() -> List[str]:
    """Non-loopback IPv4 addresses of this machine."""
    addresses: List[str] = []
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    except socket.gaierror:
        infos = []
    for info in infos:
        address = str(info[4][0])
        if not address.startswith("127.") and address not in addresses:
            addresses.append(address)
    return addresses


class RelayServer:
    """:class:`RelayServer` is the signaling and control relay. On `start()`, it
    launches a thread with a websocket server; hosts and viewers connect to it,
    register their role, exchange session descriptions through it, and viewers
    send input events that are relayed to hosts and applied to the local
    actuator.

    Args:
        host: Host to bind server to.
        port: Port to bind server to. 0 picks a free port.
        actuator: Actuator instance, or the kind to create with `make_actuator()`.
        verbose: Toggle for print messages.
        max_pending_messages: Per-connection bound on queued outgoing messages.
        executor_workers: Threads used to drain input events.
        clock: Time source for the input pipeline's rate filter.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 9000,
        actuator: Union[Actuator, ActuatorKind] = "auto",
        verbose: bool = True,
        max_pending_messages: int = 256,
        executor_workers: int = 4,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._verbose = verbose
        self._actuator = (
            actuator
            if isinstance(actuator, Actuator)
            else make_actuator(actuator, verbose=verbose)
        )

        self.registry = ConnectionRegistry()
        self.resolver = PeerResolver(self.registry)
        self.router = MessageRouter(self.registry, self.resolver, verbose=verbose)
        self.pipeline = InputEventPipeline(
            self.router, self._actuator, clock=clock, verbose=verbose
        )
        self.lifecycle = LifecycleManager(
            self.registry, self.router, self.pipeline, verbose=verbose
        )

        self._thread_executor = ThreadPoolExecutor(max_workers=executor_workers)
        self._stopped = threading.Event()

        server = infra.WebsockServer(
            host=host,
            port=port,
            message_class=_messages.Message,
            verbose=verbose,
            max_pending_messages=max_pending_messages,
        )
        self._websock_server = server

        server.on_client_connect(self.lifecycle.connect)
        server.on_client_disconnect(
            lambda conn: self.lifecycle.disconnect(conn.client_id)
        )
        server.on_client_activity(self.lifecycle.touch)
        server.on_server_stop(self.lifecycle.shutdown_all)

        server.register_handler(
            _messages.RegisterMessage,
            lambda client_id, msg: self.lifecycle.handle_register(client_id, msg.role),
        )
        server.register_handler(
            _messages.HostReadyMessage,
            lambda client_id, msg: self.lifecycle.set_ready(client_id, True),
        )
        server.register_handler(
            _messages.HostStoppedMessage,
            lambda client_id, msg: self.lifecycle.set_ready(client_id, False),
        )
        server.register_handler(
            _messages.ConnectToHostMessage,
            lambda client_id, msg: self.lifecycle.connect_to_host(
                client_id, msg.host_id
            ),
        )
        for session_cls in (
            _messages.OfferMessage,
            _messages.AnswerMessage,
            _messages.IceCandidateMessage,
        ):
            server.register_handler(session_cls, self._handle_session)
        server.register_handler(_messages.ControlMessage, self._handle_control)
        server.register_binary_handler(self._handle_binary)

    def start(self) -> None:
        """Bind the listening socket and start serving.

        Raises:
            OSError: if the socket can't be bound.
        """
        self._websock_server.start()
        if self._verbose:
            self._print_banner()

    def stop(self) -> None:
        """Broadcast `server-shutdown`, close every connection, then close the
        listening socket."""
        if self._stopped.is_set():
            return
        self._stopped.set()
        self._websock_server.stop()
        self._thread_executor.shutdown(wait=True)

    def get_host(self) -> str:
        return self._websock_server._host

    def get_port(self) -> int:
        """Returns the bound port. This is only meaningful after `start()`."""
        return self._websock_server.get_port()

    def get_actuator(self) -> Actuator:
        return self._actuator

    def get_endpoint(self, endpoint_id: int) -> Optional[Endpoint]:
        return self.registry.get(endpoint_id)

    def _handle_session(
        self,
        client_id: infra.ClientId,
        message: _messages.OfferMessage
        | _messages.AnswerMessage
        | _messages.IceCandidateMessage,
    ) -> None:
        sender = self.registry.get(client_id)
        if sender is not None:
            self.router.route_session(sender, message)

    def _handle_control(
        self, client_id: infra.ClientId, message: _messages.ControlMessage
    ) -> None:
        endpoint = self.registry.get(client_id)
        if endpoint is not None and self.pipeline.submit(endpoint, message):
            self._schedule_drain(endpoint)

    def _handle_binary(self, client_id: infra.ClientId, payload: bytes) -> None:
        endpoint = self.registry.get(client_id)
        if endpoint is not None and self.pipeline.submit_binary(endpoint, payload):
            self._schedule_drain(endpoint)

    def _schedule_drain(self, endpoint: Endpoint) -> None:
        if self._stopped.is_set():
            return
        self._thread_executor.submit(self.pipeline.drain, endpoint).add_done_callback(
            print_threadpool_errors
        )

    def _print_banner(self) -> None:
        host = self.get_host()
        port = self.get_port()
        if host == "0.0.0.0":
            # 0.0.0.0 is not a real IP and people are often confused by it; we'll
            # print localhost plus the machine's network addresses instead.
            hosts = ["localhost"] + get_local_ips()
        else:
            hosts = [host]

        table = Table(
            title=None,
            show_header=False,
            box=box.MINIMAL,
            title_style=style.Style(bold=True),
        )
        for name in hosts:
            table.add_row("Websocket", f"ws://{name}:{port}")
        table.add_row(
            "Actuator",
            type(self._actuator).__name__
            if self._actuator.available
            else "none (control is relayed only)",
        )
        rich.print(Panel(table, title="[bold]deskrelay[/bold]", expand=False))
