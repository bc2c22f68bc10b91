from __future__ import annotations

from typing import List, Optional

import rich

from . import _messages, infra
from ._messages import Role
from ._pipeline import InputEventPipeline, Released
from ._registry import ConnectionRegistry, DuplicateRegistration, Endpoint
from ._router import MessageRouter

ROLE_ALIASES = {"host": "host", "viewer": "viewer", "client": "viewer"}


class LifecycleManager:
    """Connect, register, readiness, disconnect and shutdown.

    Each operation that changes membership holds the registry lock while it
    mutates and notifies, so peers are never told about (or routed to) a
    half-registered or half-removed endpoint. Notifications only enqueue onto
    outgoing buffers, so holding the lock never waits on a slow peer.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        router: MessageRouter,
        pipeline: InputEventPipeline,
        verbose: bool = True,
    ) -> None:
        self._registry = registry
        self._router = router
        self._pipeline = pipeline
        self._verbose = verbose

    def connect(self, connection: infra.WebsockClientConnection) -> Endpoint:
        endpoint = Endpoint(id=connection.client_id, connection=connection)
        self._registry.add(endpoint)
        return endpoint

    def register(self, endpoint_id: int, role: Role) -> Endpoint:
        """Assign a role, acknowledge it, and introduce a new viewer to every
        ready host.

        Raises:
            DuplicateRegistration: if the endpoint already has a role.
        """
        with self._registry.lock:
            endpoint = self._registry.register(endpoint_id, role)
            if self._verbose:
                rich.print(
                    f"[bold](deskrelay)[/bold] Client {endpoint_id} registered as"
                    f" {role.upper()}"
                )
            self._router.deliver(
                endpoint,
                _messages.RegisteredMessage(client_id=endpoint_id, role=role),
            )

            if role == "viewer":
                for host in self._registry.ready_hosts():
                    self._router.deliver(
                        endpoint, _messages.HostAvailableMessage(host_id=host.id)
                    )
                    self._router.deliver(
                        host, _messages.ClientJoinedMessage(client_id=endpoint_id)
                    )
            return endpoint

    def handle_register(self, endpoint_id: int, requested_role: str) -> Optional[Endpoint]:
        """Validate a role from the wire, then register. Rejections are logged and
        answered with an error message."""
        endpoint = self._registry.get(endpoint_id)
        if endpoint is None:
            return None

        role = ROLE_ALIASES.get(requested_role, None)
        if role is None:
            if self._verbose:
                rich.print(
                    f"[bold](deskrelay)[/bold] [yellow]Client {endpoint_id} asked"
                    f" for unknown role {requested_role!r}[/yellow]"
                )
            self._router.deliver(
                endpoint,
                _messages.ErrorMessage(message=f"Unknown role: {requested_role}"),
            )
            return None

        try:
            return self.register(endpoint_id, role)  # type: ignore
        except DuplicateRegistration as e:
            if self._verbose:
                rich.print(f"[bold](deskrelay)[/bold] [yellow]{e}[/yellow]")
            self._router.deliver(endpoint, _messages.ErrorMessage(message=str(e)))
            return None

    def set_ready(self, host_id: int, ready: bool) -> bool:
        """Update a host's readiness. Viewers are only notified on a transition.

        Returns:
            False if `host_id` isn't a registered host.
        """
        with self._registry.lock:
            host = self._registry.get(host_id)
            if host is None or not self._registry.is_host(host_id):
                if self._verbose:
                    rich.print(
                        f"[bold](deskrelay)[/bold] [yellow]Client {host_id} sent a"
                        " readiness update but isn't a host[/yellow]"
                    )
                return False
            if host.ready == ready:
                return True

            host.ready = ready
            viewers = self._registry.viewers()
            if ready:
                if self._verbose:
                    rich.print(f"[bold](deskrelay)[/bold] Host {host_id} ready to share")
                for viewer in viewers:
                    self._router.deliver(
                        viewer, _messages.HostAvailableMessage(host_id=host_id)
                    )
                    self._router.deliver(
                        host, _messages.ClientJoinedMessage(client_id=viewer.id)
                    )
            else:
                if self._verbose:
                    rich.print(f"[bold](deskrelay)[/bold] Host {host_id} stopped sharing")
                self._router.broadcast(
                    viewers, _messages.HostStoppedMessage(host_id=host_id)
                )
            return True

    def connect_to_host(self, viewer_id: int, host_id: int) -> bool:
        """Introduce a viewer to one particular host, if it's ready."""
        with self._registry.lock:
            viewer = self._registry.get(viewer_id)
            if viewer is None:
                return False
            if not self._registry.is_viewer(viewer_id):
                if self._verbose:
                    rich.print(
                        f"[bold](deskrelay)[/bold] [yellow]Client {viewer_id} asked"
                        " to connect to a host but isn't a viewer[/yellow]"
                    )
                self._router.deliver(
                    viewer, _messages.ErrorMessage(message="Only viewers can connect")
                )
                return False
            host = self._registry.get(host_id)
            if host is None or not self._registry.is_host(host_id) or not host.ready:
                if self._verbose:
                    rich.print(
                        f"[bold](deskrelay)[/bold] Client {viewer_id}: host"
                        f" {host_id} not found or not ready"
                    )
                self._router.deliver(
                    viewer, _messages.ErrorMessage(message="Host not found or not ready")
                )
                return False

            self._router.deliver(viewer, _messages.HostAvailableMessage(host_id=host_id))
            self._router.deliver(host, _messages.ClientJoinedMessage(client_id=viewer_id))
            return True

    def touch(self, endpoint_id: int, timestamp: float) -> None:
        endpoint = self._registry.get(endpoint_id)
        if endpoint is not None:
            endpoint.last_activity = timestamp

    def disconnect(self, endpoint_id: int) -> List[Released]:
        """Deregister an endpoint, tell viewers if a ready host left, then release
        any keys or buttons the endpoint was holding.

        A departing viewer is not announced to hosts.

        Returns:
            Synthetic releases sent to the actuator.
        """
        with self._registry.lock:
            endpoint = self._registry.remove(endpoint_id)
            if endpoint is None:
                return []
            if endpoint.role == "host" and endpoint.ready:
                self._router.broadcast(
                    self._registry.viewers(),
                    _messages.HostDisconnectedMessage(host_id=endpoint_id),
                )

        released = self._pipeline.release_all(endpoint, close=True)
        if len(released) > 0 and self._verbose:
            rich.print(
                f"[bold](deskrelay)[/bold] Released {released} held by client"
                f" {endpoint_id}"
            )
        return released

    def shutdown_all(self) -> int:
        """Tell every endpoint the server is going away, then close every
        transport. Returns the number of endpoints closed."""
        with self._registry.lock:
            endpoints = self._registry.endpoints()
            self._router.broadcast(endpoints, _messages.ServerShutdownMessage())
            self._registry.clear()

        for endpoint in endpoints:
            self._pipeline.release_all(endpoint, close=True)
            endpoint.connection.close()
        return len(endpoints)
