from __future__ import annotations

import collections
import dataclasses
import threading
import time
from typing import Deque, Dict, List, Optional, Set, Tuple

from typing_extensions import assert_never

from . import infra
from ._messages import ControlMessage, Role

MODIFIERS = ("shift", "control", "alt", "meta")


class DuplicateRegistration(Exception):
    """Raised when an endpoint that already has a role tries to register again."""

    def __init__(self, endpoint_id: int, role: Role) -> None:
        super().__init__(f"Endpoint {endpoint_id} is already registered as {role}")
        self.endpoint_id = endpoint_id
        self.role = role


@dataclasses.dataclass
class PendingEvent:
    message: ControlMessage
    received_at: float
    absolute: Optional[Tuple[int, int]] = None
    """Pre-computed device position, for binary pointer updates that have already
    passed the rate and distance filters."""


@dataclasses.dataclass
class ControlState:
    """Input state for one endpoint. Every read or write happens under `lock`."""

    lock: threading.Lock = dataclasses.field(default_factory=threading.Lock)

    pointer: Optional[Tuple[int, int]] = None
    """Last known absolute pointer position."""
    last_pointer_update: Optional[float] = None
    """Arrival time of the last accepted binary pointer update."""
    modifiers: Dict[str, bool] = dataclasses.field(
        default_factory=lambda: {mod: False for mod in MODIFIERS}
    )
    buttons_down: Set[str] = dataclasses.field(default_factory=set)

    # Coalesced pointer move, plus one FIFO per priority rank for everything else.
    pending_move: Optional[PendingEvent] = None
    pending: Dict[int, Deque[PendingEvent]] = dataclasses.field(
        default_factory=lambda: collections.defaultdict(collections.deque)
    )
    draining: bool = False
    closed: bool = False

    def pending_count(self) -> int:
        count = 0 if self.pending_move is None else 1
        return count + sum(len(queue) for queue in self.pending.values())


@dataclasses.dataclass
class Endpoint:
    """One live connection."""

    id: int
    connection: infra.WebsockClientConnection
    role: Optional[Role] = None
    ready: bool = False
    connected_at: float = dataclasses.field(default_factory=time.time)
    last_activity: float = dataclasses.field(default_factory=time.time)
    control: ControlState = dataclasses.field(default_factory=ControlState)

    def send(self, message: infra.Message) -> bool:
        return self.connection.send(message)


class ConnectionRegistry:
    """Tracks every live endpoint, and which ones are hosts and viewers.

    All methods are safe to call from any thread. Callers that need several
    operations to appear atomic (for example: remove an endpoint, then notify
    peers about it) can hold `lock` around them; it is reentrant.
    """

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self._endpoints: Dict[int, Endpoint] = {}
        self._hosts: Dict[int, Endpoint] = {}
        self._viewers: Dict[int, Endpoint] = {}
        self._peer_links: Dict[int, int] = {}

    def add(self, endpoint: Endpoint) -> None:
        with self.lock:
            assert endpoint.id not in self._endpoints, f"Duplicate id {endpoint.id}"
            self._endpoints[endpoint.id] = endpoint

    def get(self, endpoint_id: int) -> Optional[Endpoint]:
        with self.lock:
            return self._endpoints.get(endpoint_id, None)

    def register(self, endpoint_id: int, role: Role) -> Endpoint:
        """Assign a role and insert the endpoint into the matching role index.

        Raises:
            DuplicateRegistration: if the endpoint already has a role.
            KeyError: if the endpoint isn't connected.
        """
        with self.lock:
            endpoint = self._endpoints[endpoint_id]
            if endpoint.role is not None:
                raise DuplicateRegistration(endpoint_id, endpoint.role)

            endpoint.role = role
            if role == "host":
                endpoint.ready = False
                self._hosts[endpoint_id] = endpoint
            elif role == "viewer":
                self._viewers[endpoint_id] = endpoint
            else:
                assert_never(role)
            return endpoint

    def remove(self, endpoint_id: int) -> Optional[Endpoint]:
        """Remove an endpoint from every index, including peer links."""
        with self.lock:
            endpoint = self._endpoints.pop(endpoint_id, None)
            self._hosts.pop(endpoint_id, None)
            self._viewers.pop(endpoint_id, None)

            linked = self._peer_links.pop(endpoint_id, None)
            if linked is not None and self._peer_links.get(linked) == endpoint_id:
                self._peer_links.pop(linked)
            return endpoint

    def link_peers(self, a: int, b: int) -> None:
        """Record `a` and `b` as likely peers. Advisory only."""
        with self.lock:
            if a in self._endpoints and b in self._endpoints:
                self._peer_links[a] = b
                self._peer_links[b] = a

    def linked_peer(self, endpoint_id: int) -> Optional[Endpoint]:
        with self.lock:
            linked = self._peer_links.get(endpoint_id, None)
            return None if linked is None else self._endpoints.get(linked, None)

    def hosts(self) -> List[Endpoint]:
        """Snapshot of hosts, in registration order."""
        with self.lock:
            return list(self._hosts.values())

    def ready_hosts(self) -> List[Endpoint]:
        with self.lock:
            return [host for host in self._hosts.values() if host.ready]

    def viewers(self) -> List[Endpoint]:
        """Snapshot of viewers, in registration order."""
        with self.lock:
            return list(self._viewers.values())

    def endpoints(self) -> List[Endpoint]:
        with self.lock:
            return list(self._endpoints.values())

    def is_host(self, endpoint_id: int) -> bool:
        with self.lock:
            return endpoint_id in self._hosts

    def is_viewer(self, endpoint_id: int) -> bool:
        with self.lock:
            return endpoint_id in self._viewers

    def clear(self) -> List[Endpoint]:
        """Remove everything. Returns the endpoints that were connected."""
        with self.lock:
            out = list(self._endpoints.values())
            self._endpoints.clear()
            self._hosts.clear()
            self._viewers.clear()
            self._peer_links.clear()
            return out

    def __len__(self) -> int:
        with self.lock:
            return len(self._endpoints)

    def __contains__(self, endpoint_id: object) -> bool:
        with self.lock:
            return endpoint_id in self._endpoints
