import dataclasses
from typing import Any, Callable, Dict, List, Optional, Tuple

from typing_extensions import override

from deskrelay import (
    Actuator,
    ConnectionRegistry,
    InputEventPipeline,
    LifecycleManager,
    MessageRouter,
    PeerResolver,
)
from deskrelay import _messages
from deskrelay._registry import Endpoint


class FakeConnection:
    """Stands in for a websocket connection; records what would be sent."""

    def __init__(self, client_id: int) -> None:
        self.client_id = client_id
        self.remote_address = "127.0.0.1"
        self.sent: List[_messages.Message] = []
        self.closed = False
        self.on_send: Optional[Callable[[_messages.Message], None]] = None

    def send(self, message: _messages.Message) -> bool:
        if self.closed:
            return False
        if self.on_send is not None:
            self.on_send(message)
        self.sent.append(message)
        return True

    def close(self) -> None:
        self.closed = True

    def sent_dicts(self) -> List[Dict[str, Any]]:
        return [message.as_serializable_dict() for message in self.sent]

    def sent_types(self) -> List[str]:
        return [message.type_name for message in self.sent]


class RecordingActuator(Actuator):
    """Actuator that records every call."""

    def __init__(self, surface_size: Tuple[int, int] = (1000, 1000)) -> None:
        self.surface_size = surface_size
        self.calls: List[Tuple[Any, ...]] = []

    @override
    def get_surface_size(self) -> Tuple[int, int]:
        return self.surface_size

    @override
    def move_to(self, x: int, y: int) -> None:
        self.calls.append(("move_to", x, y))

    @override
    def button_toggle(self, button: str, down: bool) -> None:
        self.calls.append(("button_toggle", button, down))

    @override
    def scroll(self, dx: float, dy: float) -> None:
        self.calls.append(("scroll", dx, dy))

    @override
    def key_toggle(self, key: str, down: bool) -> None:
        self.calls.append(("key_toggle", key, down))


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, now: float = 100.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclasses.dataclass
class Relay:
    """Relay components wired together without a websocket server."""

    registry: ConnectionRegistry
    router: MessageRouter
    pipeline: InputEventPipeline
    lifecycle: LifecycleManager
    actuator: RecordingActuator
    clock: ManualClock

    def connect(self, client_id: int) -> Tuple[Endpoint, FakeConnection]:
        conn = FakeConnection(client_id)
        endpoint = self.lifecycle.connect(conn)  # type: ignore
        return endpoint, conn

    def connect_as(self, client_id: int, role: str) -> Tuple[Endpoint, FakeConnection]:
        endpoint, conn = self.connect(client_id)
        self.lifecycle.handle_register(client_id, role)
        return endpoint, conn


def make_relay(surface_size: Tuple[int, int] = (1000, 1000)) -> Relay:
    registry = ConnectionRegistry()
    router = MessageRouter(registry, PeerResolver(registry), verbose=False)
    actuator = RecordingActuator(surface_size)
    clock = ManualClock()
    pipeline = InputEventPipeline(router, actuator, clock=clock, verbose=False)
    lifecycle = LifecycleManager(registry, router, pipeline, verbose=False)
    return Relay(registry, router, pipeline, lifecycle, actuator, clock)
