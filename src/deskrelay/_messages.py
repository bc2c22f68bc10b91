"""Message type definitions. Each class maps to one `type` value on the wire."""

from __future__ import annotations

import dataclasses
from typing import Any, Optional

from typing_extensions import Literal, override

from . import infra

Role = Literal["host", "viewer"]


class Message(infra.Message):
    """Base class for all relay messages."""


@dataclasses.dataclass
class RegisterMessage(Message):
    """Sent client->server to claim a role."""

    type_name = "register"
    role: str


@dataclasses.dataclass
class RegisteredMessage(Message):
    """Registration acknowledgment."""

    type_name = "registered"
    client_id: int
    role: str


@dataclasses.dataclass
class HostReadyMessage(Message):
    """Sent host->server when the host starts streaming."""

    type_name = "host-ready"


@dataclasses.dataclass
class HostStoppedMessage(Message):
    """Sent host->server when the host stops streaming, then relayed
    server->viewers with the host's id filled in."""

    type_name = "host-stopped"
    host_id: Optional[int] = None


@dataclasses.dataclass
class ClientJoinedMessage(Message):
    """Tells a host that a viewer can be offered a session."""

    type_name = "client-joined"
    client_id: int


@dataclasses.dataclass
class HostAvailableMessage(Message):
    """Tells a viewer that a host is streaming."""

    type_name = "host-available"
    host_id: int


@dataclasses.dataclass
class ConnectToHostMessage(Message):
    """Sent viewer->server to ask for a particular host."""

    type_name = "connect-to-host"
    host_id: int


class _SessionMessage(Message):
    """Offer/answer/candidate envelope with an opaque payload."""

    target_id: Optional[int]
    from_id: Optional[int]

    def addressed_from(self, sender_id: int) -> _SessionMessage:
        """Copy for forwarding: the payload is untouched, `fromId` is set and the
        target is stripped."""
        return dataclasses.replace(self, target_id=None, from_id=sender_id)  # type: ignore


@dataclasses.dataclass
class OfferMessage(_SessionMessage):
    type_name = "offer"
    offer: Any
    target_id: Optional[int] = None
    from_id: Optional[int] = None


@dataclasses.dataclass
class AnswerMessage(_SessionMessage):
    type_name = "answer"
    answer: Any
    target_id: Optional[int] = None
    from_id: Optional[int] = None


@dataclasses.dataclass
class IceCandidateMessage(_SessionMessage):
    type_name = "ice-candidate"
    candidate: Any
    target_id: Optional[int] = None
    from_id: Optional[int] = None


@dataclasses.dataclass
class ControlMessage(Message):
    """Viewer input event. Only the fields relevant to `action` are set.

    Coordinates are normalized to [0, 1] relative to the shared video surface."""

    type_name = "control"
    action: str
    from_id: Optional[int] = None
    target_id: Optional[int] = None
    x: Optional[float] = None
    y: Optional[float] = None
    relative: Optional[bool] = None
    delta_x: Optional[float] = None
    delta_y: Optional[float] = None
    button: Optional[int] = None
    mode: Optional[int] = None
    key: Optional[str] = None
    code: Optional[str] = None
    shift_key: Optional[bool] = None
    ctrl_key: Optional[bool] = None
    alt_key: Optional[bool] = None
    meta_key: Optional[bool] = None

    @override
    def redundancy_key(self) -> Optional[str]:
        # A host only needs the latest pointer position from each viewer.
        if self.action == "mousemove" and not self.relative:
            return f"control-mousemove-{self.from_id}"
        return None


@dataclasses.dataclass
class HostDisconnectedMessage(Message):
    type_name = "host-disconnected"
    host_id: int


@dataclasses.dataclass
class ServerShutdownMessage(Message):
    type_name = "server-shutdown"


@dataclasses.dataclass
class ErrorMessage(Message):
    type_name = "error"
    message: str
