from __future__ import annotations

from typing import Iterable

import rich

from . import _messages
from ._registry import ConnectionRegistry, Endpoint
from ._resolver import PeerResolver


class MessageRouter:
    """Delivers messages to endpoints.

    Delivery is fire-and-forget. If the target is gone or its outgoing buffer is
    full, the message is dropped: stale signaling and input messages are worthless
    once the session has moved on, so nothing is retried or queued elsewhere.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        resolver: PeerResolver,
        verbose: bool = True,
    ) -> None:
        self._registry = registry
        self._resolver = resolver
        self._verbose = verbose

    def deliver(self, endpoint: Endpoint, message: _messages.Message) -> bool:
        """Send a message to one endpoint. Returns False if it was dropped."""
        if endpoint.id not in self._registry:
            if self._verbose:
                rich.print(
                    f"[bold](deskrelay)[/bold] Dropped {message.type_name!r} for"
                    f" disconnected client {endpoint.id}"
                )
            return False

        if not endpoint.send(message):
            if self._verbose:
                rich.print(
                    f"[bold](deskrelay)[/bold] [yellow]Dropped {message.type_name!r}"
                    f" for client {endpoint.id} (not writable)[/yellow]"
                )
            return False
        return True

    def broadcast(
        self, endpoints: Iterable[Endpoint], message: _messages.Message
    ) -> int:
        """Send a message to several endpoints. Returns the number delivered."""
        return sum(self.deliver(endpoint, message) for endpoint in endpoints)

    def route_session(
        self,
        sender: Endpoint,
        message: _messages.OfferMessage
        | _messages.AnswerMessage
        | _messages.IceCandidateMessage,
    ) -> bool:
        """Forward an offer, answer or ICE candidate to the resolved peer."""
        target = self._resolver.resolve(sender, message.target_id)
        if target is None or target.id == sender.id:
            if self._verbose:
                rich.print(
                    f"[bold](deskrelay)[/bold] [yellow]No peer for"
                    f" {message.type_name!r} from client {sender.id}"
                    f" (target: {message.target_id})[/yellow]"
                )
            return False

        if self._verbose:
            rich.print(
                f"[bold](deskrelay)[/bold] Client {sender.id} sending"
                f" {message.type_name!r} to {target.id}"
            )
        delivered = self.deliver(target, message.addressed_from(sender.id))
        if delivered and isinstance(
            message, (_messages.OfferMessage, _messages.AnswerMessage)
        ):
            self._registry.link_peers(sender.id, target.id)
        return delivered

    def relay_control(self, message: _messages.ControlMessage) -> int:
        """Relay an accepted control event to every host."""
        return self.broadcast(self._registry.hosts(), message)
