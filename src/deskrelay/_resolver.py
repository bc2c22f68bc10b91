from __future__ import annotations

from typing import Optional

from ._registry import ConnectionRegistry, Endpoint


class PeerResolver:
    """Picks the recipient of a session message.

    Early session messages (the first offer, most candidates) can predate any
    exchange of ids, so when no explicit target is given we fall back to a
    discovery rule: hosts talk to the earliest-registered viewer, viewers talk to
    the earliest-registered ready host. A peer link recorded by a previous
    offer/answer is preferred over that rule while it is still eligible.
    """

    def __init__(self, registry: ConnectionRegistry) -> None:
        self._registry = registry

    def resolve(
        self, sender: Endpoint, target_id: Optional[int] = None
    ) -> Optional[Endpoint]:
        """Returns the intended recipient, or `None` if there isn't one."""
        if target_id is not None:
            return self._registry.get(target_id)

        with self._registry.lock:
            linked = self._registry.linked_peer(sender.id)
            if linked is not None and self._is_eligible(sender, linked):
                return linked

            if sender.role == "host":
                viewers = self._registry.viewers()
                return viewers[0] if len(viewers) > 0 else None
            elif sender.role == "viewer":
                hosts = self._registry.ready_hosts()
                return hosts[0] if len(hosts) > 0 else None
            else:
                return None

    def _is_eligible(self, sender: Endpoint, candidate: Endpoint) -> bool:
        if sender.role == "host":
            return self._registry.is_viewer(candidate.id)
        if sender.role == "viewer":
            return self._registry.is_host(candidate.id) and candidate.ready
        return False
