""":mod:`deskrelay` is a signaling and remote-control relay for peer-to-peer screen
sharing.

Hosts and viewers connect over websockets. The relay brokers role registration,
peer discovery and the exchange of opaque session descriptions, and forwards
viewer input events to hosts (and to a local input actuator, when one is
available) with prioritization and coalescing.
"""

from . import infra as infra
from ._actuator import Actuator as Actuator
from ._actuator import NullActuator as NullActuator
from ._actuator import PyAutoGuiActuator as PyAutoGuiActuator
from ._actuator import make_actuator as make_actuator
from ._lifecycle import LifecycleManager as LifecycleManager
from ._pipeline import InputEventPipeline as InputEventPipeline
from ._registry import ConnectionRegistry as ConnectionRegistry
from ._registry import DuplicateRegistration as DuplicateRegistration
from ._registry import Endpoint as Endpoint
from ._relay import RelayServer as RelayServer
from ._resolver import PeerResolver as PeerResolver
from ._router import MessageRouter as MessageRouter

__version__ = "0.1.0"
