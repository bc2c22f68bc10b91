""":mod:`deskrelay.infra` provides WebSocket-based communication infrastructure.

We implement abstractions for:
- Launching a WebSocket server on a background event loop.
- Registering callbacks for connection events, incoming messages and binary frames.
- Non-blocking, bounded message sending to individual clients.
- Defining dataclass-based message types with a JSON wire format.
"""

from ._async_message_buffer import AsyncMessageBuffer as AsyncMessageBuffer
from ._infra import ClientId as ClientId
from ._infra import WebsockClientConnection as WebsockClientConnection
from ._infra import WebsockServer as WebsockServer
from ._infra import error_print_wrapper as error_print_wrapper
from ._messages import MalformedMessage as MalformedMessage
from ._messages import Message as Message
from ._messages import UnrecognizedMessage as UnrecognizedMessage
