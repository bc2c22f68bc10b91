"""Input event pipeline: viewer pointer/keyboard/wheel events in, relayed and
actuated events out.

Pointer movement is the most frequent and the most loss-tolerant event class:
only the latest absolute position matters. Absolute moves are therefore
coalesced (one pending move per viewer, newer ones overwrite older ones) and
always drained first. Relative moves add up, so they wait in order behind the
pending absolute move, and a newer absolute move supersedes them. All other
events wait in one FIFO per priority rank, so events of the same kind are never
reordered.

Actuator calls are planned while holding the endpoint's control-state lock and
made after releasing it.
"""

from __future__ import annotations

import math
import struct
import time
from typing import Any, Callable, List, Optional, Tuple

import rich

from . import _messages
from ._actuator import Actuator
from ._keys import map_key
from ._registry import MODIFIERS, ControlState, Endpoint, PendingEvent
from ._router import MessageRouter

# Lower rank = drained first.
EVENT_PRIORITIES = {
    "mousemove": 1,
    "wheel": 2,
    "mousedown": 3,
    "mouseup": 3,
    "click": 4,
    "rightclick": 4,
    "keydown": 5,
    "keyup": 5,
    # Focus loss releases held keys, so it goes after queued keyboard events.
    "blur": 6,
}

POINTER_THRESHOLD_PX = 2
MIN_POINTER_INTERVAL_SEC = 0.005

BINARY_POINTER_FORMAT = "<ff"
BINARY_POINTER_SIZE = struct.calcsize(BINARY_POINTER_FORMAT)

MAX_SCROLL = 100.0
_WHEEL_MODE_SCALE = {1: 15.0, 2: 50.0}
_BUTTONS = ("left", "middle", "right")

Released = Tuple[str, str]
_ActuatorCall = Tuple[Callable[..., None], Tuple[Any, ...]]


def decode_binary_pointer(payload: bytes) -> Optional[Tuple[float, float]]:
    """Decode an 8-byte pointer frame into normalized (x, y)."""
    if len(payload) != BINARY_POINTER_SIZE:
        return None
    x, y = struct.unpack(BINARY_POINTER_FORMAT, payload)
    if not (math.isfinite(x) and math.isfinite(y)):
        return None
    return x, y


def to_absolute(
    x: Optional[float], y: Optional[float], surface_size: Tuple[int, int]
) -> Optional[Tuple[int, int]]:
    """Normalized coordinates to device pixels, clamped to the surface."""
    if x is None or y is None:
        return None
    width, height = surface_size
    abs_x = int(math.floor(x * width + 0.5))
    abs_y = int(math.floor(y * height + 0.5))
    return (
        max(0, min(width - 1, abs_x)),
        max(0, min(height - 1, abs_y)),
    )


def _is_significant(a: Tuple[int, int], b: Tuple[int, int]) -> bool:
    return (
        abs(a[0] - b[0]) >= POINTER_THRESHOLD_PX
        or abs(a[1] - b[1]) >= POINTER_THRESHOLD_PX
    )


def minimize_control(
    message: _messages.ControlMessage, from_id: int
) -> _messages.ControlMessage:
    """Copy of a control event with only the fields relevant to its action."""
    action = message.action
    out = _messages.ControlMessage(action=action, from_id=from_id)
    if action == "mousemove":
        out.x, out.y = message.x, message.y
        if message.relative:
            out.relative = True
            out.delta_x, out.delta_y = message.delta_x, message.delta_y
    elif action in ("mousedown", "mouseup", "click", "rightclick"):
        out.x, out.y = message.x, message.y
        out.button = message.button
    elif action == "wheel":
        out.x, out.y = message.x, message.y
        out.delta_x = message.delta_x or None
        out.delta_y = message.delta_y or None
        out.mode = message.mode
    elif action in ("keydown", "keyup"):
        out.key, out.code = message.key, message.code
        out.shift_key = True if message.shift_key else None
        out.ctrl_key = True if message.ctrl_key else None
        out.alt_key = True if message.alt_key else None
        out.meta_key = True if message.meta_key else None
    return out


def scroll_amount(delta: Optional[float], mode: Optional[int]) -> float:
    """Scale a wheel delta by its delta mode (pixels, lines, pages), capped."""
    if not delta:
        return 0.0
    scaled = abs(delta / _WHEEL_MODE_SCALE.get(mode or 0, 1.0))
    return math.copysign(min(scaled, MAX_SCROLL), delta)




class InputEventPipeline:
    """Prioritizes, coalesces and filters viewer input, then relays it to hosts
    and applies it to the actuator.

    `submit()` and `submit_binary()` only enqueue. They return True when the
    caller should schedule `drain()` for the endpoint; at most one drain per
    endpoint is outstanding at a time.
    """

    def __init__(
        self,
        router: MessageRouter,
        actuator: Actuator,
        clock: Callable[[], float] = time.monotonic,
        verbose: bool = True,
    ) -> None:
        self._router = router
        self._actuator = actuator
        self._clock = clock
        self._verbose = verbose

    def submit(self, endpoint: Endpoint, message: _messages.ControlMessage) -> bool:
        """Enqueue a structured control event."""
        if endpoint.role != "viewer":
            return False

        rank = EVENT_PRIORITIES.get(message.action, None)
        if rank is None:
            if self._verbose:
                rich.print(
                    f"[bold](deskrelay)[/bold] [yellow]Dropped unknown control action"
                    f" {message.action!r} from client {endpoint.id}[/yellow]"
                )
            return False

        pending = PendingEvent(message, received_at=self._clock())
        state = endpoint.control
        with state.lock:
            if state.closed:
                return False
            if message.action == "mousemove" and not message.relative:
                self._set_pending_move(state, pending)
            else:
                state.pending[rank].append(pending)
            return self._claim_drain(state)

    def submit_binary(self, endpoint: Endpoint, payload: bytes) -> bool:
        """Enqueue a binary pointer update, unless it's too soon or too small."""
        if endpoint.role != "viewer":
            return False

        coords = decode_binary_pointer(payload)
        if coords is None:
            if self._verbose:
                rich.print(
                    f"[bold](deskrelay)[/bold] [yellow]Dropped bad binary frame"
                    f" ({len(payload)} bytes) from client {endpoint.id}[/yellow]"
                )
            return False

        now = self._clock()
        x, y = coords
        absolute = to_absolute(x, y, self._actuator.get_surface_size())
        assert absolute is not None

        state = endpoint.control
        with state.lock:
            if state.closed:
                return False
            if (
                state.last_pointer_update is not None
                and now - state.last_pointer_update < MIN_POINTER_INTERVAL_SEC
            ):
                return False
            if state.pointer is not None and not _is_significant(
                state.pointer, absolute
            ):
                return False

            state.last_pointer_update = now
            state.pointer = absolute
            self._set_pending_move(
                state,
                PendingEvent(
                    _messages.ControlMessage(action="mousemove", x=x, y=y),
                    received_at=now,
                    absolute=absolute,
                ),
            )
            return self._claim_drain(state)

    def drain(self, endpoint: Endpoint) -> List[_messages.ControlMessage]:
        """Process pending events for an endpoint, lowest rank first, until none
        are left. Events that arrive during the drain join the queues and compete
        by rank. Returns the relayed events, in order."""
        state = endpoint.control
        processed: List[_messages.ControlMessage] = []
        while True:
            try:
                size = self._actuator.get_surface_size()
                calls: List[_ActuatorCall] = []
                with state.lock:
                    pending = self._pop_next(state)
                    if pending is None:
                        state.draining = False
                        return processed
                    self._actuate(endpoint, state, pending, size, calls)

                relayed = minimize_control(pending.message, endpoint.id)
                self._router.relay_control(relayed)
                self._run(calls)
            except Exception:
                # Let the next submit schedule a fresh drain.
                with state.lock:
                    state.draining = False
                raise
            processed.append(relayed)

    def release_all(self, endpoint: Endpoint, close: bool = False) -> List[Released]:
        """Release every modifier and mouse button the endpoint holds.

        With `close=True` the endpoint's pending events are discarded and nothing
        else is accepted for it.

        Returns:
            The synthetic releases, as ("key", name) or ("button", name) pairs.
        """
        state = endpoint.control
        calls: List[_ActuatorCall] = []
        with state.lock:
            if close:
                state.closed = True
                state.pending_move = None
                state.pending.clear()
            released = self._release_held(state, calls)
        self._run(calls)
        return released

    def _set_pending_move(self, state: ControlState, pending: PendingEvent) -> None:
        state.pending_move = pending
        # A new absolute position makes queued relative moves moot.
        state.pending.pop(EVENT_PRIORITIES["mousemove"], None)

    def _claim_drain(self, state: ControlState) -> bool:
        if state.draining:
            return False
        state.draining = True
        return True

    def _pop_next(self, state: ControlState) -> Optional[PendingEvent]:
        if state.closed:
            return None
        if state.pending_move is not None:
            pending = state.pending_move
            state.pending_move = None
            return pending
        for rank in sorted(state.pending):
            queue = state.pending[rank]
            if len(queue) > 0:
                return queue.popleft()
        return None

    def _release_held(
        self, state: ControlState, calls: List[_ActuatorCall]
    ) -> List[Released]:
        released: List[Released] = []
        for mod in MODIFIERS:
            if state.modifiers[mod]:
                state.modifiers[mod] = False
                calls.append((self._actuator.key_toggle, (mod, False)))
                released.append(("key", mod))
        for button in sorted(state.buttons_down):
            calls.append((self._actuator.button_toggle, (button, False)))
            released.append(("button", button))
        state.buttons_down.clear()
        return released

    def _run(self, calls: List[_ActuatorCall]) -> None:
        for fn, args in calls:
            try:
                fn(*args)
            except Exception:
                rich.get_console().print_exception(max_frames=5)

    def _move(
        self,
        state: ControlState,
        position: Tuple[int, int],
        calls: List[_ActuatorCall],
    ) -> None:
        calls.append((self._actuator.move_to, position))
        state.pointer = position

    def _actuate(
        self,
        endpoint: Endpoint,
        state: ControlState,
        pending: PendingEvent,
        size: Tuple[int, int],
        calls: List[_ActuatorCall],
    ) -> None:
        """Update the control state for one event and plan its actuator calls."""
        message = pending.message
        action = message.action
        position = to_absolute(message.x, message.y, size)

        if action == "mousemove":
            if pending.absolute is not None:
                self._move(state, pending.absolute, calls)
            elif message.relative and message.delta_x is not None and (
                message.delta_y is not None
            ):
                base = state.pointer or position
                if base is None:
                    return
                target = (
                    max(0, min(size[0] - 1, base[0] + round(message.delta_x * size[0]))),
                    max(0, min(size[1] - 1, base[1] + round(message.delta_y * size[1]))),
                )
                if _is_significant(base, target):
                    self._move(state, target, calls)
            elif position is not None:
                if state.pointer is None or _is_significant(state.pointer, position):
                    self._move(state, position, calls)

        elif action in ("mousedown", "mouseup"):
            if position is not None:
                self._move(state, position, calls)
            button = self._button_name(message.button)
            down = action == "mousedown"
            calls.append((self._actuator.button_toggle, (button, down)))
            if down:
                state.buttons_down.add(button)
            else:
                state.buttons_down.discard(button)

        elif action in ("click", "rightclick"):
            if position is not None:
                self._move(state, position, calls)
            button = "right" if action == "rightclick" else self._button_name(
                message.button
            )
            calls.append((self._actuator.button_toggle, (button, True)))
            calls.append((self._actuator.button_toggle, (button, False)))

        elif action == "wheel":
            if position is not None:
                self._move(state, position, calls)
            dx = scroll_amount(message.delta_x, message.mode)
            dy = scroll_amount(message.delta_y, message.mode)
            if dx != 0.0 or dy != 0.0:
                calls.append((self._actuator.scroll, (dx, dy)))

        elif action in ("keydown", "keyup"):
            self._actuate_key(
                endpoint, state, message, down=action == "keydown", calls=calls
            )

        elif action == "blur":
            self._release_held(state, calls)

    def _actuate_key(
        self,
        endpoint: Endpoint,
        state: ControlState,
        message: _messages.ControlMessage,
        down: bool,
        calls: List[_ActuatorCall],
    ) -> None:
        key = map_key(message.key, message.code)
        if key is None:
            if self._verbose:
                rich.print(
                    f"[bold](deskrelay)[/bold] Unsupported key from client"
                    f" {endpoint.id}: {message.key!r} ({message.code!r})"
                )
            return

        # Modifiers pressed on their own: only toggle on a state change, so key
        # repeat doesn't send redundant toggles.
        if key in MODIFIERS:
            if state.modifiers[key] != down:
                state.modifiers[key] = down
                calls.append((self._actuator.key_toggle, (key, down)))
            return

        flags = {
            "shift": message.shift_key,
            "control": message.ctrl_key,
            "alt": message.alt_key,
            "meta": message.meta_key,
        }
        wanted = [mod for mod in MODIFIERS if flags[mod]]
        if down:
            for mod in wanted:
                if not state.modifiers[mod]:
                    state.modifiers[mod] = True
                    calls.append((self._actuator.key_toggle, (mod, True)))
            calls.append((self._actuator.key_toggle, (key, True)))
        else:
            calls.append((self._actuator.key_toggle, (key, False)))
            for mod in MODIFIERS:
                if state.modifiers[mod] and mod not in wanted:
                    state.modifiers[mod] = False
                    calls.append((self._actuator.key_toggle, (mod, False)))

    @staticmethod
    def _button_name(button: Optional[int]) -> str:
        if button is not None and 0 <= button < len(_BUTTONS):
            return _BUTTONS[button]
        return "left"
