"""Boundary to the mechanism that turns control events into real input on the
host machine.

Actuators take absolute device coordinates and neutral key names (see
`deskrelay._keys`). Buttons are "left", "middle" or "right". Scroll deltas are
positive for down/right.
"""

from __future__ import annotations

import abc
import sys
import threading
from typing import Tuple

import rich
from typing_extensions import Literal, assert_never, override

ActuatorKind = Literal["auto", "pyautogui", "none"]


class Actuator(abc.ABC):
    """Injects input on the local machine."""

    available: bool = True

    @abc.abstractmethod
    def get_surface_size(self) -> Tuple[int, int]:
        """Returns (width, height) of the shared surface, in pixels."""

    @abc.abstractmethod
    def move_to(self, x: int, y: int) -> None: ...

    @abc.abstractmethod
    def button_toggle(self, button: str, down: bool) -> None: ...

    @abc.abstractmethod
    def scroll(self, dx: float, dy: float) -> None: ...

    @abc.abstractmethod
    def key_toggle(self, key: str, down: bool) -> None: ...


class NullActuator(Actuator):
    """Used when no input-injection capability is present. Every call is a no-op;
    the first one prints a notice that control is relay-only."""

    available = False

    def __init__(
        self, surface_size: Tuple[int, int] = (1920, 1080), verbose: bool = True
    ) -> None:
        self._surface_size = surface_size
        self._verbose = verbose
        self._notified = False
        self._lock = threading.Lock()

    def _notify_once(self) -> None:
        with self._lock:
            if self._notified:
                return
            self._notified = True
        if self._verbose:
            rich.print(
                "[bold](deskrelay)[/bold] [yellow]No input actuator available;"
                " control events are relayed to hosts only.[/yellow]"
            )

    @override
    def get_surface_size(self) -> Tuple[int, int]:
        return self._surface_size

    @override
    def move_to(self, x: int, y: int) -> None:
        self._notify_once()

    @override
    def button_toggle(self, button: str, down: bool) -> None:
        self._notify_once()

    @override
    def scroll(self, dx: float, dy: float) -> None:
        self._notify_once()

    @override
    def key_toggle(self, key: str, down: bool) -> None:
        self._notify_once()


class PyAutoGuiActuator(Actuator):
    """Actuator backed by `pyautogui`."""

    def __init__(self) -> None:
        import pyautogui

        # No pause between calls.
        pyautogui.PAUSE = 0.0
        pyautogui.FAILSAFE = False
        self._pyautogui = pyautogui
        self._meta_key = "command" if sys.platform == "darwin" else "win"

        # Raises here if there is no display.
        self._size = self.get_surface_size()

    @override
    def get_surface_size(self) -> Tuple[int, int]:
        width, height = self._pyautogui.size()
        return int(width), int(height)

    @override
    def move_to(self, x: int, y: int) -> None:
        self._pyautogui.moveTo(x, y)

    @override
    def button_toggle(self, button: str, down: bool) -> None:
        if down:
            self._pyautogui.mouseDown(button=button)
        else:
            self._pyautogui.mouseUp(button=button)

    @override
    def scroll(self, dx: float, dy: float) -> None:
        # pyautogui scrolls up for positive clicks.
        if dy != 0:
            self._pyautogui.scroll(-int(round(dy)))
        if dx != 0:
            self._pyautogui.hscroll(int(round(dx)))

    @override
    def key_toggle(self, key: str, down: bool) -> None:
        name = {"control": "ctrl", "meta": self._meta_key, "escape": "esc"}.get(
            key, key
        )
        if down:
            self._pyautogui.keyDown(name)
        else:
            self._pyautogui.keyUp(name)


def make_actuator(kind: ActuatorKind = "auto", verbose: bool = True) -> Actuator:
    """Select an actuator at wiring time.

    With "auto", a missing or unusable `pyautogui` (not installed, no display)
    degrades to relay-only control instead of failing.
    """
    if kind == "none":
        return NullActuator(verbose=verbose)
    elif kind == "pyautogui":
        return PyAutoGuiActuator()
    elif kind == "auto":
        try:
            actuator = PyAutoGuiActuator()
        except Exception as e:
            if verbose:
                rich.print(
                    "[bold](deskrelay)[/bold] [yellow]pyautogui unavailable"
                    f" ({type(e).__name__}: {e}); remote control will be"
                    " simulated.[/yellow]"
                )
            return NullActuator(verbose=verbose)
        if verbose:
            rich.print("[bold](deskrelay)[/bold] pyautogui actuator loaded")
        return actuator
    else:
        assert_never(kind)
