"""Translation from browser `KeyboardEvent` values to neutral actuator key names."""

from __future__ import annotations

import re
from typing import Optional

_SPECIAL_KEYS = {
    "Backspace": "backspace",
    "Tab": "tab",
    "Enter": "enter",
    "Escape": "escape",
    "Space": "space",
    " ": "space",
    "ArrowLeft": "left",
    "ArrowUp": "up",
    "ArrowRight": "right",
    "ArrowDown": "down",
    "Delete": "delete",
    "Home": "home",
    "End": "end",
    "PageUp": "pageup",
    "PageDown": "pagedown",
    "CapsLock": "capslock",
    "Control": "control",
    "Alt": "alt",
    "Shift": "shift",
    "Meta": "meta",
}

_FUNCTION_KEY = re.compile(r"^F([1-9]|1[0-2])$")


def map_key(key: Optional[str], code: Optional[str]) -> Optional[str]:
    """Returns the actuator name for a key, or `None` if it isn't supported.

    >>> map_key("ArrowLeft", "ArrowLeft")
    'left'
    >>> map_key("F5", "F5")
    'f5'
    >>> map_key("A", "KeyA")
    'a'
    """
    if code is not None:
        match = _FUNCTION_KEY.match(code)
        if match is not None:
            return f"f{match.group(1)}"

    if key is None:
        return None
    if key in _SPECIAL_KEYS:
        return _SPECIAL_KEYS[key]
    if len(key) == 1:
        return key.lower()
    return None
