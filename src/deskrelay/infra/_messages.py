"""Message base type. Messages are dataclasses that travel as flat JSON objects
with a `type` discriminant and camelCase field names."""

from __future__ import annotations

import dataclasses
import functools
import json
from typing import Any, ClassVar, Dict, List, Optional, Type, TypeVar, Union

from typing_extensions import get_args, get_origin, get_type_hints


class MalformedMessage(ValueError):
    """Raised when an inbound frame can't be decoded into a message."""


class UnrecognizedMessage(MalformedMessage):
    """Raised when an inbound frame has a `type` we don't know about."""

    def __init__(self, type_name: str) -> None:
        super().__init__(f"Unrecognized message type: {type_name!r}")
        self.type_name = type_name


def _camel_case(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _coerce(value: Any, annotation: Any) -> Any:
    """Coerce a decoded JSON value to match a field annotation.

    Browsers send ids as either numbers or strings, and don't distinguish
    between integers and floats."""
    if value is None:
        return None

    if get_origin(annotation) is Union:
        options = [arg for arg in get_args(annotation) if arg is not type(None)]
        if len(options) == 1:
            return _coerce(value, options[0])
        return value

    if annotation is bool:
        if not isinstance(value, bool):
            raise MalformedMessage(f"Expected a boolean, got {value!r}")
        return value
    if annotation is int:
        if isinstance(value, bool):
            raise MalformedMessage(f"Expected an integer, got {value!r}")
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            return int(value)
        raise MalformedMessage(f"Expected an integer, got {value!r}")
    if annotation is float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise MalformedMessage(f"Expected a number, got {value!r}")
        return float(value)
    if annotation is str:
        if not isinstance(value, str):
            raise MalformedMessage(f"Expected a string, got {value!r}")
        return value

    # `Any` payloads are opaque.
    return value


T = TypeVar("T", bound="Message")


@functools.lru_cache(maxsize=None)
def get_type_hints_cached(cls: Type[Any]) -> Dict[str, Any]:
    return get_type_hints(cls)  # type: ignore


class Message:
    """Base message type for server/client communication.

    Subclasses should be dataclasses that set `type_name`, which is the value of
    the `type` field on the wire."""

    type_name: ClassVar[str] = ""

    def as_serializable_dict(self) -> Dict[str, Any]:
        """Convert a message into a JSON-compatible dictionary. Fields that are
        `None` are omitted."""
        out: Dict[str, Any] = {"type": self.type_name}
        for field in dataclasses.fields(self):  # type: ignore
            value = getattr(self, field.name)
            if value is not None:
                out[_camel_case(field.name)] = value
        return out

    def serialize(self) -> str:
        return json.dumps(self.as_serializable_dict(), separators=(",", ":"))

    @classmethod
    def deserialize(cls, raw: Union[str, bytes]) -> Message:
        """Convert a text frame into a message object.

        Raises:
            MalformedMessage: if the frame isn't a JSON object with the fields
                required by its message type.
            UnrecognizedMessage: if the `type` field doesn't name a known message.
        """
        try:
            mapping = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedMessage(f"Invalid JSON: {e}") from e

        if not isinstance(mapping, dict):
            raise MalformedMessage("Expected a JSON object")
        type_name = mapping.get("type")
        if not isinstance(type_name, str):
            raise MalformedMessage("Missing `type` field")

        message_type = cls._subclass_from_type_string().get(type_name, None)
        if message_type is None:
            raise UnrecognizedMessage(type_name)

        type_hints = get_type_hints_cached(message_type)
        kwargs: Dict[str, Any] = {}
        for field in dataclasses.fields(message_type):  # type: ignore
            key = _camel_case(field.name)
            if key in mapping:
                kwargs[field.name] = _coerce(mapping[key], type_hints[field.name])

        try:
            return message_type(**kwargs)
        except TypeError as e:
            raise MalformedMessage(f"Bad fields for {type_name!r}: {e}") from e

    @classmethod
    @functools.lru_cache(maxsize=100)
    def _subclass_from_type_string(cls: Type[T]) -> Dict[str, Type[T]]:
        return {s.type_name: s for s in cls.get_subclasses() if s.type_name != ""}

    @classmethod
    def get_subclasses(cls: Type[T]) -> List[Type[T]]:
        """Recursively get message subclasses."""

        def _get_subclasses(typ: Type[T]) -> List[Type[T]]:
            out = []
            for sub in typ.__subclasses__():
                out.append(sub)
                out.extend(_get_subclasses(sub))
            return out

        return _get_subclasses(cls)

    def redundancy_key(self) -> Optional[str]:
        """Returns a key used for detecting redundant messages, or `None` if this
        message should never be culled.

        For example: if a host has 20 pointer moves from the same viewer waiting in
        its outgoing buffer, only the latest one needs to be sent.
        """
        return None
