import json
from dataclasses import is_dataclass
from typing import get_type_hints

import pytest

from deskrelay import _messages
from deskrelay.infra import MalformedMessage, Message, UnrecognizedMessage


def test_get_annotations() -> None:
    """Check that we can read the type annotations from all messages.

    Deserialization relies on these to coerce incoming values."""

    for cls in Message.get_subclasses():
        try:
            hints = get_type_hints(cls)
        except TypeError as e:
            raise TypeError(f"Failed to get type hints for {cls}") from e
        assert hints is not None


def test_type_names_are_unique() -> None:
    names = [
        cls.type_name
        for cls in _messages.Message.get_subclasses()
        if is_dataclass(cls) and cls.type_name != ""
    ]
    assert len(names) == len(set(names))


def test_deserialize_uses_camel_case_fields() -> None:
    message = Message.deserialize(
        json.dumps({"type": "offer", "offer": {"sdp": "SDP-A"}, "targetId": "2"})
    )
    assert isinstance(message, _messages.OfferMessage)
    assert message.offer == {"sdp": "SDP-A"}
    assert message.target_id == 2


def test_deserialize_control_fields() -> None:
    message = Message.deserialize(
        '{"type": "control", "action": "keydown", "key": "a", "code": "KeyA",'
        ' "shiftKey": true, "unknownField": 3}'
    )
    assert message == _messages.ControlMessage(
        action="keydown", key="a", code="KeyA", shift_key=True
    )


def test_deserialize_coerces_integer_coordinates_to_float() -> None:
    message = Message.deserialize('{"type": "control", "action": "mousemove", "x": 0, "y": 1}')
    assert isinstance(message, _messages.ControlMessage)
    assert isinstance(message.x, float)
    assert message.y == 1.0


def test_serialize_omits_unset_fields() -> None:
    message = _messages.ControlMessage(action="mousemove", from_id=2, x=0.25, y=0.5)
    assert json.loads(message.serialize()) == {
        "type": "control",
        "action": "mousemove",
        "fromId": 2,
        "x": 0.25,
        "y": 0.5,
    }
    assert _messages.ServerShutdownMessage().as_serializable_dict() == {
        "type": "server-shutdown"
    }


def test_unknown_type_is_unrecognized() -> None:
    with pytest.raises(UnrecognizedMessage) as excinfo:
        Message.deserialize('{"type": "teleport"}')
    assert excinfo.value.type_name == "teleport"


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '{"no": "type"}',
        '{"type": "register"}',
        '{"type": "control", "action": "mousemove", "x": "left"}',
        '{"type": "connect-to-host", "hostId": "abc"}',
    ],
)
def test_malformed_messages(raw: str) -> None:
    with pytest.raises(MalformedMessage):
        Message.deserialize(raw)


def test_session_message_forwarding_copy() -> None:
    message = _messages.IceCandidateMessage(candidate={"c": 1}, target_id=5)
    forwarded = message.addressed_from(3)
    assert forwarded.as_serializable_dict() == {
        "type": "ice-candidate",
        "candidate": {"c": 1},
        "fromId": 3,
    }
    # The inbound message is untouched.
    assert message.target_id == 5
