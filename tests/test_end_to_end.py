"""Drive a real relay server with websocket clients."""

import json
import struct
from typing import Any, Dict, Iterator

import pytest
from utils import RecordingActuator
from websockets.sync.client import ClientConnection, connect

from deskrelay import RelayServer


@pytest.fixture
def server() -> Iterator[RelayServer]:
    server = RelayServer(
        host="127.0.0.1", port=0, actuator=RecordingActuator(), verbose=False
    )
    server.start()
    yield server
    server.stop()


def _send(conn: ClientConnection, **payload: Any) -> None:
    conn.send(json.dumps(payload))


def _recv(conn: ClientConnection, timeout: float = 5.0) -> Dict[str, Any]:
    raw = conn.recv(timeout=timeout)
    assert isinstance(raw, str)
    return json.loads(raw)


def _url(server: RelayServer) -> str:
    return f"ws://127.0.0.1:{server.get_port()}"


def test_share_session(server: RelayServer) -> None:
    with connect(_url(server)) as host:
        _send(host, type="register", role="host")
        assert _recv(host) == {"type": "registered", "clientId": 1, "role": "host"}
        endpoint = server.get_endpoint(1)
        assert endpoint is not None and endpoint.role == "host"

        viewer = connect(_url(server))
        _send(viewer, type="register", role="viewer")
        assert _recv(viewer) == {"type": "registered", "clientId": 2, "role": "viewer"}

        _send(host, type="host-ready")
        assert _recv(viewer) == {"type": "host-available", "hostId": 1}
        assert _recv(host) == {"type": "client-joined", "clientId": 2}

        _send(host, type="offer", offer={"sdp": "SDP-A"}, targetId=2)
        assert _recv(viewer) == {"type": "offer", "offer": {"sdp": "SDP-A"}, "fromId": 1}

        _send(viewer, type="answer", answer={"sdp": "SDP-B"})
        assert _recv(host) == {"type": "answer", "answer": {"sdp": "SDP-B"}, "fromId": 2}

        _send(viewer, type="control", action="keydown", key="a", code="KeyA")
        assert _recv(host) == {
            "type": "control",
            "action": "keydown",
            "fromId": 2,
            "key": "a",
            "code": "KeyA",
        }

        viewer.send(struct.pack("<ff", 0.25, 0.75))
        relayed = _recv(host)
        assert relayed["action"] == "mousemove"
        assert relayed["x"] == pytest.approx(0.25)
        assert relayed["y"] == pytest.approx(0.75)

        # A viewer leaving isn't announced to the host.
        viewer.close()
        with pytest.raises(TimeoutError):
            host.recv(timeout=0.3)


def test_host_disconnect_reaches_viewer(server: RelayServer) -> None:
    with connect(_url(server)) as viewer:
        _send(viewer, type="register", role="client")
        assert _recv(viewer)["role"] == "viewer"

        with connect(_url(server)) as host:
            _send(host, type="register", role="host")
            host_id = _recv(host)["clientId"]
            _send(host, type="host-ready")
            assert _recv(viewer) == {"type": "host-available", "hostId": host_id}

        assert _recv(viewer) == {"type": "host-disconnected", "hostId": host_id}


def test_bad_frames_keep_connection_open(server: RelayServer) -> None:
    with connect(_url(server)) as conn:
        conn.send("not json")
        _send(conn, type="teleport")
        _send(conn, type="register", role="admin")
        assert _recv(conn)["type"] == "error"

        _send(conn, type="register", role="viewer")
        assert _recv(conn)["type"] == "registered"
