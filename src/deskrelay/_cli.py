"""Command-line entry point."""

from __future__ import annotations

import os
import signal
import sys
import threading

import rich
import tyro

from ._actuator import ActuatorKind
from ._relay import RelayServer


def main(
    host: str = "0.0.0.0",
    port: int = int(os.environ.get("PORT", 9000)),
    actuator: ActuatorKind = "auto",
    verbose: bool = True,
    max_pending_messages: int = 256,
) -> int:
    """Run the signaling and control relay until SIGINT or SIGTERM.

    Args:
        host: Address to bind the websocket server to.
        port: Port to listen on. Defaults to $PORT, or 9000.
        actuator: Input actuator for the local machine. "auto" uses pyautogui when
            it's usable, and otherwise relays control events to hosts only.
        verbose: Print connection and routing events.
        max_pending_messages: Per-connection bound on queued outgoing messages.
    """
    server = RelayServer(
        host=host,
        port=port,
        actuator=actuator,
        verbose=verbose,
        max_pending_messages=max_pending_messages,
    )
    try:
        server.start()
    except OSError as e:
        rich.print(
            f"[bold](deskrelay)[/bold] [red]Could not listen on {host}:{port}: {e}[/red]"
        )
        return 1

    stop_event = threading.Event()

    def on_signal(signum, _frame) -> None:
        stop_event.set()

    signal.signal(signal.SIGINT, on_signal)
    signal.signal(signal.SIGTERM, on_signal)

    rich.print("[bold](deskrelay)[/bold] Press Ctrl+C to stop")
    while not stop_event.wait(timeout=3600.0):
        pass

    rich.print("[bold](deskrelay)[/bold] Shutting down...")
    server.stop()
    return 0


def entrypoint() -> None:
    sys.exit(tyro.cli(main))
