from __future__ import annotations

from concurrent.futures import Future
from typing import Any

from rich.console import Console
from rich.traceback import Traceback

_stderr = Console(stderr=True)


def print_threadpool_errors(future: Future[Any]) -> None:
    """Print errors from a Future in a ThreadPool, should be used with
    `add_done_callback`. Input drains run in the pool, and nothing else awaits
    their futures."""
    if future.cancelled():
        _stderr.print("[bold](deskrelay)[/bold] Task was cancelled")
        return

    exc = future.exception()
    if exc is not None:
        _stderr.print("[bold](deskrelay)[/bold] Task failed with exception:")
        _stderr.print(
            Traceback.from_exception(type(exc), exc, exc.__traceback__, max_frames=20)
        )
