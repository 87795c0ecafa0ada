# upsweep/interrupt.py
from __future__ import annotations

import contextlib
import signal
from typing import Any

_INTERRUPTED = False


def interrupted() -> bool:
    return _INTERRUPTED


def set_interrupted() -> None:
    global _INTERRUPTED
    _INTERRUPTED = True


def unset_interrupted() -> None:
    global _INTERRUPTED
    _INTERRUPTED = False


@contextlib.contextmanager
def remember_sigint():
    """
    While a child runs, Ctrl+C reaches the child (same process group) and
    only sets the flag here, so the run survives and can offer a retry.
    """
    def _handler(signum: int, frame: Any) -> None:
        set_interrupted()

    try:
        previous = signal.signal(signal.SIGINT, _handler)
    except ValueError:
        # not the main thread
        yield
        return

    try:
        yield
    finally:
        signal.signal(signal.SIGINT, previous)
