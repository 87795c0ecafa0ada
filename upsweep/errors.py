# upsweep/errors.py
from __future__ import annotations


class UpsweepError(Exception):
    """Base for all errors raised by the engine."""


class ConfigurationError(UpsweepError):
    """The configuration file or the command line could not be accepted."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        super().__init__(f"{path}: {message}" if path else message)


class PreCommandFailed(UpsweepError):
    """A pre-command failed; no step was attempted."""

    def __init__(self, name: str, reason: str = ""):
        self.name = name
        self.reason = reason
        text = f"Pre-command '{name}' failed"
        if reason:
            text += f" ({reason})"
        super().__init__(text)


class SkipStep(UpsweepError):
    """
    Raised from a descriptor's action when a pre-condition turns out to be
    unmet at run time. Recorded as Skipped with the given reason.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class HandOff(UpsweepError):
    """
    The run was handed to a replacement process (tmux relaunch or respawn
    after a self-update). The current process must exit with `code`.
    """

    def __init__(self, code: int, why: str = ""):
        self.code = code
        self.why = why
        super().__init__(why or f"handed off (exit {code})")
