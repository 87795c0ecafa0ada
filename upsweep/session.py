# upsweep/session.py
from __future__ import annotations

from typing import Callable, Dict, List, Optional, Sequence
import logging
import os
import shlex
import subprocess
import sys

import psutil

from .config import Settings
from .errors import HandOff, UpsweepError
from .interrupt import remember_sigint

log = logging.getLogger("upsweep.session")

INSIDE_TMUX = "UPSWEEP_INSIDE_TMUX"
NO_SELF_UPDATE = "UPSWEEP_NO_SELF_UPDATE"
SESSION = "upsweep"

Call = Callable[..., int]


def current_argv() -> List[str]:
    """Command line of this process, interpreter included, so it can be re-run as is."""
    try:
        argv = psutil.Process(os.getpid()).cmdline()
    except psutil.Error as e:
        log.debug("Cannot read own command line: %s", e)
        argv = []
    return argv or [sys.executable] + sys.argv


def _quiet(call: Call, argv: Sequence[str]) -> int:
    return call(list(argv), stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)


# -------------------- tmux relaunch --------------------

def already_relaunched(environ: Optional[Dict[str, str]] = None) -> bool:
    environ = os.environ if environ is None else environ
    return bool(environ.get(INSIDE_TMUX))


def tmux_commands(
    argv: Sequence[str],
    tmux_arguments: str,
    session_exists: bool,
    inside_other_tmux: bool,
) -> List[List[str]]:
    """
    The tmux calls that move `argv` into the `upsweep` session and bring it
    to the front: a new window when the session exists, otherwise a new
    session that keeps finished panes open.
    """
    tmux = ["tmux"] + shlex.split(tmux_arguments)
    inner = " ".join(shlex.quote(a) for a in ["env", f"{INSIDE_TMUX}=1", *argv])
    if session_exists:
        calls = [tmux + ["new-window", "-a", "-t", f"{SESSION}:1", inner]]
    else:
        calls = [
            tmux + ["new-session", "-d", "-s", SESSION, "-n", SESSION, inner],
            tmux + ["set-option", "-t", SESSION, "remain-on-exit", "on"],
        ]
    if inside_other_tmux:
        calls.append(tmux + ["switch-client", "-t", SESSION])
    else:
        calls.append(tmux + ["attach-session", "-t", SESSION])
    return calls


def relaunch_in_tmux(
    settings: Settings,
    argv: Optional[Sequence[str]] = None,
    call: Call = subprocess.call,
    environ: Optional[Dict[str, str]] = None,
) -> None:
    """
    No-op inside the relaunched session. Otherwise start the same command
    line inside tmux and raise HandOff: this process does no further work.
    """
    environ = os.environ if environ is None else environ
    if already_relaunched(environ):
        log.debug("Already inside the %s tmux session", SESSION)
        return

    argv = list(argv) if argv is not None else current_argv()
    tmux = ["tmux"] + shlex.split(settings.tmux_arguments)
    try:
        exists = _quiet(call, tmux + ["has-session", "-t", SESSION]) == 0
        code = 0
        for cmd in tmux_commands(argv, settings.tmux_arguments, exists, bool(environ.get("TMUX"))):
            log.debug("Running %s", cmd)
            code = call(cmd)
            if code != 0:
                break
    except FileNotFoundError as e:
        raise UpsweepError("tmux is not installed") from e
    except OSError as e:
        raise UpsweepError(f"cannot run tmux: {e}") from e
    raise HandOff(code, "relaunched in tmux")


# -------------------- self-update respawn --------------------

def respawn(
    argv: Optional[Sequence[str]] = None,
    call: Call = subprocess.call,
    environ: Optional[Dict[str, str]] = None,
) -> None:
    """
    Run the freshly installed version with the same arguments and
    environment, marked so it does not try to update itself again, then
    hand its exit code back through HandOff.
    """
    argv = list(argv) if argv is not None else current_argv()
    env = dict(os.environ if environ is None else environ)
    env[NO_SELF_UPDATE] = "1"
    log.debug("Respawning %s", argv)
    try:
        with remember_sigint():
            code = call(argv, env=env)
    except OSError as e:
        raise UpsweepError(f"cannot respawn after self-update: {e}") from e
    raise HandOff(code, "respawned after self-update")
