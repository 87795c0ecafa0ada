# upsweep/executor.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Sequence, Tuple
import logging
import os
import shlex
import subprocess
import tempfile
import time
from pathlib import Path

from .interrupt import remember_sigint

log = logging.getLogger("upsweep.executor")


# ----------------------------- models --------------------------------------

@dataclass(frozen=True)
class Action:
    """
    One runnable external action.

    Either `argv` is a full command line, or `script` is an opaque payload
    that is written to a temporary file and handed to `interpreter`
    (the file path is appended as the last argument).
    """
    argv: Tuple[str, ...] = ()
    script: Optional[str] = None
    interpreter: Tuple[str, ...] = ()
    script_suffix: str = ".sh"
    cwd: Optional[str] = None
    env: Dict[str, str] = field(default_factory=dict)
    ok_codes: Tuple[int, ...] = (0,)

    def describe(self) -> str:
        if self.script is not None:
            head = " ".join(shlex.quote(a) for a in self.interpreter)
            return f"{head} <embedded script>"
        return " ".join(shlex.quote(a) for a in self.argv)


def command(*argv: str, **kwargs) -> Action:
    return Action(argv=tuple(str(a) for a in argv), **kwargs)


def script(payload: str, interpreter: Sequence[str], suffix: str = ".sh", **kwargs) -> Action:
    return Action(
        script=payload,
        interpreter=tuple(str(a) for a in interpreter),
        script_suffix=suffix,
        **kwargs,
    )


class ExecStatus(str, Enum):
    EXITED = "exited"
    SIGNALED = "signaled"
    ERROR = "error"
    DRY = "dry"


@dataclass
class ExecResult:
    status: ExecStatus
    ok: bool
    code: Optional[int] = None
    signal: Optional[int] = None
    error: Optional[str] = None
    duration_sec: float = 0.0

    def reason(self) -> str:
        if self.status == ExecStatus.EXITED:
            return f"exit status {self.code}"
        if self.status == ExecStatus.SIGNALED:
            return f"killed by signal {self.signal}"
        if self.status == ExecStatus.ERROR:
            return f"could not start: {self.error}"
        return "dry run"


# ----------------------------- executor ------------------------------------

class Executor:
    """
    Runs actions synchronously with the parent's stdin/stdout/stderr.
    Never retries; retry policy belongs to the step runner.
    """

    def __init__(self, dry_run: bool = False, out=None):
        self.dry_run = dry_run
        self._out = out

    def execute(self, action: Action) -> ExecResult:
        if self.dry_run:
            self._print_dry(action)
            return ExecResult(status=ExecStatus.DRY, ok=True)

        if action.script is not None:
            return self._run_script(action)
        return self._spawn(list(action.argv), action)

    def _print_dry(self, action: Action) -> None:
        line = f"Dry running: {action.describe()}"
        if action.cwd:
            line += f" in {action.cwd}"
        if self._out is not None:
            self._out(line)
        else:
            print(line)

    def _run_script(self, action: Action) -> ExecResult:
        fd, path = tempfile.mkstemp(prefix=".upsweep_", suffix=action.script_suffix)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(action.script or "")
            Path(path).chmod(0o700)
            return self._spawn(list(action.interpreter) + [path], action)
        finally:
            try:
                os.unlink(path)
            except OSError:
                pass

    def _spawn(self, argv: list[str], action: Action) -> ExecResult:
        if not argv:
            return ExecResult(status=ExecStatus.ERROR, ok=False, error="empty command")

        env = None
        if action.env:
            env = os.environ.copy()
            env.update(action.env)

        log.debug("Running %s", argv)
        t0 = time.time()
        try:
            with remember_sigint():
                proc = subprocess.Popen(argv, cwd=action.cwd, env=env)
                code = proc.wait()
        except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
            return ExecResult(
                status=ExecStatus.ERROR, ok=False, error=f"{type(e).__name__}: {e}",
                duration_sec=round(time.time() - t0, 3),
            )
        except OSError as e:
            return ExecResult(
                status=ExecStatus.ERROR, ok=False, error=f"spawn failure: {e}",
                duration_sec=round(time.time() - t0, 3),
            )

        duration = round(time.time() - t0, 3)
        if code < 0:
            return ExecResult(status=ExecStatus.SIGNALED, ok=False, signal=-code, duration_sec=duration)
        return ExecResult(
            status=ExecStatus.EXITED,
            ok=code in action.ok_codes,
            code=code,
            duration_sec=duration,
        )
