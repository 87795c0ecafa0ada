# upsweep/remote.py
from __future__ import annotations

from typing import Callable, List, Optional, Tuple
import logging
import shlex
import socket
import subprocess

from .config import Settings
from .executor import Action, Executor, ExecStatus, command
from .report import Report
from .run_log import JsonlLogger, NullLogger
from .steps import Outcome, SkipReason
from .terminal import Terminal

log = logging.getLogger("upsweep.remote")

SSH_CONNECTION_ERROR = 255
TMUX_SESSION = "upsweep"


def _classify_ssh_error(stderr: str) -> Tuple[str, str]:
    s = (stderr or "").lower()
    if "permission denied" in s:
        return ("Permission denied", "Check the user and identity file (chmod 600) and access on the server.")
    if "no route to host" in s or "network is unreachable" in s or "could not resolve hostname" in s:
        return ("Host unreachable", "Check the host name, DNS, port and firewall.")
    if "connection timed out" in s or "operation timed out" in s or "timed out" in s:
        return ("Connection timed out", "Check the port, firewall and that sshd is listening.")
    if "connection refused" in s:
        return ("Connection refused", "No sshd on that port or the connection is blocked.")
    if "host key verification failed" in s or "man-in-the-middle" in s:
        return ("Host key verification", "Add the host key to known_hosts or set StrictHostKeyChecking=accept-new in ssh_arguments.")
    if "kex_exchange_identification" in s:
        return ("KEX error", "Often a ban or connection limit. Check fail2ban, sshd_config and MaxStartups.")
    return ("", "")


def probe_ssh(host: str, ssh_arguments: str) -> str:
    """Connect once in batch mode and return what ssh printed on stderr."""
    argv = ["ssh", "-o", "BatchMode=yes", "-o", "ConnectTimeout=5"] + shlex.split(ssh_arguments) + [host, "true"]
    try:
        p = subprocess.run(argv, text=True, capture_output=True, timeout=30)
    except (OSError, subprocess.TimeoutExpired) as e:
        return str(e)
    return p.stderr


# -------------------- command lines --------------------

def remote_invocation(host: str, settings: Settings, *, keep_end: bool = False) -> List[str]:
    """`<remote_path> ...` as run on the other side, behind `env`."""
    argv = ["env", f"UPSWEEP_PREFIX={host}"]
    if keep_end:
        argv.append("UPSWEEP_KEEP_END=1")
    argv.append(settings.remote_path)
    if settings.assume_yes:
        argv.append("--yes")
    if settings.no_retry:
        argv.append("--no-retry")
    return argv


def build_ssh_cmd(host: str, settings: Settings, *, keep_end: bool = False) -> List[str]:
    """
    ssh -t [ssh_arguments] HOST env UPSWEEP_PREFIX=HOST <remote_path> [--yes] [--no-retry]

    -t allocates a terminal so the remote run can prompt and draw its output.
    """
    return (
        ["ssh", "-t"]
        + shlex.split(settings.ssh_arguments)
        + [host]
        + remote_invocation(host, settings, keep_end=keep_end)
    )


def build_tmux_window_cmd(host: str, settings: Settings) -> List[str]:
    ssh = build_ssh_cmd(host, settings, keep_end=True)
    return (
        ["tmux"]
        + shlex.split(settings.tmux_arguments)
        + ["new-window", "-a", "-t", f"{TMUX_SESSION}:1", "-n", host, " ".join(shlex.quote(a) for a in ssh)]
    )


# -------------------- fan-out --------------------

class RemoteFanOut:
    """
    Runs the whole tool on each selected host, strictly in list order and
    strictly before the local run. A failed leg is recorded and the next
    leg starts anyway.
    """

    def __init__(
        self,
        settings: Settings,
        executor: Executor,
        terminal: Optional[Terminal] = None,
        run_log: Optional[JsonlLogger] = None,
        hostname: Optional[str] = None,
        probe: Callable[[str, str], str] = probe_ssh,
    ):
        self.settings = settings
        self.executor = executor
        self.terminal = terminal
        self.run_log = run_log or NullLogger()
        self.hostname = hostname if hostname is not None else socket.gethostname()
        self.probe = probe

    def hosts(self) -> List[str]:
        return self.settings.selected_remote_hosts(self.hostname)

    @property
    def in_tmux(self) -> bool:
        return self.settings.run_in_tmux and not self.settings.dry_run

    def _leg(self, host: str) -> Outcome:
        if self.in_tmux:
            result = self.executor.execute(command(*build_tmux_window_cmd(host, self.settings)))
            if result.ok:
                return Outcome.skipped(SkipReason.PRECONDITION, "launched in tmux")
            return Outcome.failed(result.reason())

        result = self.executor.execute(Action(argv=tuple(build_ssh_cmd(host, self.settings))))
        if result.ok:
            return Outcome.succeeded()
        reason = result.reason()
        if result.status == ExecStatus.EXITED and result.code == SSH_CONNECTION_ERROR:
            label, hint = _classify_ssh_error(self.probe(host, self.settings.ssh_arguments))
            if label:
                reason = f"{label}: {hint}"
        return Outcome.failed(reason)

    def run(self, report: Optional[Report] = None) -> Report:
        report = report if report is not None else Report("Remote hosts")
        seen = {}
        for host in self.hosts():
            seen[host] = seen.get(host, 0) + 1
            name = f"Remote ({host})" if seen[host] == 1 else f"Remote ({host}) #{seen[host]}"
            if self.terminal is not None:
                self.terminal.separator(name)
            outcome = self._leg(host)
            log.debug("%s: %s %s", name, outcome.kind.value, outcome.reason)
            report.record(name, outcome)
            self.run_log.write({"event": "remote", "host": host, "outcome": outcome.kind.value, "reason": outcome.reason})
        return report.close()
