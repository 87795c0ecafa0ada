# upsweep/orchestrator.py
from __future__ import annotations

from typing import Iterable, List, Optional, Sequence
import logging
import time

from .config import Commands, Settings
from .errors import ConfigurationError, PreCommandFailed
from .executor import Action, Executor, command
from .report import Report
from .run_log import JsonlLogger, NullLogger
from .runner import StepRunner
from .steps import Environment, Step, StepDescriptor
from .terminal import Terminal, shell

log = logging.getLogger("upsweep.orchestrator")


def shell_action(cmd: str) -> Action:
    """Configured commands are shell snippets, run with the user's shell."""
    return command(shell(), "-c", cmd)


# -------------------- custom commands --------------------

class CustomCommand(StepDescriptor):
    """A `commands:` entry from the configuration. Always applicable."""

    def __init__(self, name: str, cmd: str):
        self.key = name
        self.cmd = cmd

    def applies(self, env: Environment) -> bool:
        return True

    def action(self, env: Environment) -> Action:
        return shell_action(self.cmd)


def build_step_list(
    registry: Sequence[Step],
    commands: Commands,
    final_stage: Sequence[Step],
) -> List[Step]:
    """Registry order, then the custom commands, then the final stage."""
    taken = {s.name.lower() for s in list(registry) + list(final_stage)}
    custom = []
    for name, cmd in commands:
        if name.lower() in taken:
            raise ConfigurationError(f"custom command '{name}' clashes with a built-in step")
        custom.append(Step(name, name, CustomCommand(name, cmd)))
    return list(registry) + custom + list(final_stage)


# -------------------- pre / post commands --------------------

def run_pre_commands(
    commands: Commands,
    executor: Executor,
    terminal: Optional[Terminal] = None,
    run_log: Optional[JsonlLogger] = None,
) -> None:
    """Run gating commands in order; the first failure raises PreCommandFailed."""
    run_log = run_log or NullLogger()
    for name, cmd in commands:
        if terminal is not None:
            terminal.separator(f"Pre-command: {name}")
        result = executor.execute(shell_action(cmd))
        run_log.write({"event": "pre_command", "name": name, "ok": result.ok, "reason": result.reason(),
                       "duration_sec": result.duration_sec})
        if not result.ok:
            raise PreCommandFailed(name, result.reason())


def run_post_commands(
    commands: Commands,
    executor: Executor,
    terminal: Optional[Terminal] = None,
    run_log: Optional[JsonlLogger] = None,
) -> bool:
    """Run every post-command; returns True if any of them failed."""
    run_log = run_log or NullLogger()
    failed = False
    for name, cmd in commands:
        if terminal is not None:
            terminal.separator(f"Post-command: {name}")
        result = executor.execute(shell_action(cmd))
        run_log.write({"event": "post_command", "name": name, "ok": result.ok, "reason": result.reason(),
                       "duration_sec": result.duration_sec})
        if not result.ok:
            log.warning("Post-command %s failed: %s", name, result.reason())
            if terminal is not None:
                terminal.error(f"Post-command {name} failed: {result.reason()}")
            failed = True
    return failed


# -------------------- orchestrator --------------------

class Orchestrator:
    """
    Drives the Step Runner over an ordered step list and owns the Report
    for the duration of the run.

    Pre-commands gate everything: `run` executes them first unless
    `run_pre_commands` was already called (the CLI calls it before the
    remote legs). A failing pre-command raises PreCommandFailed and no
    Report exists. After that the run never stops early on a failed step.
    """

    def __init__(
        self,
        settings: Settings,
        runner: StepRunner,
        terminal: Optional[Terminal] = None,
        run_log: Optional[JsonlLogger] = None,
    ):
        self.settings = settings
        self.runner = runner
        self.terminal = terminal
        self.run_log = run_log or NullLogger()
        self._pre_done = False

    def run_pre_commands(self) -> None:
        if self._pre_done:
            return
        run_pre_commands(self.settings.pre_commands, self.runner.executor, self.terminal, self.run_log)
        self._pre_done = True

    def run(self, steps: Iterable[Step], report: Optional[Report] = None) -> Report:
        self.run_pre_commands()
        report = report if report is not None else Report()
        for step in steps:
            t0 = time.time()
            outcome = self.runner.run(step)
            if not outcome.considered:
                log.debug("%s not considered: %s", step.name, outcome.reason)
                if self.settings.show_skipped and self.terminal is not None:
                    self.terminal.plain(f"Skipped {step.name}: {outcome.reason}")
                continue
            report.record(step.name, outcome)
            self.run_log.write({
                "event": "step",
                "step": step.name,
                "key": step.key,
                "outcome": outcome.kind.value,
                "reason": outcome.reason,
                "duration_sec": round(time.time() - t0, 3),
            })
        return report.close()
