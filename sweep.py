# sweep.py
from __future__ import annotations

import argparse
import logging
import os
import subprocess
import sys
from typing import Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

import step_catalog
from upsweep import __version__
from upsweep.config import (
    EXAMPLE_CONFIG,
    Settings,
    edit_command,
    ensure_config,
    load_settings,
    validate_step_names,
)
from upsweep.errors import ConfigurationError, HandOff, PreCommandFailed, UpsweepError
from upsweep.executor import Executor, command
from upsweep.orchestrator import Orchestrator, build_step_list, run_post_commands
from upsweep.remote import RemoteFanOut
from upsweep.report import (
    EXIT_ABORTED,
    EXIT_INTERRUPTED,
    EXIT_OK,
    Report,
    render_run,
    run_exit_code,
)
from upsweep.run_log import JsonlLogger, setup_logging
from upsweep.runner import StepRunner, retry_policy
from upsweep.self_update import UpdateStatus, self_update
from upsweep.session import relaunch_in_tmux, respawn
from upsweep.steps import Step, current_environment
from upsweep.terminal import Terminal, run_shell

log = logging.getLogger("upsweep.cli")


# -------------------- CLI helpers --------------------

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="upsweep",
        description="Upgrade everything: system packages, language toolchains, editor plugins and remote hosts.",
    )
    p.add_argument("--version", action="version", version=f"upsweep {__version__}")
    p.add_argument("--config", default=None, help="Configuration file (default: ~/.upsweep/config.yml)")
    p.add_argument("--edit-config", action="store_true", help="Open the configuration file in $EDITOR")
    p.add_argument("--config-reference", action="store_true", help="Print an example configuration and exit")
    p.add_argument("--list-steps", action="store_true", help="List the step keys usable with --disable/--only")
    p.add_argument("-t", "--tmux", action="store_true", help="Run inside a tmux session")
    p.add_argument("-c", "--cleanup", action="store_true", help="Cleanup temporary or old files")
    p.add_argument("-n", "--dry-run", action="store_true", help="Print the commands instead of running them")
    p.add_argument("--no-retry", action="store_true", help="Do not ask to retry failed steps")
    p.add_argument("--disable", action="append", default=[], metavar="STEP", help="Do not run this step (repeatable)")
    p.add_argument("--only", action="append", default=[], metavar="STEP", help="Run only this step (repeatable)")
    p.add_argument("--remote-host-limit", action="append", default=[], metavar="HOST",
                   help="Contact only this remote host (repeatable)")
    p.add_argument("--show-skipped", action="store_true", help="Print why filtered steps were not run")
    p.add_argument("--env", action="append", default=[], metavar="KEY=VALUE",
                   help="Set an environment variable before anything runs (repeatable)")
    p.add_argument("-k", "--keep", action="store_true", help="Ask to reboot, open a shell or quit at the end")
    p.add_argument("-y", "--yes", action="store_true", help="Say yes to package manager prompts")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug output")
    return p


def apply_env(assignments: Sequence[str], environ: Optional[Dict[str, str]] = None) -> None:
    environ = os.environ if environ is None else environ
    for item in assignments:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ConfigurationError(f"--env expects KEY=VALUE, got {item!r}")
        environ[key] = value


def overrides_from(args: argparse.Namespace) -> dict:
    return {
        "cli_disable": args.disable,
        "cli_only": args.only,
        "remote_host_limit": args.remote_host_limit,
        "run_in_tmux": args.tmux,
        "cleanup": args.cleanup,
        "dry_run": args.dry_run,
        "no_retry": args.no_retry,
        "keep_at_end": args.keep,
        "assume_yes": args.yes,
        "show_skipped": args.show_skipped,
    }


def print_steps(console: Console) -> None:
    t = Table(box=box.SIMPLE_HEAVY, title="[bold]Steps[/bold]", title_justify="left")
    t.add_column("key", style="bold")
    t.add_column("what it updates")
    for key, what in step_catalog.STEP_KEYS.items():
        t.add_row(key, what)
    console.print(t)


def keep_at_end(terminal: Terminal, settings: Settings, executor: Executor) -> None:
    """(R)eboot / (S)hell / (Q)uit loop shown after the summary."""
    while True:
        answer = terminal.ask_end()
        if answer == "s":
            run_shell()
        elif answer == "r":
            env = current_environment(settings)
            executor.execute(command(env.sudo or "sudo", "reboot"))
            return
        else:
            return


# -------------------- main --------------------

def main(
    argv: Optional[List[str]] = None,
    *,
    console: Optional[Console] = None,
    executor: Optional[Executor] = None,
    registry: Optional[List[Step]] = None,
    final: Optional[List[Step]] = None,
    hostname: Optional[str] = None,
    run_log: Optional[JsonlLogger] = None,
) -> int:
    args = build_parser().parse_args(argv)
    console = console or Console(highlight=False)
    setup_logging(args.verbose, console)

    if args.config_reference:
        console.print(EXAMPLE_CONFIG, markup=False)
        return EXIT_OK
    if args.list_steps:
        print_steps(console)
        return EXIT_OK

    try:
        apply_env(args.env)
        if args.edit_config:
            return subprocess.call(edit_command(ensure_config(args.config)))
        settings = load_settings(args.config, overrides_from(args))
        steps = build_step_list(
            registry if registry is not None else step_catalog.default_registry(),
            settings.commands,
            final if final is not None else step_catalog.final_stage(),
        )
        validate_step_names(settings, step_catalog.known_keys() + [s.name for s in steps])
    except ConfigurationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {escape(str(e))}")
        return EXIT_ABORTED

    terminal = Terminal(console, set_title=settings.set_title, display_time=settings.display_time)
    executor = executor or Executor(dry_run=settings.dry_run, out=terminal.plain)
    run_log = run_log or JsonlLogger()
    run_log.write({"event": "run_start", "version": __version__, "argv": sys.argv[1:] if argv is None else list(argv),
                   "dry_run": settings.dry_run})

    remote_report: Optional[Report] = None
    try:
        if settings.run_in_tmux:
            relaunch_in_tmux(settings)

        if self_update(settings, executor, terminal) == UpdateStatus.UPDATED:
            respawn()

        runner = StepRunner(current_environment(settings), executor, retry_policy(settings.no_retry, terminal), terminal)
        orchestrator = Orchestrator(settings, runner, terminal, run_log)
        orchestrator.run_pre_commands()

        if settings.remote_hosts and settings.should_run("remotes"):
            fan_out = RemoteFanOut(settings, executor, terminal, run_log, hostname=hostname)
            remote_report = fan_out.run()

        report = orchestrator.run(steps)
    except HandOff as e:
        log.debug("%s", e)
        return e.code
    except PreCommandFailed as e:
        terminal.error(str(e))
        run_log.write({"event": "run_end", "exit_code": EXIT_ABORTED, "error": str(e)})
        return EXIT_ABORTED
    except UpsweepError as e:
        terminal.error(str(e))
        run_log.write({"event": "run_end", "exit_code": EXIT_ABORTED, "error": str(e)})
        return EXIT_ABORTED
    except KeyboardInterrupt:
        run_log.write({"event": "run_end", "exit_code": EXIT_INTERRUPTED})
        return EXIT_INTERRUPTED

    console.print()
    console.print(render_run(report, remote_report))

    try:
        post_failed = run_post_commands(settings.post_commands, executor, terminal, run_log)
        code = run_exit_code(report, remote_report, post_failed)
        run_log.write({"event": "run_end", "exit_code": code})
        if settings.keep_at_end:
            keep_at_end(terminal, settings, executor)
    except KeyboardInterrupt:
        return EXIT_INTERRUPTED
    return code


def cli_entry() -> None:
    sys.exit(main())


if __name__ == "__main__":
    cli_entry()
