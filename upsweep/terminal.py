# upsweep/terminal.py
from __future__ import annotations

from datetime import datetime
from typing import Optional
import os
import subprocess
import sys

from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt


def shell() -> str:
    return os.environ.get("SHELL") or "sh"


def run_shell() -> int:
    return subprocess.call([shell()])


class Terminal:
    """All user-facing output goes through one rich Console."""

    def __init__(self, console: Optional[Console] = None, *, set_title: bool = True, display_time: bool = True):
        self.console = console or Console(highlight=False)
        self.set_title = set_title
        self.display_time = display_time
        prefix = os.environ.get("UPSWEEP_PREFIX")
        self.prefix = f"({prefix}) " if prefix else ""

    # -------------------- output --------------------

    def _title(self, text: str) -> None:
        if self.set_title and self.console.is_terminal:
            self.console.file.write(f"\x1b]0;{self.prefix}upsweep - {text}\x07")

    def separator(self, message: str) -> None:
        self._title(message)
        stamp = datetime.now().strftime("%H:%M:%S - ") if self.display_time else ""
        text = f"{self.prefix}{stamp}{message}"
        width = min(80, self.console.width)
        fill = max(2, width - 4 - len(text))
        self.console.print()
        self.console.print(f"[bold]―― {escape(text)} {'―' * fill}[/bold]")

    def info(self, message: str) -> None:
        self.console.print(f"[bold blue]{escape(message)}[/bold blue]")

    def warning(self, message: str) -> None:
        self.console.print(f"[bold yellow]{escape(message)}[/bold yellow]")

    def error(self, message: str) -> None:
        self.console.print(f"[bold red]{escape(message)}[/bold red]")

    def plain(self, message: str) -> None:
        self.console.print(escape(message))

    # -------------------- prompts --------------------

    def is_interactive(self) -> bool:
        return self.console.is_terminal and sys.stdin.isatty()

    def ask_retry(self, step_name: str, interrupted: bool) -> bool:
        """Retry? (y)es/(N)o/(s)hell. The shell answer drops to $SHELL and then retries."""
        self._title("Awaiting user")
        hint = " (Press Ctrl+C again to stop)" if interrupted else ""
        answer = Prompt.ask(
            f"[bold yellow]{escape(self.prefix)}{escape(step_name)} failed. "
            f"Retry? (y)es/(N)o/(s)hell{hint}[/bold yellow]",
            choices=["y", "n", "s"],
            default="n",
            show_choices=False,
            show_default=False,
            console=self.console,
        ).lower()
        if answer == "s":
            self.console.print("\nDropping you to shell. Fix what you need and then exit the shell.\n")
            run_shell()
            return True
        return answer == "y"

    def ask_end(self) -> str:
        self.info("\n(R)eboot\n(S)hell\n(Q)uit")
        return Prompt.ask(
            "", choices=["r", "s", "q"], default="q",
            show_choices=False, show_default=False, console=self.console,
        ).lower()
