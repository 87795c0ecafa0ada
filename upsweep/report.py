# upsweep/report.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from rich import box
from rich.console import Group
from rich.markup import escape
from rich.table import Table
from rich.text import Text

from .steps import Outcome, OutcomeKind

EXIT_OK = 0
EXIT_STEPS_FAILED = 1
EXIT_ABORTED = 2
EXIT_INTERRUPTED = 130

# summary order; recorded order is kept inside each group
GROUP_ORDER = (OutcomeKind.SUCCEEDED, OutcomeKind.SKIPPED, OutcomeKind.IGNORED, OutcomeKind.FAILED)

_LABEL = {
    OutcomeKind.SUCCEEDED: "[bold green]✅ OK[/bold green]",
    OutcomeKind.SKIPPED: "[bold]⏭️  SKIPPED[/bold]",
    OutcomeKind.IGNORED: "[bold yellow]IGNORED[/bold yellow]",
    OutcomeKind.FAILED: "[bold red]❌ FAILED[/bold red]",
}


@dataclass(frozen=True)
class ReportEntry:
    name: str
    outcome: Outcome


class Report:
    """
    Ordered (step, outcome) record of one run. Append-only until closed,
    read-only afterwards.
    """

    def __init__(self, title: str = "Summary"):
        self.title = title
        self._entries: List[ReportEntry] = []
        self._closed = False

    def record(self, name: str, outcome: Outcome) -> None:
        if self._closed:
            raise RuntimeError("report is closed")
        if not outcome.considered:
            raise ValueError(f"{name}: filtered steps are not recorded")
        if any(e.name == name for e in self._entries):
            raise ValueError(f"{name} already reported")
        self._entries.append(ReportEntry(name, outcome))

    def close(self) -> "Report":
        self._closed = True
        return self

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def entries(self) -> Tuple[ReportEntry, ...]:
        return tuple(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def failed(self) -> bool:
        return any(e.outcome.is_failure for e in self._entries)

    def grouped(self) -> Dict[OutcomeKind, List[ReportEntry]]:
        out: Dict[OutcomeKind, List[ReportEntry]] = {k: [] for k in GROUP_ORDER}
        for e in self._entries:
            out[e.outcome.kind].append(e)
        return out

    def exit_code(self) -> int:
        return EXIT_STEPS_FAILED if self.failed else EXIT_OK

    def render(self) -> Table:
        table = Table(title=f"[bold]{escape(self.title)}[/bold]", box=box.SIMPLE_HEAVY, title_justify="left")
        table.add_column("step", style="bold")
        table.add_column("result")
        table.add_column("details", style="dim")
        for kind, entries in self.grouped().items():
            for e in entries:
                details = "" if kind == OutcomeKind.SUCCEEDED else e.outcome.reason
                table.add_row(escape(e.name), _LABEL[kind], escape(details))
        return table


def render_run(local: Optional[Report], remote: Optional[Report] = None):
    """Remote legs first, as a preface, then the local summary."""
    parts = []
    if remote is not None and len(remote):
        parts.append(remote.render())
    if local is not None and len(local):
        parts.append(local.render())
    if not parts:
        return Text("")
    return Group(*parts)


def run_exit_code(local: Report, remote: Optional[Report] = None, post_failed: bool = False) -> int:
    if local.failed or post_failed or (remote is not None and remote.failed):
        return EXIT_STEPS_FAILED
    return EXIT_OK
