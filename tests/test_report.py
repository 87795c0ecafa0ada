import io

import pytest
from rich.console import Console

from upsweep.report import EXIT_OK, EXIT_STEPS_FAILED, Report, render_run, run_exit_code
from upsweep.steps import Outcome, OutcomeKind, SkipReason


def _render(renderable) -> str:
    console = Console(file=io.StringIO(), width=120)
    console.print(renderable)
    return console.file.getvalue()


def test_exit_code_ignores_skipped_and_ignored():
    r = Report()
    r.record("a", Outcome.succeeded())
    r.record("b", Outcome.skipped(SkipReason.PRECONDITION, "no sudo"))
    r.record("c", Outcome.ignored("exit status 1"))
    r.record("d", Outcome.succeeded())
    assert r.exit_code() == EXIT_OK


def test_failed_entry_sets_exit_code():
    r = Report()
    r.record("a", Outcome.succeeded())
    r.record("b", Outcome.failed("exit status 100"))
    assert r.failed
    assert r.exit_code() == EXIT_STEPS_FAILED


def test_filtered_outcomes_are_rejected():
    r = Report()
    with pytest.raises(ValueError):
        r.record("a", Outcome.skipped(SkipReason.DISABLED))
    with pytest.raises(ValueError):
        r.record("a", Outcome.skipped(SkipReason.INAPPLICABLE))


def test_one_entry_per_step():
    r = Report()
    r.record("a", Outcome.succeeded())
    with pytest.raises(ValueError):
        r.record("a", Outcome.failed("x"))


def test_closed_report_is_read_only():
    r = Report().close()
    with pytest.raises(RuntimeError):
        r.record("a", Outcome.succeeded())


def test_grouping_keeps_recorded_order():
    r = Report()
    r.record("z-fail", Outcome.failed("exit status 1"))
    r.record("b-ok", Outcome.succeeded())
    r.record("a-ok", Outcome.succeeded())
    groups = r.grouped()
    assert [e.name for e in groups[OutcomeKind.SUCCEEDED]] == ["b-ok", "a-ok"]
    text = _render(r.render())
    assert text.index("b-ok") < text.index("a-ok") < text.index("z-fail")
    assert "exit status 1" in text


def test_remote_preface_comes_first():
    local = Report()
    local.record("local-step", Outcome.succeeded())
    remote = Report("Remote hosts")
    remote.record("Remote (box)", Outcome.failed("exit status 255"))
    text = _render(render_run(local, remote))
    assert text.index("Remote hosts") < text.index("local-step")
    assert run_exit_code(local, remote) == EXIT_STEPS_FAILED
    assert run_exit_code(local) == EXIT_OK
    assert run_exit_code(local, post_failed=True) == EXIT_STEPS_FAILED
