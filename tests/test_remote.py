from upsweep.config import Settings
from upsweep.remote import RemoteFanOut, _classify_ssh_error, build_ssh_cmd, build_tmux_window_cmd
from upsweep.steps import OutcomeKind

from conftest import FakeExecutor


def _fan_out(settings, executor, probe=lambda host, args: ""):
    return RemoteFanOut(settings, executor, hostname="laptop", probe=probe)


def test_ssh_command_line():
    s = Settings(ssh_arguments="-o ConnectTimeout=2", remote_path="~/.local/bin/upsweep", assume_yes=True)
    assert build_ssh_cmd("box", s) == [
        "ssh", "-t", "-o", "ConnectTimeout=2", "box",
        "env", "UPSWEEP_PREFIX=box", "~/.local/bin/upsweep", "--yes",
    ]


def test_no_retry_is_passed_through():
    argv = build_ssh_cmd("box", Settings(no_retry=True))
    assert argv[-1] == "--no-retry"


def test_legs_run_in_order_and_failures_continue():
    s = Settings(remote_hosts=["a", "b", "c"])
    ex = FakeExecutor(fail={"a"})
    report = _fan_out(s, ex).run()
    assert [argv[2] for argv in ex.argvs()] == ["a", "b", "c"]
    assert [(e.name, e.outcome.kind) for e in report.entries] == [
        ("Remote (a)", OutcomeKind.FAILED),
        ("Remote (b)", OutcomeKind.SUCCEEDED),
        ("Remote (c)", OutcomeKind.SUCCEEDED),
    ]
    assert report.title == "Remote hosts"


def test_own_host_and_limit_filter():
    s = Settings(remote_hosts=["laptop", "me@laptop", "a", "b"], remote_host_limit=["b", "laptop"])
    ex = FakeExecutor()
    report = _fan_out(s, ex).run()
    assert [e.name for e in report.entries] == ["Remote (b)"]


def test_duplicate_hosts_are_contacted_twice():
    s = Settings(remote_hosts=["a", "a"])
    ex = FakeExecutor()
    report = _fan_out(s, ex).run()
    assert len(ex.calls) == 2
    assert [e.name for e in report.entries] == ["Remote (a)", "Remote (a) #2"]


def test_connection_failure_is_explained():
    s = Settings(remote_hosts=["a"])
    ex = FakeExecutor(fail={"a"}, codes={"a": 255})
    report = _fan_out(s, ex, probe=lambda host, args: "ssh: connect to host a port 22: Connection refused").run()
    assert report.entries[0].outcome.reason.startswith("Connection refused")


def test_tmux_mode_opens_windows():
    s = Settings(remote_hosts=["a"], run_in_tmux=True)
    ex = FakeExecutor()
    report = _fan_out(s, ex).run()
    argv = ex.calls[0].argv
    assert argv[:6] == ("tmux", "new-window", "-a", "-t", "upsweep:1", "-n")
    assert "UPSWEEP_KEEP_END=1" in argv[-1]
    assert report.entries[0].outcome.kind == OutcomeKind.SKIPPED
    assert report.entries[0].outcome.reason == "launched in tmux"


def test_tmux_mode_is_ignored_in_dry_run():
    s = Settings(remote_hosts=["a"], run_in_tmux=True, dry_run=True)
    ex = FakeExecutor()
    _fan_out(s, ex).run()
    assert ex.calls[0].argv[0] == "ssh"


def test_tmux_arguments_go_first():
    argv = build_tmux_window_cmd("a", Settings(tmux_arguments="-S /tmp/sock"))
    assert argv[:4] == ["tmux", "-S", "/tmp/sock", "new-window"]


def test_classify():
    assert _classify_ssh_error("Permission denied (publickey).")[0] == "Permission denied"
    assert _classify_ssh_error("something else") == ("", "")
