import os
import subprocess

from upsweep.executor import Action, ExecStatus, Executor, command, script


class FakePopen:
    instances = []

    def __init__(self, argv, cwd=None, env=None):
        self.argv = argv
        self.cwd = cwd
        self.env = env
        self.seen_script = None
        if len(argv) > 1 and os.path.exists(argv[-1]):
            with open(argv[-1], encoding="utf-8") as f:
                self.seen_script = f.read()
        FakePopen.instances.append(self)

    def wait(self):
        return FakePopen.returncode


def _patch(monkeypatch, returncode=0):
    FakePopen.instances = []
    FakePopen.returncode = returncode
    monkeypatch.setattr(subprocess, "Popen", FakePopen)


def test_exit_zero_is_success(monkeypatch):
    _patch(monkeypatch, 0)
    r = Executor().execute(command("apt", "update"))
    assert r.ok and r.status == ExecStatus.EXITED and r.code == 0
    assert FakePopen.instances[0].argv == ["apt", "update"]


def test_nonzero_exit_fails(monkeypatch):
    _patch(monkeypatch, 3)
    r = Executor().execute(command("apt", "update"))
    assert not r.ok
    assert r.reason() == "exit status 3"


def test_extra_success_codes(monkeypatch):
    _patch(monkeypatch, 2)
    r = Executor().execute(command("fwupdmgr", "get-updates", ok_codes=(0, 2)))
    assert r.ok


def test_signal_is_reported(monkeypatch):
    _patch(monkeypatch, -9)
    r = Executor().execute(command("sleep", "100"))
    assert r.status == ExecStatus.SIGNALED
    assert r.signal == 9
    assert not r.ok


def test_missing_binary_is_execution_error():
    r = Executor().execute(command("/nonexistent/upsweep-no-such-binary"))
    assert r.status == ExecStatus.ERROR
    assert not r.ok
    assert "FileNotFoundError" in r.error


def test_empty_command_is_execution_error():
    r = Executor().execute(Action())
    assert r.status == ExecStatus.ERROR


def test_env_is_merged_into_parent_environment(monkeypatch):
    _patch(monkeypatch, 0)
    Executor().execute(command("true", env={"UPSWEEP_TEST": "1"}))
    env = FakePopen.instances[0].env
    assert env["UPSWEEP_TEST"] == "1"
    assert "PATH" in env


def test_script_is_written_and_removed(monkeypatch):
    _patch(monkeypatch, 0)
    r = Executor().execute(script("PlugUpdate\nquitall\n", ["vim", "-e", "-S"], suffix=".vim"))
    assert r.ok
    p = FakePopen.instances[0]
    assert p.argv[:3] == ["vim", "-e", "-S"]
    assert p.argv[-1].endswith(".vim")
    assert p.seen_script == "PlugUpdate\nquitall\n"
    assert not os.path.exists(p.argv[-1])


def test_dry_run_never_spawns(monkeypatch):
    _patch(monkeypatch, 1)
    lines = []
    r = Executor(dry_run=True, out=lines.append).execute(command("brew", "upgrade", cwd="/tmp"))
    assert r.ok and r.status == ExecStatus.DRY
    assert FakePopen.instances == []
    assert lines == ["Dry running: brew upgrade in /tmp"]
