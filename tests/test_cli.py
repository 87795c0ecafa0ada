import os
from pathlib import Path

import pytest

import sweep
from upsweep.report import EXIT_ABORTED, EXIT_OK, EXIT_STEPS_FAILED
from upsweep.run_log import NullLogger
from upsweep.steps import Step

from conftest import FakeExecutor, FakeStep, make_step, quiet_console


def _config(tmp_path: Path, text: str = "") -> str:
    p = tmp_path / "config.yml"
    p.write_text(text, encoding="utf-8")
    return str(p)


def _main(args, executor, registry=None, console=None):
    console = console or quiet_console()
    code = sweep.main(
        args,
        console=console,
        executor=executor,
        registry=registry if registry is not None else [make_step("system"), make_step("vim")],
        final=[],
        hostname="laptop",
        run_log=NullLogger(),
    )
    return code, console.file.getvalue()


def test_clean_run(tmp_path):
    ex = FakeExecutor()
    code, out = _main(["--config", _config(tmp_path)], ex)
    assert code == EXIT_OK
    assert ex.argvs() == [("run", "system"), ("run", "vim")]
    assert "Summary" in out


def test_step_failure_exit_code(tmp_path):
    code, out = _main(["--config", _config(tmp_path), "--no-retry"], FakeExecutor(fail={"system"}))
    assert code == EXIT_STEPS_FAILED
    assert "FAILED" in out


def test_pre_command_failure_aborts_without_report(tmp_path):
    cfg = _config(tmp_path, 'pre_commands:\n  "Snapshot": "exit 1"\n')
    ex = FakeExecutor(fail={"exit 1"})
    code, out = _main(["--config", cfg], ex)
    assert code == EXIT_ABORTED
    assert "Summary" not in out
    assert "Snapshot" in out
    assert len(ex.calls) == 1


def test_configuration_error(tmp_path):
    code, out = _main(["--config", _config(tmp_path, "disable: [nonsense]\n")], FakeExecutor())
    assert code == EXIT_ABORTED
    assert "Configuration error" in out


def test_remote_legs_run_first(tmp_path):
    cfg = _config(tmp_path, "remote_hosts: [a, laptop, b]\n")
    ex = FakeExecutor(fail={"a"})
    code, out = _main(["--config", cfg, "--remote-host-limit", "a", "--remote-host-limit", "b"], ex)
    assert [argv[0] for argv in ex.argvs()] == ["ssh", "ssh", "run", "run"]
    assert [argv[2] for argv in ex.argvs()[:2]] == ["a", "b"]
    assert code == EXIT_STEPS_FAILED
    assert out.index("Remote hosts") < out.index("Summary")


def test_only_and_disable(tmp_path):
    ex = FakeExecutor()
    _main(["--config", _config(tmp_path, "disable: [vim]\n"), "--only", "vim"], ex)
    assert ex.argvs() == [("run", "vim")]


def test_custom_commands_and_post_commands(tmp_path):
    cfg = _config(tmp_path, 'commands:\n  "Dotfiles": "git pull"\npost_commands:\n  "Notify": "notify-send done"\n')
    ex = FakeExecutor(fail={"notify-send done"})
    code, _ = _main(["--config", cfg], ex)
    assert [a.argv[-1] for a in ex.calls] == ["system", "vim", "git pull", "notify-send done"]
    assert code == EXIT_STEPS_FAILED


def test_dry_run_spawns_nothing(tmp_path, monkeypatch):
    def no_popen(*a, **kw):
        raise AssertionError("spawned in dry run")

    monkeypatch.setattr(sweep.subprocess, "Popen", no_popen)
    console = quiet_console()
    code = sweep.main(
        ["--config", _config(tmp_path), "--dry-run"],
        console=console,
        registry=[make_step("system"), make_step("vim")],
        final=[],
        run_log=NullLogger(),
    )
    out = console.file.getvalue()
    assert code == EXIT_OK
    assert "Dry running: run system" in out
    assert "Dry running: run vim" in out
    assert "SKIPPED" not in out
    assert "FAILED" not in out


def test_env_assignment(tmp_path, monkeypatch):
    monkeypatch.delenv("UPSWEEP_TEST_VAR", raising=False)
    _main(["--config", _config(tmp_path), "--env", "UPSWEEP_TEST_VAR=42"], FakeExecutor())
    assert os.environ["UPSWEEP_TEST_VAR"] == "42"
    monkeypatch.delenv("UPSWEEP_TEST_VAR")


def test_bad_env_assignment(tmp_path):
    code, _ = _main(["--config", _config(tmp_path), "--env", "NOEQUALS"], FakeExecutor())
    assert code == EXIT_ABORTED


def test_config_reference():
    code, out = _main(["--config-reference"], FakeExecutor())
    assert code == EXIT_OK
    assert "remote_hosts" in out


def test_list_steps():
    code, out = _main(["--list-steps"], FakeExecutor())
    assert code == EXIT_OK
    assert "firmware" in out


def test_version(capsys):
    with pytest.raises(SystemExit) as exc:
        sweep.main(["--version"])
    assert exc.value.code == 0
    assert "upsweep" in capsys.readouterr().out


def test_crashing_step_does_not_end_the_run(tmp_path):
    err = PermissionError(13, "Permission denied", "/home/u/.vimrc")
    registry = [make_step("a"), make_step("b", raises=err), make_step("c")]
    ex = FakeExecutor()
    code, out = _main(["--config", _config(tmp_path), "--no-retry"], ex, registry=registry)
    assert code == EXIT_STEPS_FAILED
    assert ex.argvs() == [("run", "a"), ("run", "c")]
    assert "PermissionError" in out
    assert out.count("FAILED") == 1


def test_disable_by_display_name(tmp_path):
    registry = [Step("Vim", "vim", FakeStep("vim")), Step("Neovim", "vim", FakeStep("nvim"))]
    ex = FakeExecutor()
    code, out = _main(["--config", _config(tmp_path), "--disable", "Neovim"], ex, registry=registry)
    assert code == EXIT_OK
    assert ex.argvs() == [("run", "vim")]


def test_unknown_step_on_command_line(tmp_path):
    cfg = _config(tmp_path)
    code, out = _main(["--config", cfg, "--disable", "nonsense"], FakeExecutor())
    assert code == EXIT_ABORTED
    assert "unknown step 'nonsense' in --disable" in out
    assert cfg not in out
