import pytest

from upsweep.config import Settings
from upsweep.errors import HandOff, UpsweepError
from upsweep.session import INSIDE_TMUX, NO_SELF_UPDATE, relaunch_in_tmux, respawn, tmux_commands


class Calls:
    def __init__(self, has_session=1, code=0):
        self.has_session = has_session
        self.code = code
        self.seen = []

    def __call__(self, argv, **kw):
        self.seen.append((argv, kw))
        if "has-session" in argv:
            return self.has_session
        return self.code


def test_no_relaunch_inside_the_session():
    call = Calls()
    relaunch_in_tmux(Settings(), ["upsweep"], call=call, environ={INSIDE_TMUX: "1"})
    assert call.seen == []


def test_new_session_then_attach():
    call = Calls(has_session=1)
    with pytest.raises(HandOff) as exc:
        relaunch_in_tmux(Settings(), ["upsweep", "-y"], call=call, environ={})
    assert exc.value.code == 0
    argvs = [a for a, _ in call.seen]
    assert argvs[1][:6] == ["tmux", "new-session", "-d", "-s", "upsweep", "-n"]
    assert argvs[1][-1] == "env UPSWEEP_INSIDE_TMUX=1 upsweep -y"
    assert argvs[2] == ["tmux", "set-option", "-t", "upsweep", "remain-on-exit", "on"]
    assert argvs[3] == ["tmux", "attach-session", "-t", "upsweep"]


def test_existing_session_gets_a_window():
    calls = tmux_commands(["upsweep"], "", session_exists=True, inside_other_tmux=True)
    assert calls[0][:5] == ["tmux", "new-window", "-a", "-t", "upsweep:1"]
    assert calls[-1] == ["tmux", "switch-client", "-t", "upsweep"]


def test_failing_tmux_call_is_handed_back():
    call = Calls(has_session=0, code=1)
    with pytest.raises(HandOff) as exc:
        relaunch_in_tmux(Settings(), ["upsweep"], call=call, environ={})
    assert exc.value.code == 1
    assert len(call.seen) == 2


def test_missing_tmux():
    def call(argv, **kw):
        raise FileNotFoundError("tmux")

    with pytest.raises(UpsweepError):
        relaunch_in_tmux(Settings(), ["upsweep"], call=call, environ={})


def test_unrunnable_tmux():
    def call(argv, **kw):
        raise PermissionError(13, "Permission denied", "tmux")

    with pytest.raises(UpsweepError, match="cannot run tmux"):
        relaunch_in_tmux(Settings(), ["upsweep"], call=call, environ={})


def test_respawn_marks_the_child_and_hands_off():
    call = Calls(code=3)
    with pytest.raises(HandOff) as exc:
        respawn(["upsweep", "-v"], call=call, environ={"HOME": "/home/u"})
    assert exc.value.code == 3
    argv, kw = call.seen[0]
    assert argv == ["upsweep", "-v"]
    assert kw["env"] == {"HOME": "/home/u", NO_SELF_UPDATE: "1"}
