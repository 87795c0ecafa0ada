import io
from pathlib import Path
from typing import Iterable, List, Optional

import pytest
from rich.console import Console

from upsweep.config import Settings
from upsweep.errors import SkipStep
from upsweep.executor import Action, ExecResult, ExecStatus, command
from upsweep.steps import Environment, Step, StepDescriptor
from upsweep.terminal import Terminal


class FakeExecutor:
    """Records every action; an action fails when one of its argv items is in `fail`."""

    def __init__(self, fail: Iterable[str] = (), codes: Optional[dict] = None):
        self.fail = set(fail)
        self.codes = codes or {}
        self.calls: List[Action] = []

    def execute(self, action: Action) -> ExecResult:
        self.calls.append(action)
        hit = set(action.argv) & self.fail
        if hit:
            code = self.codes.get(sorted(hit)[0], 1)
            return ExecResult(status=ExecStatus.EXITED, ok=False, code=code)
        return ExecResult(status=ExecStatus.EXITED, ok=True, code=0)

    def argvs(self) -> List[tuple]:
        return [a.argv for a in self.calls]


class FakeStep(StepDescriptor):
    def __init__(
        self,
        key: str,
        applies: bool = True,
        skip: Optional[str] = None,
        actions: int = 1,
        raises: Optional[Exception] = None,
    ):
        self.key = key
        self._applies = applies
        self._skip = skip
        self._raises = raises
        self._actions = actions
        self.built = 0

    def applies(self, env):
        return self._applies

    def action(self, env):
        self.built += 1
        if self._skip:
            raise SkipStep(self._skip)
        if self._raises is not None:
            raise self._raises
        if self._actions == 1:
            return command("run", self.key)
        return [command("run", f"{self.key}-{i}") for i in range(self._actions)]


def make_step(key: str, **kw) -> Step:
    return Step(key, key, FakeStep(key, **kw))


def quiet_console() -> Console:
    return Console(file=io.StringIO(), width=120, highlight=False)


@pytest.fixture
def settings() -> Settings:
    return Settings(no_retry=True)


@pytest.fixture
def env(settings: Settings, tmp_path: Path) -> Environment:
    return Environment(settings=settings, home=tmp_path, system="linux", sudo="/usr/bin/sudo")


@pytest.fixture
def terminal() -> Terminal:
    return Terminal(quiet_console(), set_title=False, display_time=False)
