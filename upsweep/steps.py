# upsweep/steps.py
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Sequence, Union
import platform
import shutil
from pathlib import Path

from .config import Settings, StepOptions
from .executor import Action

RunnableAction = Union[Action, Sequence[Action]]


# -------------------- environment --------------------

@dataclass(frozen=True)
class Environment:
    """
    Everything a descriptor may look at. Passed explicitly to `applies`
    and `action`; descriptors do not read process-wide state.
    """
    settings: Settings
    home: Path
    system: str                      # "linux" | "darwin" | "windows" | ...
    sudo: Optional[str] = None

    @property
    def options(self) -> StepOptions:
        return self.settings.steps

    @property
    def dry_run(self) -> bool:
        return self.settings.dry_run

    @property
    def yes(self) -> bool:
        return self.settings.assume_yes

    @property
    def cleanup(self) -> bool:
        return self.settings.cleanup

    def which(self, binary: str) -> Optional[str]:
        return shutil.which(binary)


def find_sudo() -> Optional[str]:
    for name in ("doas", "sudo", "gsudo", "pkexec"):
        path = shutil.which(name)
        if path:
            return path
    return None


def current_environment(settings: Settings) -> Environment:
    return Environment(
        settings=settings,
        home=Path.home(),
        system=platform.system().lower(),
        sudo=find_sudo(),
    )


# -------------------- descriptors --------------------

class StepDescriptor:
    """
    Detection + command logic for one tool family.
    `applies` must be cheap and side-effect free; `action` may raise
    SkipStep when a pre-condition is found unmet while building the action.
    """
    key: str = ""

    def applies(self, env: Environment) -> bool:
        raise NotImplementedError

    def action(self, env: Environment) -> RunnableAction:
        raise NotImplementedError


@dataclass(frozen=True)
class Step:
    name: str
    key: str
    descriptor: StepDescriptor = field(compare=False)

    def __str__(self) -> str:
        return self.name


def actions_of(runnable: RunnableAction) -> list[Action]:
    if isinstance(runnable, Action):
        return [runnable]
    return list(runnable)


# -------------------- outcomes --------------------

class OutcomeKind(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"
    IGNORED = "ignored"


class SkipReason(str, Enum):
    INAPPLICABLE = "inapplicable"
    DISABLED = "disabled"
    PRECONDITION = "pre-condition not met"


@dataclass(frozen=True)
class Outcome:
    kind: OutcomeKind
    reason: str = ""
    skip: Optional[SkipReason] = None

    @classmethod
    def succeeded(cls) -> "Outcome":
        return cls(OutcomeKind.SUCCEEDED)

    @classmethod
    def failed(cls, reason: str) -> "Outcome":
        return cls(OutcomeKind.FAILED, reason)

    @classmethod
    def ignored(cls, reason: str = "") -> "Outcome":
        return cls(OutcomeKind.IGNORED, reason)

    @classmethod
    def skipped(cls, skip: SkipReason, reason: str = "") -> "Outcome":
        return cls(OutcomeKind.SKIPPED, reason or skip.value, skip)

    @property
    def is_failure(self) -> bool:
        return self.kind == OutcomeKind.FAILED

    @property
    def considered(self) -> bool:
        """False for steps filtered out before consideration; those are never recorded."""
        return self.skip not in (SkipReason.INAPPLICABLE, SkipReason.DISABLED)
