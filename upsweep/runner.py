# upsweep/runner.py
from __future__ import annotations

from enum import Enum
from typing import List, Optional
import logging

from . import interrupt
from .errors import SkipStep
from .executor import Executor
from .steps import Environment, Outcome, OutcomeKind, SkipReason, Step, actions_of
from .terminal import Terminal

log = logging.getLogger("upsweep.runner")


class StepState(str, Enum):
    PENDING = "pending"
    EVALUATING = "evaluating"
    RUNNING = "running"
    FAILED_ASK = "failed_ask"
    SKIPPED = "skipped"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    IGNORED = "ignored"


TERMINAL_STATES = (StepState.SKIPPED, StepState.SUCCEEDED, StepState.FAILED, StepState.IGNORED)


# -------------------- retry policies --------------------

class RetryPolicy:
    """Decides the FAILED_ASK transition: back to RUNNING (True) or FAILED."""
    interactive = False

    def should_retry(self, step: Step, reason: str, interrupted: bool) -> bool:
        raise NotImplementedError


class NeverRetry(RetryPolicy):
    def should_retry(self, step: Step, reason: str, interrupted: bool) -> bool:
        return False


class AskUser(RetryPolicy):
    interactive = True

    def __init__(self, terminal: Terminal):
        self.terminal = terminal

    def should_retry(self, step: Step, reason: str, interrupted: bool) -> bool:
        return self.terminal.ask_retry(step.name, interrupted)


def retry_policy(no_retry: bool, terminal: Terminal) -> RetryPolicy:
    if no_retry or not terminal.is_interactive():
        return NeverRetry()
    return AskUser(terminal)


# -------------------- runner --------------------

class StepRunner:
    """
    Pending -> Evaluating -> {Skipped | Running} -> {Succeeded | FailedAsk | Failed | Ignored}.
    FailedAsk loops back to Running for as long as the user asks for it.
    """

    def __init__(
        self,
        env: Environment,
        executor: Executor,
        retry: RetryPolicy,
        terminal: Optional[Terminal] = None,
    ):
        self.env = env
        self.executor = executor
        self.retry = retry
        self.terminal = terminal
        self.trace: List[StepState] = []

    def _evaluate(self, step: Step) -> Optional[Outcome]:
        if not self.env.settings.should_run(step.key, step.name):
            return Outcome.skipped(SkipReason.DISABLED)
        try:
            applies = step.descriptor.applies(self.env)
        except Exception as e:
            log.warning("Probing %s failed: %s: %s", step.name, type(e).__name__, e)
            applies = False
        if not applies:
            return Outcome.skipped(SkipReason.INAPPLICABLE)
        return None

    def _attempt(self, step: Step) -> Outcome:
        """One pass through RUNNING. Returns Succeeded, Failed or Skipped(pre-condition)."""
        if self.terminal is not None:
            self.terminal.separator(step.name)
        try:
            actions = actions_of(step.descriptor.action(self.env))
        except SkipStep as e:
            return Outcome.skipped(SkipReason.PRECONDITION, e.reason)
        except Exception as e:
            log.debug("Building actions for %s failed", step.name, exc_info=True)
            return Outcome.failed(f"{type(e).__name__}: {e}")

        for action in actions:
            result = self.executor.execute(action)
            if not result.ok:
                return Outcome.failed(result.reason())
        return Outcome.succeeded()

    def run(self, step: Step) -> Outcome:
        log.debug("Step %r", step.name)
        self.trace = []
        state = StepState.PENDING
        outcome: Optional[Outcome] = None

        while True:
            self.trace.append(state)
            if state == StepState.PENDING:
                state = StepState.EVALUATING

            elif state == StepState.EVALUATING:
                outcome = self._evaluate(step)
                state = StepState.SKIPPED if outcome else StepState.RUNNING

            elif state == StepState.RUNNING:
                outcome = self._attempt(step)
                if outcome.kind == OutcomeKind.SUCCEEDED:
                    state = StepState.SUCCEEDED
                elif outcome.skip is not None:
                    state = StepState.SKIPPED
                elif self.env.settings.should_ignore_failure(step.key, step.name):
                    outcome = Outcome.ignored(outcome.reason)
                    state = StepState.IGNORED
                elif self.retry.interactive:
                    state = StepState.FAILED_ASK
                else:
                    state = StepState.FAILED

            elif state == StepState.FAILED_ASK:
                was_interrupted = interrupt.interrupted()
                if was_interrupted:
                    interrupt.unset_interrupted()
                if self.retry.should_retry(step, outcome.reason, was_interrupted):
                    state = StepState.RUNNING
                else:
                    state = StepState.FAILED

            elif state in TERMINAL_STATES:
                # exactly one outcome leaves the runner
                return outcome
