# fedora-setup/fedora_setup/engine.py

"""
Step sequencing for a provisioning run.

A Step is a named unit of work with three hooks, evaluated in this order:

    applies_to(facts)   -> False: NOT_APPLICABLE, nothing is logged to the console
    is_satisfied(ctx)   -> True:  SKIPPED ("already done"), action not run
    action(ctx)         -> StepResult

The Sequencer runs steps strictly in declaration order, one at a time, and
never lets an exception from a step reach the next one. Only two results stop
a run: FAILED_FATAL (exit 1) and HALTED, the reboot gate (exit 0).
"""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from fedora_setup import console_output as con
from fedora_setup.config import AppPaths
from fedora_setup.environment import EnvironmentFacts
from fedora_setup.fetch import HttpFetcher
from fedora_setup.logger_utils import RunLog
from fedora_setup.package_manager import Dnf, Flatpak
from fedora_setup.settings_store import GSettings
from fedora_setup.system_utils import Runner


class Phase(IntEnum):
    UPDATE_AND_GATE = 1
    DETECTION = 2
    SETUP = 3
    OPTIMIZATION = 4
    REPOSITORIES = 5
    PACKAGES = 6
    THIRD_PARTY = 7
    FINALIZATION = 8

    @property
    def title(self) -> str:
        return self.name.replace("_", " ").title()


class Outcome(Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    NOT_APPLICABLE = "not applicable"
    FAILED_RECOVERABLE = "failed"
    FAILED_FATAL = "fatal"
    HALTED = "halted"


@dataclass(frozen=True)
class StepResult:
    outcome: Outcome
    message: str = ""
    details: Tuple[str, ...] = ()

    @classmethod
    def ok(cls, message: str = "") -> "StepResult":
        return cls(Outcome.SUCCEEDED, message)

    @classmethod
    def unchanged(cls, message: str = "") -> "StepResult":
        """Success with nothing left to do; recorded as SKIPPED."""
        return cls(Outcome.SKIPPED, message)

    @classmethod
    def failed(cls, message: str, details: Iterable[str] = ()) -> "StepResult":
        return cls(Outcome.FAILED_RECOVERABLE, message, tuple(details))

    @classmethod
    def fatal(cls, message: str) -> "StepResult":
        return cls(Outcome.FAILED_FATAL, message)

    @classmethod
    def halt(cls, message: str, details: Iterable[str] = ()) -> "StepResult":
        return cls(Outcome.HALTED, message, tuple(details))


@dataclass
class StepContext:
    """Everything a step may use. `facts` is None only during the update phase."""
    config: Dict[str, Any]
    paths: AppPaths
    log: RunLog
    runner: Runner
    dnf: Dnf
    flatpak: Flatpak
    gsettings: GSettings
    fetcher: HttpFetcher
    user: str
    facts: Optional[EnvironmentFacts] = None

    def with_facts(self, facts: Optional[EnvironmentFacts]) -> "StepContext":
        return dataclasses.replace(self, facts=facts)


Action = Callable[[StepContext], StepResult]
Predicate = Callable[[StepContext], bool]
Applicability = Callable[[EnvironmentFacts], bool]


@dataclass(frozen=True)
class Step:
    name: str
    phase: Phase
    action: Action
    description: str = ""
    is_satisfied: Optional[Predicate] = None
    applies_to: Optional[Applicability] = None
    # The reboot gate: halts the run when facts report a pending reboot.
    gate: bool = False

    @property
    def title(self) -> str:
        return self.description or self.name.replace("_", " ").capitalize()


@dataclass(frozen=True)
class StepRecord:
    name: str
    phase: Phase
    outcome: Outcome
    message: str = ""


@dataclass
class RunSummary:
    records: List[StepRecord] = field(default_factory=list)
    halted_for_reboot: bool = False
    fatal: bool = False

    def names(self, outcome: Outcome) -> List[str]:
        return [r.name for r in self.records if r.outcome is outcome]

    @property
    def succeeded(self) -> List[str]:
        return self.names(Outcome.SUCCEEDED)

    @property
    def skipped(self) -> List[str]:
        return self.names(Outcome.SKIPPED)

    @property
    def not_applicable(self) -> List[str]:
        return self.names(Outcome.NOT_APPLICABLE)

    @property
    def failed(self) -> List[str]:
        return self.names(Outcome.FAILED_RECOVERABLE) + self.names(Outcome.FAILED_FATAL)

    @property
    def executed(self) -> List[str]:
        """Steps whose action actually ran."""
        ran = (Outcome.SUCCEEDED, Outcome.FAILED_RECOVERABLE, Outcome.FAILED_FATAL, Outcome.HALTED)
        return [r.name for r in self.records if r.outcome in ran]

    @property
    def stopped(self) -> bool:
        return self.halted_for_reboot or self.fatal

    @property
    def exit_code(self) -> int:
        # Recoverable failures never change the exit code.
        return 1 if self.fatal else 0

    def extend(self, other: "RunSummary") -> "RunSummary":
        self.records.extend(other.records)
        self.halted_for_reboot = self.halted_for_reboot or other.halted_for_reboot
        self.fatal = self.fatal or other.fatal
        return self


class PlanError(ValueError):
    """The step list itself is malformed (duplicate names, phases out of order)."""


def validate_plan(steps: Sequence[Step]) -> None:
    seen = set()
    previous: Optional[Step] = None
    for step in steps:
        if step.name in seen:
            raise PlanError(f"Duplicate step name '{step.name}'.")
        seen.add(step.name)
        if previous is not None and step.phase < previous.phase:
            raise PlanError(
                f"Step '{step.name}' ({step.phase.title}) is declared after "
                f"'{previous.name}' ({previous.phase.title})."
            )
        previous = step


class Sequencer:
    """Runs an ordered list of steps against one StepContext."""

    def __init__(self, context: StepContext):
        self.context = context
        self.log = context.log

    def run(self, steps: Sequence[Step], facts: Optional[EnvironmentFacts]) -> RunSummary:
        validate_plan(steps)
        if facts is None and any(step.applies_to is not None or step.gate for step in steps):
            raise PlanError("Environment-conditional steps and the reboot gate need EnvironmentFacts.")

        ctx = self.context.with_facts(facts)
        summary = RunSummary()

        for step in steps:
            record = self._run_step(step, ctx)
            summary.records.append(record)
            if record.outcome is Outcome.HALTED:
                summary.halted_for_reboot = True
                break
            if record.outcome is Outcome.FAILED_FATAL:
                summary.fatal = True
                break
        return summary

    def _run_step(self, step: Step, ctx: StepContext) -> StepRecord:
        if step.applies_to is not None and ctx.facts is not None and not step.applies_to(ctx.facts):
            self.log.debug(f"Step '{step.name}' not applicable (desktop: {ctx.facts.desktop.value}).")
            return StepRecord(step.name, step.phase, Outcome.NOT_APPLICABLE)

        self.log.section(step.title)

        if step.gate and ctx.facts.reboot_required:
            result = StepResult.halt("System reboot required. Halting until the next run.", ctx.facts.reboot_reasons)
            self._report(step, result)
            return StepRecord(step.name, step.phase, result.outcome, result.message)

        if step.is_satisfied is not None and self._satisfied(step, ctx):
            self.log.success(f"{step.title}: already done")
            return StepRecord(step.name, step.phase, Outcome.SKIPPED, "already done")

        try:
            result = step.action(ctx)
        except Exception as e:
            self.log.error(f"{step.title} failed unexpectedly: {e} (continuing anyway)", exc_info=True)
            return StepRecord(step.name, step.phase, Outcome.FAILED_RECOVERABLE, str(e))

        self._report(step, result)
        return StepRecord(step.name, step.phase, result.outcome, result.message)

    def _satisfied(self, step: Step, ctx: StepContext) -> bool:
        try:
            return bool(step.is_satisfied(ctx))
        except Exception as e:
            self.log.warning(f"Could not check whether '{step.name}' is already done: {e}. Running it.")
            return False

    def _report(self, step: Step, result: StepResult) -> None:
        message = result.message or step.title
        if result.outcome is Outcome.SUCCEEDED:
            self.log.success(message)
        elif result.outcome is Outcome.SKIPPED:
            self.log.success(result.message or f"{step.title}: already up to date")
        elif result.outcome is Outcome.FAILED_RECOVERABLE:
            self.log.error(f"{message} (continuing anyway)")
            for detail in result.details:
                self.log.error(f"  - {detail}")
        elif result.outcome is Outcome.FAILED_FATAL:
            self.log.critical(message)
        elif result.outcome is Outcome.HALTED:
            con.print_reboot_banner(list(result.details))
            self.log.critical(message)
            for detail in result.details:
                self.log.debug(f"reboot reason: {detail}")
