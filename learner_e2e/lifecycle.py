"""Lifecycle controller: Setup -> Assess(1..N) -> Teardown.

A Feature is a named set of phase functions. Each function receives the
current RunContext and a Step handle, and may return a derived context for
the phases that follow. The controller guarantees:

- a failed setup step stops the remaining setup steps and skips every
  assessment, but teardown still runs;
- a failed assessment is recorded (optionally skipping the assessments after
  it) and never prevents teardown;
- every teardown step runs, whatever happened before.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from tabulate import tabulate

from learner_e2e.context import RunContext
from learner_e2e.errors import ConflictError, HarnessError, TeardownError
from learner_e2e.kube.conditions import absent
from learner_e2e.models import ResourceRef
from learner_e2e.topology.graph import Topology
from learner_e2e.waiter import ReadinessWaiter, WaitCondition

logger = logging.getLogger(__name__)


class Phase(str, Enum):
    """Lifecycle phases, in execution order."""

    SETUP = "setup"
    ASSESS = "assess"
    TEARDOWN = "teardown"


class StepStatus(str, Enum):
    """Outcome of a single phase function."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOT_RUN = "not-run"


class StepSkipped(Exception):
    """Raised by Step.skip to end a step early without failing it."""


class StepFailed(Exception):
    """Raised by Step.fail_now to end a step early after recording a failure."""


class Step:
    """Handle a phase function uses to report on itself."""

    def __init__(self, phase: Phase, name: str):
        self.phase = phase
        self.name = name
        self.errors: List[str] = []

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    def log(self, message: str) -> None:
        logger.info(f"[{self.phase.value}:{self.name}] {message}")

    def error(self, message: str) -> None:
        """Record a failure and keep going."""
        logger.error(f"[{self.phase.value}:{self.name}] {message}")
        self.errors.append(message)

    def check(self, condition: bool, message: str) -> bool:
        """Record ``message`` as a failure unless ``condition`` holds."""
        if not condition:
            self.error(message)
        return condition

    def fail_now(self, message: str) -> None:
        """Record a failure and stop the step."""
        self.error(message)
        raise StepFailed(message)

    def skip(self, reason: str) -> None:
        """Stop the step and mark it skipped."""
        raise StepSkipped(reason)


PhaseFunc = Callable[[RunContext, Step], Optional[RunContext]]


@dataclass
class StepReport:
    """What happened to one phase function."""

    phase: Phase
    name: str
    status: StepStatus
    errors: List[str] = field(default_factory=list)
    detail: str = ""
    duration: float = 0.0


class Feature:
    """Named set of setup, assess and teardown functions."""

    def __init__(self, name: str):
        self.name = name
        self.labels: Dict[str, str] = {}
        self.setups: List[Tuple[str, PhaseFunc]] = []
        self.assessments: List[Tuple[str, PhaseFunc]] = []
        self.teardowns: List[Tuple[str, PhaseFunc]] = []

    def with_label(self, key: str, value: str) -> "Feature":
        self.labels[key] = value
        return self

    def setup(self, fn: PhaseFunc, name: Optional[str] = None) -> "Feature":
        self.setups.append((name or fn.__name__, fn))
        return self

    def assess(self, name: str, fn: PhaseFunc) -> "Feature":
        self.assessments.append((name, fn))
        return self

    def teardown(self, fn: PhaseFunc, name: Optional[str] = None) -> "Feature":
        self.teardowns.append((name or fn.__name__, fn))
        return self


@dataclass
class RunReport:
    """Outcome of every step of one feature run."""

    feature: str
    labels: Dict[str, str] = field(default_factory=dict)
    steps: List[StepReport] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.failed_steps

    @property
    def failed_steps(self) -> List[StepReport]:
        return [s for s in self.steps if s.status is StepStatus.FAILED]

    def steps_in(self, phase: Phase) -> List[StepReport]:
        return [s for s in self.steps if s.phase is phase]

    def step(self, name: str) -> Optional[StepReport]:
        return next((s for s in self.steps if s.name == name), None)

    def summary(self) -> str:
        rows = [
            [
                s.phase.value,
                s.name,
                s.status.value,
                f"{s.duration:.2f}s",
                "; ".join(s.errors) or s.detail,
            ]
            for s in self.steps
        ]
        table = tabulate(rows, headers=["Phase", "Step", "Status", "Duration", "Details"])
        verdict = "PASSED" if self.passed else "FAILED"
        return f"Feature '{self.feature}' {verdict}\n{table}"

    def raise_for_failures(self) -> None:
        """Raise AssertionError if any step failed, so the test is marked failed."""
        if not self.passed:
            raise AssertionError(self.summary())


class LifecycleController:
    """Runs a Feature's phases in order with guaranteed teardown.

    Args:
        fail_fast_assess: Skip the remaining assessments once one has failed;
            assessments read shared state that an earlier failure may have
            left invalid.
    """

    def __init__(self, fail_fast_assess: bool = True):
        self.fail_fast_assess = fail_fast_assess

    def run(self, feature: Feature, ctx: RunContext) -> RunReport:
        report = RunReport(feature=feature.name, labels=dict(feature.labels))
        current = ctx
        logger.info(f"Running feature '{feature.name}' {feature.labels}")

        try:
            setup_ok = True
            for name, fn in feature.setups:
                if not setup_ok:
                    report.steps.append(
                        StepReport(Phase.SETUP, name, StepStatus.NOT_RUN, detail="earlier setup failed")
                    )
                    continue
                step_report, current = self._run_step(Phase.SETUP, name, fn, current)
                report.steps.append(step_report)
                if step_report.status is StepStatus.FAILED:
                    setup_ok = False

            assess_ok = True
            for name, fn in feature.assessments:
                if not setup_ok:
                    report.steps.append(
                        StepReport(Phase.ASSESS, name, StepStatus.SKIPPED, detail="setup failed")
                    )
                    continue
                if not assess_ok and self.fail_fast_assess:
                    report.steps.append(
                        StepReport(
                            Phase.ASSESS, name, StepStatus.SKIPPED, detail="earlier assessment failed"
                        )
                    )
                    continue
                step_report, current = self._run_step(Phase.ASSESS, name, fn, current)
                report.steps.append(step_report)
                if step_report.status is StepStatus.FAILED:
                    assess_ok = False
        finally:
            for name, fn in feature.teardowns:
                step_report, current = self._run_step(Phase.TEARDOWN, name, fn, current)
                report.steps.append(step_report)

        if report.passed:
            logger.info(f"Feature '{feature.name}' passed")
        else:
            logger.error(report.summary())
        return report

    def _run_step(
        self, phase: Phase, name: str, fn: PhaseFunc, ctx: RunContext
    ) -> Tuple[StepReport, RunContext]:
        step = Step(phase, name)
        started = time.monotonic()
        result_ctx = ctx
        status = StepStatus.PASSED
        detail = ""

        try:
            returned = fn(ctx, step)
            if returned is not None:
                result_ctx = returned
        except StepSkipped as e:
            status = StepStatus.SKIPPED
            detail = str(e)
        except StepFailed:
            pass
        except HarnessError as e:
            step.error(f"{type(e).__name__}: {e}")
        except Exception as e:
            logger.error(f"Unexpected error in {phase.value} step '{name}'", exc_info=True)
            step.error(f"{type(e).__name__}: {e}")

        if step.failed:
            status = StepStatus.FAILED
        duration = time.monotonic() - started
        logger.info(f"{phase.value} '{name}' {status.value} in {duration:.2f}s")
        return StepReport(phase, name, status, list(step.errors), detail, duration), result_ctx


@dataclass
class ApplyResult:
    """Result accumulator for creating a topology."""

    created: List[ResourceRef] = field(default_factory=list)
    adopted: List[ResourceRef] = field(default_factory=list)
    failed: Optional[ResourceRef] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


class TopologyApplier:
    """Creates a topology in dependency order and waits for readiness.

    The pipeline stops at the first failure; what was created is recorded in
    the ApplyResult so teardown can account for it.

    Args:
        client: Remote object client.
        waiter: Readiness waiter used for specs that declare a readiness check.
        adopt_existing: Treat ConflictError as "already created by an
            earlier attempt with the same identity" instead of a failure.
        wait_timeout: Per-object readiness timeout.
    """

    def __init__(
        self,
        client: Any,
        waiter: ReadinessWaiter,
        adopt_existing: bool = False,
        wait_timeout: Optional[float] = None,
    ):
        self.client = client
        self.waiter = waiter
        self.adopt_existing = adopt_existing
        self.wait_timeout = wait_timeout

    def apply(self, ctx: RunContext, topology: Topology) -> ApplyResult:
        result = ApplyResult()
        current = None
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"Applying topology:\n{topology.to_yaml()}")
        try:
            self.client.register_kinds(topology.kinds())
            for spec in topology.creation_order():
                current = spec.ref
                ctx.raise_if_cancelled()
                try:
                    self.client.create(spec)
                    result.created.append(spec.ref)
                except ConflictError:
                    if not self.adopt_existing:
                        raise
                    logger.warning(f"{spec.ref} already exists; adopting it")
                    result.adopted.append(spec.ref)

            for spec in topology.readiness_targets():
                current = spec.ref
                self.waiter.wait_for_spec(ctx, spec, self.wait_timeout)
        except HarnessError as e:
            logger.error(f"Applying topology stopped at {current}: {e}")
            result.failed = current
            result.error = e
        return result


class TeardownLedger:
    """Deletes every object it is given, aggregating failures.

    One failed deletion never prevents the others from being attempted.

    Args:
        client: Remote object client.
        waiter: When given, teardown waits for each deleted object to be gone.
        gone_timeout: Timeout of each of those waits.
    """

    def __init__(
        self,
        client: Any,
        waiter: Optional[ReadinessWaiter] = None,
        gone_timeout: float = 120.0,
    ):
        self.client = client
        self.waiter = waiter
        self.gone_timeout = gone_timeout

    def delete_all(self, ctx: RunContext, refs: List[ResourceRef]) -> List[ResourceRef]:
        """Delete ``refs`` in order.

        Returns the refs that were actually deleted (absent ones are skipped).

        Raises:
            TeardownError: listing every ref whose deletion failed.
        """
        failures: List[Tuple[str, Exception]] = []
        deleted: List[ResourceRef] = []

        for ref in refs:
            try:
                if self.client.delete(ref):
                    deleted.append(ref)
            except HarnessError as e:
                logger.warning(f"Failed to delete {ref}: {e}")
                failures.append((str(ref), e))
            except Exception as e:
                logger.warning(f"Unexpected error deleting {ref}: {e}", exc_info=True)
                failures.append((str(ref), e))

        if self.waiter is not None:
            for ref in deleted:
                condition = WaitCondition(ref, absent(), self.gone_timeout, "deletion")
                try:
                    self.waiter.wait_for(ctx, condition)
                except HarnessError as e:
                    logger.warning(f"{ref} still present after teardown: {e}")
                    failures.append((str(ref), e))
                except Exception as e:
                    logger.warning(f"Unexpected error waiting for {ref} to go: {e}", exc_info=True)
                    failures.append((str(ref), e))

        if failures:
            raise TeardownError(failures)
        return deleted
