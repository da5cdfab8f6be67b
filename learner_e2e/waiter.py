"""Readiness waiter: poll a condition on a remote object until it holds."""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from learner_e2e.context import RunContext
from learner_e2e.errors import RunCancelledError, UnavailableError, WaitTimeoutError
from learner_e2e.kube.conditions import Predicate, condition_match
from learner_e2e.models import ResourceRef, ResourceSpec
from learner_e2e.settings import settings

logger = logging.getLogger(__name__)


class WaitState(str, Enum):
    """Waiter states. POLLING is initial, all others are terminal."""

    POLLING = "polling"
    SATISFIED = "satisfied"
    TIMED_OUT = "timed-out"
    CANCELLED = "cancelled"
    TRANSPORT_FAILED = "transport-failed"


@dataclass(frozen=True)
class WaitCondition:
    """A predicate over one object's observed state, bounded by a timeout."""

    ref: ResourceRef
    predicate: Predicate
    timeout: float
    description: str = "condition"

    def __str__(self) -> str:
        return f"{self.description} on {self.ref}"


@dataclass(frozen=True)
class WaitOutcome:
    """How a successful wait ended."""

    state: WaitState
    attempts: int
    elapsed: float
    last_state: Optional[Dict[str, Any]] = None


def condition_for(spec: ResourceSpec, timeout: float) -> WaitCondition:
    """Build the wait condition declared by ``spec.readiness``."""
    if spec.readiness is None:
        raise ValueError(f"{spec.ref} declares no readiness check")
    check = spec.readiness
    return WaitCondition(
        ref=spec.ref,
        predicate=condition_match(check.condition_type, check.status),
        timeout=timeout,
        description=f"{check.condition_type}={check.status}",
    )


class ReadinessWaiter:
    """Polls a remote object until a condition holds.

    Args:
        client: Anything with ``get(ref) -> Optional[dict]``.
        interval: Seconds between polls.
        max_transport_failures: Consecutive UnavailableErrors tolerated
            before the wait fails with UnavailableError.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        client: Any,
        interval: Optional[float] = None,
        max_transport_failures: int = 3,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client = client
        self.interval = interval if interval is not None else settings.poll_interval
        self.max_transport_failures = max_transport_failures
        self.clock = clock

    def wait_for(self, ctx: RunContext, condition: WaitCondition) -> WaitOutcome:
        """Block until ``condition`` holds.

        Every error raised here carries ``outcome``, the terminal WaitOutcome
        (timed-out, cancelled or transport-failed) of the wait.

        Raises:
            WaitTimeoutError: the timeout (or the context deadline) elapsed;
                carries the last observed state.
            RunCancelledError: ``ctx`` was cancelled.
            UnavailableError: the API server kept failing.
        """
        start = self.clock()
        deadline = start + condition.timeout
        remaining = ctx.remaining()
        if remaining is not None:
            deadline = min(deadline, start + remaining)

        last_state: Optional[Dict[str, Any]] = None
        attempts = 0
        failures = 0

        def terminal(error: Exception, state: WaitState) -> Exception:
            error.outcome = WaitOutcome(state, attempts, self.clock() - start, last_state)
            return error

        while True:
            if ctx.cancelled:
                raise terminal(RunCancelledError(f"wait for {condition} cancelled"), WaitState.CANCELLED)

            attempts += 1
            try:
                observed = self.client.get(condition.ref)
            except UnavailableError as e:
                failures += 1
                logger.warning(f"Polling {condition.ref} failed ({failures}/{self.max_transport_failures}): {e}")
                if failures >= self.max_transport_failures:
                    raise terminal(
                        UnavailableError(f"wait for {condition} gave up after {failures} transport failures"),
                        WaitState.TRANSPORT_FAILED,
                    ) from e
            else:
                failures = 0
                last_state = observed
                if condition.predicate(observed):
                    elapsed = self.clock() - start
                    logger.info(f"{condition} satisfied after {attempts} poll(s), {elapsed:.1f}s")
                    return WaitOutcome(WaitState.SATISFIED, attempts, elapsed, observed)

            now = self.clock()
            if now >= deadline:
                raise terminal(
                    WaitTimeoutError(f"{condition} not satisfied within {condition.timeout}s", last_state),
                    WaitState.TIMED_OUT,
                )

            if ctx.sleep(min(self.interval, deadline - now)):
                raise terminal(RunCancelledError(f"wait for {condition} cancelled"), WaitState.CANCELLED)

    def wait_for_spec(self, ctx: RunContext, spec: ResourceSpec, timeout: Optional[float] = None) -> WaitOutcome:
        """Wait for the readiness check ``spec`` declares."""
        return self.wait_for(ctx, condition_for(spec, timeout or settings.wait_timeout))
