"""Run context threaded through Setup, Assess and Teardown.

A RunContext carries a cancellation token, an optional deadline and a
read-only mapping of shared values (cluster handle, run parameters, the
materialized topology). It is never mutated; phases derive new contexts.
Derived contexts share their parent's cancellation token, so cancelling the
root cancels everything that was derived from it.
"""

import threading
import time
from types import MappingProxyType
from typing import Any, Mapping, Optional

from learner_e2e.errors import RunCancelledError


class RunContext:
    """Immutable carrier of cancellation and shared run values."""

    __slots__ = ("_token", "_deadline", "_values")

    def __init__(
        self,
        values: Optional[Mapping[str, Any]] = None,
        token: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ):
        self._token = token or threading.Event()
        self._deadline = deadline
        self._values = MappingProxyType(dict(values or {}))

    @classmethod
    def background(cls) -> "RunContext":
        """A fresh root context with no values and no deadline."""
        return cls()

    @property
    def values(self) -> Mapping[str, Any]:
        return self._values

    @property
    def deadline(self) -> Optional[float]:
        """Monotonic-clock deadline, if any."""
        return self._deadline

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def derive(self, **values: Any) -> "RunContext":
        """Return a child context with ``values`` layered over this one's."""
        merged = dict(self._values)
        merged.update(values)
        return RunContext(merged, token=self._token, deadline=self._deadline)

    def with_timeout(self, seconds: float) -> "RunContext":
        """Return a child context whose deadline is at most ``seconds`` away."""
        deadline = time.monotonic() + seconds
        if self._deadline is not None:
            deadline = min(deadline, self._deadline)
        return RunContext(self._values, token=self._token, deadline=deadline)

    def cancel(self) -> None:
        """Cancel this context and every context sharing its token."""
        self._token.set()

    @property
    def cancelled(self) -> bool:
        return self._token.is_set()

    @property
    def expired(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, or None without one."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelledError("run context cancelled")

    def sleep(self, seconds: float) -> bool:
        """Wait up to ``seconds``; return True if woken by cancellation."""
        return self._token.wait(max(0.0, seconds))

    def __repr__(self) -> str:
        return f"RunContext(keys={sorted(self._values)}, cancelled={self.cancelled})"
