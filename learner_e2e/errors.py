"""Error taxonomy for the end-to-end harness."""

from typing import Any, Dict, List, Optional, Sequence


class HarnessError(Exception):
    """Base class for every error raised by the harness."""


class ValidationError(HarnessError, ValueError):
    """A resource spec or topology is structurally invalid."""


class ConflictError(HarnessError):
    """An object with the same identity already exists."""


class UnavailableError(HarnessError):
    """The control plane could not be reached."""


class WaitTimeoutError(HarnessError, TimeoutError):
    """A readiness condition was not reached in time."""

    def __init__(self, message: str, last_state: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.last_state = last_state


class RunCancelledError(HarnessError):
    """The run context was cancelled while an operation was in flight."""


class NoInstanceError(HarnessError):
    """No live workload instance matched the probe selector."""


class NotRunningError(HarnessError):
    """The pod targeted by an exec does not exist."""


class ExecError(HarnessError):
    """A command executed inside a workload failed."""

    def __init__(
        self,
        message: str,
        stdout: bytes = b"",
        stderr: bytes = b"",
        exit_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code


class ProbeAssertionError(HarnessError, AssertionError):
    """Observed probe output did not match the expectation."""

    def __init__(self, message: str, failures: Sequence[str] = ()):
        super().__init__(message)
        self.failures = list(failures)


class TeardownError(HarnessError):
    """One or more objects could not be deleted during teardown.

    Carries every per-object failure so a single missing object never hides
    the others.
    """

    def __init__(self, failures: List[tuple]):
        self.failures = failures
        lines = [f"{target}: {error}" for target, error in failures]
        super().__init__(
            f"{len(failures)} teardown step(s) failed:\n  " + "\n  ".join(lines)
        )


class CollaboratorError(HarnessError):
    """An external collaborator (kind, helm) call failed."""

    def __init__(self, message: str, command: Sequence[str] = (), stderr: str = ""):
        super().__init__(message)
        self.command = list(command)
        self.stderr = stderr

    def __str__(self) -> str:
        base = super().__str__()
        if self.stderr:
            return f"{base}: {self.stderr.strip()}"
        return base
