"""Verification probe: run a request inside a live workload and check its output.

The command output follows the shape of ``curl -I``: the first line is a
status line, every following non-empty line is a ``name: value`` header.
"""

import logging
import re
from typing import Any, Dict, List, Optional

from learner_e2e.context import RunContext
from learner_e2e.errors import NoInstanceError
from learner_e2e.kube.conditions import pod_running
from learner_e2e.models import AssertionOutcome, DependencyMarker, ProbeExpectation, ProbeResult

logger = logging.getLogger(__name__)

STATUS_LINE = re.compile(r"^HTTP/\d(?:\.\d)?\s+(\d{3})\b")


def parse_headers(lines: List[str]) -> Dict[str, List[str]]:
    """Parse header lines into a multi-valued map keyed by lower-cased name."""
    headers: Dict[str, List[str]] = {}
    for line in lines:
        name, sep, value = line.partition(":")
        if not sep or not name.strip():
            continue
        headers.setdefault(name.strip().lower(), []).append(value.strip())
    return headers


def parse_probe_output(
    stdout: bytes,
    stderr: bytes = b"",
    expectation: Optional[ProbeExpectation] = None,
    pod: Optional[str] = None,
) -> ProbeResult:
    """Parse captured output and evaluate every assertion of ``expectation``.

    Assertions are independent: a failed status check does not prevent the
    marker checks from being evaluated and reported.
    """
    expectation = expectation or ProbeExpectation()
    text = stdout.decode("utf-8", errors="replace")
    lines = [line.rstrip("\r") for line in text.split("\n")]

    status_line = lines[0] if lines and lines[0] else None
    status_code = None
    if status_line:
        match = STATUS_LINE.match(status_line)
        if match:
            status_code = int(match.group(1))
    headers = parse_headers([line for line in lines[1:] if line])

    assertions = [
        AssertionOutcome(
            name="status",
            expected=expectation.status_code,
            observed=status_line,
            passed=bool(status_line) and expectation.status_code in status_line,
        )
    ]

    for marker in expectation.markers:
        observed = headers.get(marker.header.lower(), [])
        assertions.append(
            AssertionOutcome(
                name=f"marker:{marker.header}",
                expected=marker.value,
                observed=", ".join(observed) if observed else None,
                passed=marker in [DependencyMarker.parse(marker.header, v) for v in observed],
            )
        )

    for substring in expectation.substrings:
        assertions.append(
            AssertionOutcome(
                name=f"contains:{substring}",
                expected=substring,
                passed=substring in text,
            )
        )

    return ProbeResult(
        stdout=stdout,
        stderr=stderr,
        pod=pod,
        status_line=status_line,
        status_code=status_code,
        headers=headers,
        assertions=assertions,
    )


def pick_instance(pods: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Pick the live pod with the lexicographically smallest name.

    Sorting by name keeps the choice stable across repeated listings.
    """
    live = sorted(
        (p for p in pods if pod_running(p)),
        key=lambda p: (p.get("metadata") or {}).get("name", ""),
    )
    return live[0] if live else None


class VerificationProbe:
    """Selects a workload instance, executes a command in it and checks the output."""

    def __init__(self, client: Any, exec_timeout: Optional[float] = None):
        self.client = client
        self.exec_timeout = exec_timeout

    def probe(
        self,
        ctx: RunContext,
        namespace: str,
        selector: str,
        container: str,
        command: List[str],
        expectation: Optional[ProbeExpectation] = None,
    ) -> ProbeResult:
        """Run ``command`` in the first live pod matching ``selector``.

        Raises NoInstanceError, NotRunningError, ExecError or
        RunCancelledError when the command cannot be executed. Assertion
        failures are never raised here; they are carried by the result.
        """
        pods = self.client.list_pods(namespace, label_selector=selector)
        pod = pick_instance(pods)
        if pod is None:
            raise NoInstanceError(f"no running pod matches {selector!r} in {namespace}")

        pod_name = pod["metadata"]["name"]
        logger.info(f"Probing from {namespace}/{pod_name}: {' '.join(command)}")
        stdout, stderr = self.client.exec_in(
            ctx, namespace, pod_name, container, command, timeout=self.exec_timeout
        )
        logger.info(f"Got response:\n{stdout.decode('utf-8', errors='replace')}")

        result = parse_probe_output(stdout, stderr, expectation, pod=pod_name)
        for failure in result.failures:
            logger.error(
                f"Probe assertion {failure.name} failed: expected {failure.expected!r}, "
                f"observed {failure.observed!r}"
            )
        return result
