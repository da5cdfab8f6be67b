"""Pytest configuration and shared fixtures for the dependency-learner harness tests."""

import os
from pathlib import Path
from typing import Any, Dict, List
from unittest.mock import MagicMock

import pytest

from learner_e2e.context import RunContext
from learner_e2e.environment import CLIENT
from learner_e2e.models import RunParameters
from learner_e2e.settings import HarnessSettings
from tests.fakes import FakeObjectClient, make_pod


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add custom command-line options."""
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run end-to-end tests against a real cluster (kind is created unless --kubeconfig is given)",
    )
    parser.addoption(
        "--kubeconfig",
        action="store",
        default=os.getenv("LEARNER_E2E_KUBECONFIG"),
        help="Path to the kubeconfig of an existing cluster with the mesh installed",
    )
    parser.addoption(
        "--keep-cluster",
        action="store_true",
        default=False,
        help="Do not destroy the kind cluster after the run",
    )


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Tests that need no infrastructure")
    config.addinivalue_line("markers", "e2e: End-to-end tests requiring a live cluster (enable with --live)")
    config.addinivalue_line("markers", "slow: Marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line(
        "markers", "integration: Integration tests requiring full infrastructure"
    )


def pytest_collection_modifyitems(config: pytest.Config, items: List[pytest.Item]) -> None:
    """Skip end-to-end tests unless --live is given."""
    if config.getoption("--live"):
        return
    skip_live = pytest.mark.skip(reason="needs a live cluster (run with --live)")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture(scope="session")
def harness_settings(request: pytest.FixtureRequest) -> HarnessSettings:
    """Harness settings honouring the command-line overrides."""
    kubeconfig = request.config.getoption("--kubeconfig")
    return HarnessSettings(
        kubeconfig=Path(kubeconfig).expanduser() if kubeconfig else None,
        keep_cluster=bool(request.config.getoption("--keep-cluster")),
    )


@pytest.fixture
def fast_settings(tmp_path: Path) -> HarnessSettings:
    """Settings with short timings and generated files under tmp_path."""
    return HarnessSettings(
        kubeconfig=None,
        kind_config=tmp_path / "kind.yaml",
        wasm_build_dir=tmp_path,
        wait_timeout=1.0,
        poll_interval=0.01,
        exec_timeout=5.0,
    )


@pytest.fixture
def run_params() -> RunParameters:
    """Run parameters with fixed names, so assertions can spell them out."""
    return RunParameters(
        client_namespace="client-0a1b2c3d",
        server_namespace="server-4e5f6a7b",
        fallback_name="fallback-8c9d0e",
    )


@pytest.fixture
def fake_client() -> FakeObjectClient:
    """In-memory remote object client."""
    return FakeObjectClient()


@pytest.fixture
def run_ctx(fake_client: FakeObjectClient) -> RunContext:
    """Root context carrying the fake client the way the environment would."""
    return RunContext.background().derive(**{CLIENT: fake_client})


@pytest.fixture
def live_client_pods(fake_client: FakeObjectClient, run_params: RunParameters) -> List[Dict[str, Any]]:
    """A running client pod plus a terminating one the probe must ignore."""
    pods = [
        make_pod("client-7f9c-zzzz", run_params.client_namespace, labels={"app": "client"}),
        make_pod("client-7f9c-aaaa", run_params.client_namespace, labels={"app": "client"}, deleting=True),
        make_pod("client-7f9c-bbbb", run_params.client_namespace, labels={"app": "client"}),
    ]
    fake_client.pods[run_params.client_namespace] = pods
    return pods


def _create_mock_dynamic_client() -> Dict[str, Any]:
    """Mock dynamic client whose every kind resolves to the same resource mock."""
    resource = MagicMock()
    dynamic_client = MagicMock()
    dynamic_client.resources.get.return_value = resource
    return {"dynamic": dynamic_client, "resource": resource, "core": MagicMock()}


@pytest.fixture
def mock_dynamic() -> Dict[str, Any]:
    """Mocks for building a RemoteObjectClient without a cluster."""
    return _create_mock_dynamic_client()
