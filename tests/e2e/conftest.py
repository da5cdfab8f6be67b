"""Session-wide mesh environment for the live end-to-end tests."""

from typing import Iterator

import pytest

from learner_e2e.common.paths import paths
from learner_e2e.context import RunContext
from learner_e2e.environment import MeshEnvironment
from learner_e2e.settings import HarnessSettings


@pytest.fixture(scope="session")
def mesh_environment(harness_settings: HarnessSettings) -> MeshEnvironment:
    """Environment provisioning, installing the mesh only on fresh kind clusters."""
    if harness_settings.kubeconfig is None:
        missing = paths.validate()
        if missing:
            pytest.skip(f"Dependency learner build not found: {missing}")
    return MeshEnvironment(
        settings=harness_settings,
        install_mesh=harness_settings.kubeconfig is None,
    )


@pytest.fixture(scope="session")
def mesh_ctx(mesh_environment: MeshEnvironment) -> Iterator[RunContext]:
    """Run context of a provisioned environment, finished after the session."""
    ctx = mesh_environment.setup(RunContext.background())
    yield ctx
    mesh_environment.finish(ctx)
