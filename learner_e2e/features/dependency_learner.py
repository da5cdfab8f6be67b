"""The "determine dependency" feature.

A client in one generated namespace calls a server in another. The call is
routed through the gateway running the dependency-learner module, which must
answer with a header naming the client's identity and the upstream it
resolved. Teardown removes every object the feature created.
"""

from typing import Optional

from learner_e2e import config
from learner_e2e.context import RunContext
from learner_e2e.environment import CLIENT
from learner_e2e.lifecycle import Feature, Step, TeardownLedger, TopologyApplier
from learner_e2e.models import ProbeExpectation, RunParameters
from learner_e2e.probe import VerificationProbe
from learner_e2e.settings import HarnessSettings, settings as default_settings
from learner_e2e.state_store import DependencyStateStore
from learner_e2e.topology.builder import build_feature_topology
from learner_e2e.waiter import ReadinessWaiter

# Context keys
PARAMS = "params"
TOPOLOGY = "topology"
PROBE_RESULT = "probe_result"


def dependency_learner_feature(
    params: RunParameters,
    state_store: Optional[DependencyStateStore] = None,
    settings: Optional[HarnessSettings] = None,
) -> Feature:
    """Build the feature for one run.

    The topology is built here, before any phase runs, so teardown knows
    every identity even when setup fails halfway.
    """
    settings = settings or default_settings
    topology = build_feature_topology(params)

    def create_topology(ctx: RunContext, step: Step) -> RunContext:
        client = ctx[CLIENT]
        step.log(f"Creating {len(topology)} objects")
        applier = TopologyApplier(
            client,
            ReadinessWaiter(client, settings.poll_interval),
            wait_timeout=settings.wait_timeout,
        )
        result = applier.apply(ctx, topology)
        if not result.ok:
            step.fail_now(f"setup stopped at {result.failed}: {type(result.error).__name__}: {result.error}")
        return ctx.derive(**{PARAMS: params, TOPOLOGY: topology})

    def check_response_headers(ctx: RunContext, step: Step) -> RunContext:
        probe = VerificationProbe(ctx[CLIENT], exec_timeout=settings.exec_timeout)
        result = probe.probe(
            ctx,
            params.client_namespace,
            f"app={params.client_name}",
            params.container_name,
            params.probe_command(),
            ProbeExpectation(status_code="200", markers=[params.expected_marker()]),
        )
        for failure in result.failures:
            step.error(f"{failure.name}: expected {failure.expected!r}, got {failure.observed!r}")
        return ctx.derive(**{PROBE_RESULT: result})

    def check_dependency_persisted(ctx: RunContext, step: Step) -> RunContext:
        if state_store is None:
            step.skip("no dependency state store configured")
        learned = state_store.learned_dependencies(params.client_identity)
        step.check(
            params.server_cluster in learned,
            f"{params.server_cluster} not recorded for {params.client_identity}: {sorted(learned)}",
        )
        return ctx

    def delete_topology(ctx: RunContext, step: Step) -> RunContext:
        client = ctx[CLIENT]
        ledger = TeardownLedger(
            client,
            ReadinessWaiter(client, settings.poll_interval),
            gone_timeout=settings.wait_timeout,
        )
        deleted = ledger.delete_all(ctx, topology.teardown_order())
        step.log(f"Deleted {len(deleted)} objects")
        return ctx

    return (
        Feature("determine dependency")
        .with_label("component", config.DEPENDENCY_LEARNER_COMPONENT_LABEL)
        .setup(create_topology, "create topology")
        .assess("send sample request and check headers", check_response_headers)
        .assess("check dependency state persisted", check_dependency_persisted)
        .teardown(delete_topology, "delete topology")
    )
