"""Environment-level setup and finish for a dependency-learner test session.

Setup creates (or reuses) a cluster, installs the mesh control plane and the
gateway that carries the dependency-learner module, and applies the
mesh-wide policies. Finish undoes all of it. Each step is a function from
RunContext to RunContext; a failing setup step triggers finish on whatever
was reached before the error is re-raised.
"""

import logging
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

from learner_e2e import config
from learner_e2e.collaborators.helm import HelmInstaller
from learner_e2e.collaborators.kind import ClusterHandle, KindCluster, write_cluster_config
from learner_e2e.common.paths import paths
from learner_e2e.context import RunContext
from learner_e2e.errors import ConflictError, HarnessError, TeardownError
from learner_e2e.kube.client import RemoteObjectClient
from learner_e2e.lifecycle import TeardownLedger, TopologyApplier
from learner_e2e.models import ResourceKind, ResourceSpec
from learner_e2e.settings import HarnessSettings, settings as default_settings
from learner_e2e.topology.builder import build_mesh_topology, random_name
from learner_e2e.waiter import ReadinessWaiter

logger = logging.getLogger(__name__)

EnvFunc = Callable[[RunContext], RunContext]

# Context keys
CLUSTER = "cluster"
KUBECONFIG = "kubeconfig"
CLIENT = "client"
MESH_NAMESPACE_CREATED = "mesh_namespace_created"
REPO_ADDED = "repo_added"


def gateway_values() -> dict:
    """Helm values for the gateway chart, in ``--set`` order."""
    return {
        "name": config.GATEWAY_NAME,
        "service.type": "ClusterIP",
        f"labels.{config.GATEWAY_SELECTOR_KEY}": config.GATEWAY_SELECTOR_VALUE,
        "volumes[0].name": config.DEPENDENCY_LEARNER_VOLUME_NAME,
        "volumes[0].hostPath.path": config.DEPENDENCY_LEARNER_HOST_PATH,
        "volumeMounts[0].name": config.DEPENDENCY_LEARNER_VOLUME_NAME,
        "volumeMounts[0].mountPath": config.DEPENDENCY_LEARNER_MOUNT_PATH,
        "imagePullPolicy": "IfNotPresent",
    }


class MeshEnvironment:
    """Provisions and tears down the cluster-wide part of a test session."""

    def __init__(
        self,
        settings: Optional[HarnessSettings] = None,
        cluster: Optional[KindCluster] = None,
        helm_factory: Callable[[Optional[Path]], HelmInstaller] = HelmInstaller,
        client_factory: Callable[[Optional[Path]], Any] = RemoteObjectClient.from_kubeconfig,
        install_mesh: bool = True,
    ):
        self.settings = settings or default_settings
        self.cluster = cluster or KindCluster()
        self.helm_factory = helm_factory
        self.client_factory = client_factory
        self.install_mesh = install_mesh

    @property
    def external_cluster(self) -> bool:
        return self.settings.kubeconfig is not None

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def setup_funcs(self) -> List[Tuple[str, EnvFunc]]:
        funcs: List[Tuple[str, EnvFunc]] = [
            ("create cluster", self.create_cluster),
            ("connect", self.connect),
            ("create mesh namespace", self.create_mesh_namespace),
        ]
        if not self.external_cluster:
            funcs.append(("load images", self.load_images))
        if self.install_mesh:
            funcs.append(("add chart repo", self.add_chart_repo))
            funcs.append(("install mesh", self.install_charts))
        funcs.append(("apply mesh policies", self.apply_mesh_policies))
        return funcs

    def setup(self, ctx: RunContext) -> RunContext:
        """Run every setup step; on failure, finish what was reached and re-raise."""
        for name, fn in self.setup_funcs():
            logger.info(f"Environment setup: {name}")
            try:
                ctx = fn(ctx)
            except Exception as e:
                logger.error(f"Environment setup '{name}' failed: {e}", exc_info=not isinstance(e, HarnessError))
                try:
                    self.finish(ctx)
                except TeardownError as teardown_error:
                    logger.error(f"Cleanup after failed setup was incomplete: {teardown_error}")
                raise
        return ctx

    def create_cluster(self, ctx: RunContext) -> RunContext:
        if self.external_cluster:
            return ctx.derive(**{KUBECONFIG: self.settings.kubeconfig})

        cluster_config = self.settings.kind_config or write_cluster_config(
            paths.kind_config,
            self.settings.wasm_build_dir or paths.dependency_learner,
            config.DEPENDENCY_LEARNER_HOST_PATH,
        )
        handle = self.cluster.create_cluster(
            random_name(self.settings.cluster_name_prefix, 32), cluster_config
        )
        return ctx.derive(**{CLUSTER: handle, KUBECONFIG: handle.kubeconfig})

    def connect(self, ctx: RunContext) -> RunContext:
        return ctx.derive(**{CLIENT: self.client_factory(ctx[KUBECONFIG])})

    def create_mesh_namespace(self, ctx: RunContext) -> RunContext:
        client = ctx[CLIENT]
        namespace = ResourceSpec(kind=ResourceKind.NAMESPACE, name=config.ISTIO_NAMESPACE)
        client.register_kind(ResourceKind.NAMESPACE)
        try:
            client.create(namespace)
        except ConflictError:
            logger.info(f"Namespace {config.ISTIO_NAMESPACE} already exists")
            return ctx
        return ctx.derive(**{MESH_NAMESPACE_CREATED: True})

    def load_images(self, ctx: RunContext) -> RunContext:
        handle: ClusterHandle = ctx[CLUSTER]
        for image in config.mesh_images(self.settings):
            self.cluster.load_image(handle, image)
        return ctx

    def add_chart_repo(self, ctx: RunContext) -> RunContext:
        helm = self.helm_factory(ctx[KUBECONFIG])
        helm.add_repo(config.ISTIO_REPO_NAME, self.settings.istio_repo_url)
        helm.update_repo()
        return ctx.derive(**{REPO_ADDED: True})

    def install_charts(self, ctx: RunContext) -> RunContext:
        helm = self.helm_factory(ctx[KUBECONFIG])

        release_values = {
            "istio-base": {},
            "istiod": {"global.imagePullPolicy": "IfNotPresent"},
            "gateway": gateway_values(),
        }
        for release, chart in config.ISTIO_CHARTS.items():
            helm.install(
                release,
                chart,
                namespace=config.ISTIO_NAMESPACE,
                version=self.settings.istio_version,
                values=release_values[release],
                wait=True,
            )
        return ctx

    def apply_mesh_policies(self, ctx: RunContext) -> RunContext:
        client = ctx[CLIENT]
        applier = TopologyApplier(
            client,
            ReadinessWaiter(client, self.settings.poll_interval),
            adopt_existing=True,
            wait_timeout=self.settings.wait_timeout,
        )
        applier.apply(ctx, build_mesh_topology()).raise_for_error()
        return ctx

    # ------------------------------------------------------------------
    # Finish
    # ------------------------------------------------------------------

    def finish(self, ctx: RunContext) -> None:
        """Undo setup. Every step is attempted; failures are aggregated."""
        failures = []
        steps = [
            ("remove chart repo", self.remove_repo),
            ("delete mesh objects", self.delete_mesh_objects),
            ("destroy cluster", self.destroy_cluster),
        ]
        for name, fn in steps:
            try:
                fn(ctx)
            except HarnessError as e:
                logger.warning(f"Environment finish '{name}' failed: {e}")
                failures.append((name, e))
            except Exception as e:
                logger.warning(f"Environment finish '{name}' failed unexpectedly: {e}", exc_info=True)
                failures.append((name, e))

        if failures:
            raise TeardownError(failures)

    def remove_repo(self, ctx: RunContext) -> None:
        if ctx.get(REPO_ADDED):
            self.helm_factory(ctx[KUBECONFIG]).remove_repo(config.ISTIO_REPO_NAME)

    def delete_mesh_objects(self, ctx: RunContext) -> None:
        client = ctx.get(CLIENT)
        if client is None:
            return
        # A cluster destroyed right after does not need an object-level cleanup
        if ctx.get(CLUSTER) is not None and not self.settings.keep_cluster:
            return

        # Deletion tolerates absent objects, so the full set is always attempted
        refs = build_mesh_topology().teardown_order()
        if ctx.get(MESH_NAMESPACE_CREATED):
            refs.append(ResourceSpec(kind=ResourceKind.NAMESPACE, name=config.ISTIO_NAMESPACE).ref)
        TeardownLedger(client).delete_all(ctx, refs)

    def destroy_cluster(self, ctx: RunContext) -> None:
        handle = ctx.get(CLUSTER)
        if handle is None:
            return
        if self.settings.keep_cluster:
            logger.info(f"Keeping cluster {handle.name} (kubeconfig {handle.kubeconfig})")
            return
        self.cluster.destroy_cluster(handle)
