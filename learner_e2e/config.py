"""Mesh constants shared by the environment and the feature topology."""

from typing import Optional

from learner_e2e.settings import HarnessSettings, settings as default_settings

# Mesh installation
ISTIO_NAMESPACE = "istio-system"
ISTIO_REPO_NAME = "istio"

# Chart releases, installed in order
ISTIO_CHARTS = {
    "istio-base": "istio/base",
    "istiod": "istio/istiod",
    "gateway": "istio/gateway",
}

# Gateway
GATEWAY_NAME = "test-gateway"
GATEWAY_SELECTOR_KEY = "istio"
GATEWAY_SELECTOR_VALUE = "test-gateway"
GATEWAY_PORT = 443

# Dependency learner filter volume
DEPENDENCY_LEARNER_HOST_PATH = "/dependency-learner"
DEPENDENCY_LEARNER_MOUNT_PATH = "/dependency-learner"
DEPENDENCY_LEARNER_VOLUME_NAME = "dependency-learner"
DEPENDENCY_LEARNER_COMPONENT_LABEL = "dependency-learner"

# Workloads
CLIENT_NAME = "client"
SERVER_NAME = "server"
CONTAINER_NAME = "testapp"
SERVER_PORT = 80
TRUST_DOMAIN = "cluster.local"

# Mesh-wide objects
TELEMETRY_NAME = "mesh-default"
ACCESS_LOG_PROVIDER = "envoy"


def mesh_images(settings: Optional[HarnessSettings] = None) -> list[str]:
    """Images preloaded onto the cluster nodes."""
    settings = settings or default_settings
    return [
        f"istio/proxyv2:{settings.istio_version}",
        f"istio/pilot:{settings.istio_version}",
        f"nginx:{settings.nginx_version}",
    ]
