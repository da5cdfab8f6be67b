"""Topology builder.

Pure construction of the objects a dependency-learner run needs. Nothing here
talks to the cluster: the functions return data, and the lifecycle controller
decides when to create it.

Names that must be unique across concurrent runs (namespaces and the
fallback routing objects) are generated once, in ``new_run_parameters``, so a
retried creation always targets the same identity.
"""

import secrets
from typing import Any, Dict, Optional

from learner_e2e import config
from learner_e2e.models import (
    ReadinessCheck,
    ResourceKind,
    ResourceSpec,
    RunParameters,
)
from learner_e2e.settings import HarnessSettings, settings as default_settings
from learner_e2e.topology.graph import Topology

WILDCARD_HOSTS = ["*.svc", "*.svc.cluster.local"]


def random_name(prefix: str, length: int = 16) -> str:
    """Return ``prefix`` plus a random hex suffix, truncated to ``length``.

    A prefix that leaves no room for a suffix is returned unchanged.
    """
    if len(prefix) + 2 > length:
        return prefix
    return f"{prefix}-{secrets.token_hex(length)}"[:length]


def new_run_parameters(settings: Optional[HarnessSettings] = None) -> RunParameters:
    """Generate the parameters of one run."""
    settings = settings or default_settings
    return RunParameters(
        client_namespace=random_name("client", 16),
        server_namespace=random_name("server", 16),
        fallback_name=random_name("fallback", 16),
        response_header=settings.response_header,
        wasm_relative_path=settings.wasm_relative_path,
        workload_image=f"nginx:{settings.nginx_version}",
    )


def namespace_spec(name: str) -> ResourceSpec:
    """Namespace with sidecar injection enabled."""
    return ResourceSpec(
        kind=ResourceKind.NAMESPACE,
        name=name,
        labels={"istio-injection": "enabled"},
    )


def deployment_payload(app: str, container: str, image: str, replicas: int = 1) -> Dict[str, Any]:
    labels = {"app": app}
    return {
        "replicas": replicas,
        "selector": {"matchLabels": dict(labels)},
        "template": {
            "metadata": {"labels": dict(labels)},
            "spec": {"containers": [{"name": container, "image": image}]},
        },
    }


def build_feature_topology(params: RunParameters) -> Topology:
    """Objects created by the dependency-learner feature.

    Requests from the client namespace to any ``*.svc`` host are routed to
    the gateway over mutual TLS; the gateway runs the dependency-learner
    filter and forwards to the server based on the request authority.
    """
    mesh_ns = params.mesh_namespace
    fallback = params.fallback_name
    gateway_selector = {params.gateway_selector_key: params.gateway_selector_value}

    client_ns = namespace_spec(params.client_namespace)
    server_ns = namespace_spec(params.server_namespace)

    gateway = ResourceSpec(
        kind=ResourceKind.GATEWAY,
        namespace=mesh_ns,
        name=fallback,
        payload={
            "servers": [
                {
                    "name": fallback,
                    "hosts": list(WILDCARD_HOSTS),
                    "port": {
                        "number": params.gateway_port,
                        "protocol": "HTTPS",
                        "name": "https",
                    },
                    "tls": {"mode": "ISTIO_MUTUAL"},
                }
            ],
            "selector": dict(gateway_selector),
        },
    )

    gateway_routes = ResourceSpec(
        kind=ResourceKind.VIRTUAL_SERVICE,
        namespace=mesh_ns,
        name=fallback,
        payload={
            "hosts": list(WILDCARD_HOSTS),
            "http": [
                {
                    "match": [{"authority": {"prefix": params.server_host}}],
                    "route": [{"destination": {"host": params.server_fqdn}}],
                }
            ],
            "gateways": [fallback],
            "exportTo": ["."],
        },
        depends_on=[gateway.ref],
    )

    filter_plugin = ResourceSpec(
        kind=ResourceKind.WASM_PLUGIN,
        namespace=mesh_ns,
        name=fallback,
        payload={
            "selector": {"matchLabels": dict(gateway_selector)},
            "url": params.wasm_url,
            "type": "HTTP",
            "phase": "UNSPECIFIED_PHASE",
            "pluginConfig": {"response_header": params.response_header},
        },
        depends_on=[gateway.ref],
    )

    client_entry = ResourceSpec(
        kind=ResourceKind.SERVICE_ENTRY,
        namespace=params.client_namespace,
        name=fallback,
        payload={
            "hosts": list(WILDCARD_HOSTS),
            "resolution": "NONE",
            "exportTo": [params.client_namespace],
        },
        depends_on=[client_ns.ref],
    )

    client_routes = ResourceSpec(
        kind=ResourceKind.VIRTUAL_SERVICE,
        namespace=params.client_namespace,
        name=fallback,
        payload={
            "hosts": list(WILDCARD_HOSTS),
            "http": [
                {
                    "route": [
                        {
                            "destination": {
                                "host": params.gateway_fqdn,
                                "port": {"number": params.gateway_port},
                            }
                        }
                    ]
                }
            ],
            "gateways": ["mesh"],
            "exportTo": ["."],
        },
        depends_on=[client_ns.ref, client_entry.ref],
    )

    client_deployment = ResourceSpec(
        kind=ResourceKind.DEPLOYMENT,
        namespace=params.client_namespace,
        name=params.client_name,
        payload=deployment_payload(params.client_name, params.container_name, params.workload_image),
        depends_on=[client_ns.ref, client_routes.ref],
        readiness=ReadinessCheck(condition_type="Available", status="True"),
    )

    server_deployment = ResourceSpec(
        kind=ResourceKind.DEPLOYMENT,
        namespace=params.server_namespace,
        name=params.server_name,
        payload=deployment_payload(params.server_name, params.container_name, params.workload_image),
        depends_on=[server_ns.ref],
        readiness=ReadinessCheck(condition_type="Available", status="True"),
    )

    server_service = ResourceSpec(
        kind=ResourceKind.SERVICE,
        namespace=params.server_namespace,
        name=params.server_name,
        payload={
            "ports": [{"name": "http", "port": params.server_port}],
            "selector": {"app": params.server_name},
        },
        depends_on=[server_ns.ref, server_deployment.ref],
    )

    return Topology(
        [
            client_ns,
            server_ns,
            gateway,
            gateway_routes,
            filter_plugin,
            client_entry,
            client_routes,
            client_deployment,
            server_deployment,
            server_service,
        ]
    )


def build_mesh_topology(
    mesh_namespace: str = config.ISTIO_NAMESPACE,
    gateway_name: str = config.GATEWAY_NAME,
) -> Topology:
    """Mesh-wide objects created once per environment.

    Mutual TLS towards the gateway and the default access-log provider.
    """
    gateway_fqdn = f"{gateway_name}.{mesh_namespace}.svc.cluster.local"

    gateway_mtls = ResourceSpec(
        kind=ResourceKind.DESTINATION_RULE,
        namespace=mesh_namespace,
        name=gateway_name,
        payload={
            "host": gateway_fqdn,
            "trafficPolicy": {
                "tls": {"mode": "ISTIO_MUTUAL", "sni": gateway_fqdn},
            },
        },
    )

    access_logging = ResourceSpec(
        kind=ResourceKind.TELEMETRY,
        namespace=mesh_namespace,
        name=config.TELEMETRY_NAME,
        payload={"accessLogging": [{"providers": [{"name": config.ACCESS_LOG_PROVIDER}]}]},
    )

    return Topology([gateway_mtls, access_logging])

