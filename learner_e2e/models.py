"""Pydantic models for type-safe topology, parameters and probe results."""

import re
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError as SchemaError, field_validator, model_validator

from learner_e2e import config
from learner_e2e.errors import ProbeAssertionError, ValidationError

DNS_LABEL = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")


class ResourceCategory(str, Enum):
    """Role an object plays in a test topology."""

    NAMESPACE = "namespace"
    ROUTING_RULE = "routing-rule"
    POLICY = "policy"
    FILTER_DEPLOYMENT = "filter-deployment"
    WORKLOAD_DEPLOYMENT = "workload-deployment"
    SERVICE = "service"


class ResourceKind(str, Enum):
    """Remote object kinds the harness knows how to create."""

    NAMESPACE = "Namespace"
    GATEWAY = "Gateway"
    VIRTUAL_SERVICE = "VirtualService"
    SERVICE_ENTRY = "ServiceEntry"
    DESTINATION_RULE = "DestinationRule"
    TELEMETRY = "Telemetry"
    WASM_PLUGIN = "WasmPlugin"
    DEPLOYMENT = "Deployment"
    SERVICE = "Service"

    @property
    def api_version(self) -> str:
        return _API_VERSIONS[self]

    @property
    def category(self) -> ResourceCategory:
        return _CATEGORIES[self]

    @property
    def namespaced(self) -> bool:
        return self is not ResourceKind.NAMESPACE


_API_VERSIONS = {
    ResourceKind.NAMESPACE: "v1",
    ResourceKind.GATEWAY: "networking.istio.io/v1alpha3",
    ResourceKind.VIRTUAL_SERVICE: "networking.istio.io/v1alpha3",
    ResourceKind.SERVICE_ENTRY: "networking.istio.io/v1alpha3",
    ResourceKind.DESTINATION_RULE: "networking.istio.io/v1alpha3",
    ResourceKind.TELEMETRY: "telemetry.istio.io/v1alpha1",
    ResourceKind.WASM_PLUGIN: "extensions.istio.io/v1alpha1",
    ResourceKind.DEPLOYMENT: "apps/v1",
    ResourceKind.SERVICE: "v1",
}

_CATEGORIES = {
    ResourceKind.NAMESPACE: ResourceCategory.NAMESPACE,
    ResourceKind.GATEWAY: ResourceCategory.ROUTING_RULE,
    ResourceKind.VIRTUAL_SERVICE: ResourceCategory.ROUTING_RULE,
    ResourceKind.SERVICE_ENTRY: ResourceCategory.ROUTING_RULE,
    ResourceKind.DESTINATION_RULE: ResourceCategory.POLICY,
    ResourceKind.TELEMETRY: ResourceCategory.POLICY,
    ResourceKind.WASM_PLUGIN: ResourceCategory.FILTER_DEPLOYMENT,
    ResourceKind.DEPLOYMENT: ResourceCategory.WORKLOAD_DEPLOYMENT,
    ResourceKind.SERVICE: ResourceCategory.SERVICE,
}


class ResourceRef(BaseModel):
    """Identity of a remote object."""

    kind: ResourceKind = Field(description="Object kind")
    namespace: Optional[str] = Field(default=None, description="Namespace, None when cluster-scoped")
    name: str = Field(description="Object name")

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind.value} {self.namespace}/{self.name}"
        return f"{self.kind.value} {self.name}"

    class Config:
        """Pydantic configuration."""

        frozen = True


class ReadinessCheck(BaseModel):
    """Status condition an object must report before it is usable."""

    condition_type: str = Field(default="Available", description="Status condition type")
    status: str = Field(default="True", description="Expected condition status")

    class Config:
        """Pydantic configuration."""

        frozen = True


class ResourceSpec(BaseModel):
    """One object to create remotely, fully parameterized."""

    kind: ResourceKind = Field(description="Object kind")
    namespace: Optional[str] = Field(default=None, description="Target namespace")
    name: str = Field(description="Object name")
    labels: Dict[str, str] = Field(default_factory=dict, description="Metadata labels")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Kind-specific spec body")
    depends_on: List[ResourceRef] = Field(
        default_factory=list, description="Objects that must exist before this one"
    )
    readiness: Optional[ReadinessCheck] = Field(
        default=None, description="Condition to wait for after creation"
    )

    def __init__(self, **data: Any):
        # Malformed specs surface as the harness ValidationError
        try:
            super().__init__(**data)
        except SchemaError as e:
            kind = data.get("kind")
            label = getattr(kind, "value", kind)
            raise ValidationError(f"invalid {label} spec {data.get('name')!r}: {e}") from e

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Names must be DNS-1123 labels."""
        if len(v) > 63 or not DNS_LABEL.match(v):
            raise ValueError(f"invalid object name {v!r}")
        return v

    @model_validator(mode="after")
    def validate_scope(self) -> "ResourceSpec":
        """Namespaced kinds need a namespace, cluster-scoped kinds must not have one."""
        if self.kind.namespaced and not self.namespace:
            raise ValueError(f"{self.kind.value} {self.name} requires a namespace")
        if not self.kind.namespaced and self.namespace:
            raise ValueError(f"{self.kind.value} {self.name} is cluster-scoped")
        return self

    @property
    def ref(self) -> ResourceRef:
        return ResourceRef(kind=self.kind, namespace=self.namespace, name=self.name)

    @property
    def category(self) -> ResourceCategory:
        return self.kind.category

    def to_manifest(self) -> Dict[str, Any]:
        """Render the object in the remote store's wire format."""
        metadata: Dict[str, Any] = {"name": self.name}
        if self.namespace:
            metadata["namespace"] = self.namespace
        if self.labels:
            metadata["labels"] = dict(self.labels)

        manifest: Dict[str, Any] = {
            "apiVersion": self.kind.api_version,
            "kind": self.kind.value,
            "metadata": metadata,
        }
        if self.payload:
            manifest["spec"] = self.payload
        return manifest

    class Config:
        """Pydantic configuration."""

        frozen = True


class RunParameters(BaseModel):
    """Immutable parameters of a single test run.

    Constructed once, before any object is built, and passed to every phase.
    """

    client_namespace: str = Field(description="Generated client namespace")
    server_namespace: str = Field(description="Generated server namespace")
    fallback_name: str = Field(description="Generated name shared by the fallback routing objects")
    client_name: str = Field(default=config.CLIENT_NAME, description="Client workload name")
    server_name: str = Field(default=config.SERVER_NAME, description="Server workload name")
    container_name: str = Field(default=config.CONTAINER_NAME, description="Workload container name")
    response_header: str = Field(default="detected-dependency", description="Filter response header")
    mesh_namespace: str = Field(default=config.ISTIO_NAMESPACE, description="Mesh control plane namespace")
    gateway_name: str = Field(default=config.GATEWAY_NAME, description="Gateway deployment name")
    gateway_selector_key: str = Field(default=config.GATEWAY_SELECTOR_KEY, description="Gateway selector label key")
    gateway_selector_value: str = Field(
        default=config.GATEWAY_SELECTOR_VALUE, description="Gateway selector label value")
    gateway_port: int = Field(default=config.GATEWAY_PORT, gt=0, description="Gateway HTTPS port")
    server_port: int = Field(default=config.SERVER_PORT, gt=0, description="Server HTTP port")
    wasm_mount_path: str = Field(
        default=config.DEPENDENCY_LEARNER_MOUNT_PATH, description="WASM mount path in the gateway")
    wasm_relative_path: str = Field(
        default="target/wasm32-wasi/release/dependency_learner.wasm",
        description="WASM module path relative to the mount",
    )
    workload_image: str = Field(default="nginx:1.25.5", description="Client and server image")
    trust_domain: str = Field(default=config.TRUST_DOMAIN, description="Mesh trust domain")

    @property
    def server_host(self) -> str:
        return f"{self.server_name}.{self.server_namespace}.svc"

    @property
    def server_fqdn(self) -> str:
        return f"{self.server_host}.cluster.local"

    @property
    def gateway_fqdn(self) -> str:
        return f"{self.gateway_name}.{self.mesh_namespace}.svc.cluster.local"

    @property
    def wasm_url(self) -> str:
        return "file://" + "/".join(
            [self.wasm_mount_path.rstrip("/"), self.wasm_relative_path.lstrip("/")]
        )

    @property
    def client_identity(self) -> str:
        """SPIFFE identity of the client's default service account."""
        return f"spiffe://{self.trust_domain}/ns/{self.client_namespace}/sa/default"

    @property
    def server_cluster(self) -> str:
        """Outbound cluster name the gateway resolves the server to."""
        return f"outbound|{self.server_port}||{self.server_fqdn}"

    def expected_marker(self) -> "DependencyMarker":
        return DependencyMarker(
            header=self.response_header,
            caller=self.client_identity,
            destination=self.server_cluster,
        )

    def probe_command(self) -> List[str]:
        return ["curl", "-I", f"http://{self.server_host}"]

    class Config:
        """Pydantic configuration."""

        frozen = True


class DependencyMarker(BaseModel):
    """Header asserting observed caller-identity-to-destination routing."""

    header: str = Field(description="Response header name")
    caller: str = Field(description="Caller identity")
    destination: str = Field(description="Routing decision (upstream cluster)")

    @property
    def value(self) -> str:
        return f"{self.caller} -> {self.destination}"

    def render(self) -> str:
        return f"{self.header}: {self.value}"

    @classmethod
    def parse(cls, header: str, value: str) -> Optional["DependencyMarker"]:
        """Parse a header value of the form ``<caller> -> <destination>``."""
        caller, sep, destination = value.partition(" -> ")
        if not sep:
            return None
        return cls(header=header, caller=caller.strip(), destination=destination.strip())

    class Config:
        """Pydantic configuration."""

        frozen = True


class ProbeExpectation(BaseModel):
    """What a probe's output must contain."""

    status_code: str = Field(default="200", description="Status code expected in the status line")
    markers: List[DependencyMarker] = Field(default_factory=list, description="Required markers")
    substrings: List[str] = Field(default_factory=list, description="Extra required substrings")


class AssertionOutcome(BaseModel):
    """Result of one independent probe assertion."""

    name: str = Field(description="Assertion name")
    expected: str = Field(description="Expected value")
    observed: Optional[str] = Field(default=None, description="Observed value")
    passed: bool = Field(description="Whether the assertion held")


class ProbeResult(BaseModel):
    """Captured output of a probe and the assertions evaluated over it."""

    stdout: bytes = Field(default=b"", description="Captured standard output")
    stderr: bytes = Field(default=b"", description="Captured standard error")
    pod: Optional[str] = Field(default=None, description="Pod the command ran in")
    status_line: Optional[str] = Field(default=None, description="First line of stdout")
    status_code: Optional[int] = Field(default=None, description="Parsed numeric status code")
    headers: Dict[str, List[str]] = Field(
        default_factory=dict, description="Response headers keyed by lower-cased name"
    )
    assertions: List[AssertionOutcome] = Field(
        default_factory=list, description="Evaluated assertions"
    )

    @property
    def passed(self) -> bool:
        return all(a.passed for a in self.assertions)

    @property
    def failures(self) -> List[AssertionOutcome]:
        return [a for a in self.assertions if not a.passed]

    def assertion(self, name: str) -> Optional[AssertionOutcome]:
        return next((a for a in self.assertions if a.name == name), None)

    def raise_for_failures(self) -> None:
        """Raise ProbeAssertionError listing every failed assertion."""
        failures = [
            f"{a.name}: expected {a.expected!r}, observed {a.observed!r}" for a in self.failures
        ]
        if failures:
            raise ProbeAssertionError(
                f"{len(failures)} probe assertion(s) failed: " + "; ".join(failures),
                failures,
            )
