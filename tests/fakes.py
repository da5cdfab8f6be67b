"""In-memory stand-ins for the remote object client."""

from typing import Any, Dict, List, Optional, Tuple

from learner_e2e.errors import ConflictError, ExecError
from learner_e2e.models import ResourceKind, ResourceRef, ResourceSpec


def make_pod(
    name: str,
    namespace: str = "default",
    phase: str = "Running",
    labels: Optional[Dict[str, str]] = None,
    deleting: bool = False,
) -> Dict[str, Any]:
    """Pod object in API wire format."""
    metadata: Dict[str, Any] = {"name": name, "namespace": namespace, "labels": labels or {}}
    if deleting:
        metadata["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    return {
        "metadata": metadata,
        "status": {
            "phase": phase,
            "conditions": [{"type": "Ready", "status": "True" if phase == "Running" else "False"}],
        },
    }


def curl_head_output(status: str = "HTTP/1.1 200 OK", headers: Optional[List[str]] = None) -> bytes:
    """Bytes as ``curl -I`` prints them."""
    lines = [status] + (headers or ["server: envoy", "content-type: text/html"])
    return ("\r\n".join(lines) + "\r\n\r\n").encode()


def matches_selector(labels: Dict[str, str], selector: str) -> bool:
    if not selector:
        return True
    for term in selector.split(","):
        key, _, value = term.partition("=")
        if labels.get(key.strip()) != value.strip():
            return False
    return True


class FakeObjectClient:
    """Remote object client backed by a dict.

    Objects declaring a readiness check are stored with that condition
    already satisfied. Deleting a namespace removes everything inside it.
    """

    def __init__(self, auto_ready: bool = True):
        self.auto_ready = auto_ready
        self.objects: Dict[ResourceRef, Dict[str, Any]] = {}
        self.registered: List[ResourceKind] = []
        self.calls: List[Tuple[str, Any]] = []
        self.fail_create: Dict[ResourceRef, Exception] = {}
        self.fail_delete: Dict[ResourceRef, Exception] = {}
        self.pods: Dict[str, List[Dict[str, Any]]] = {}
        self.exec_output: Tuple[bytes, bytes] = (b"", b"")
        self.exec_error: Optional[Exception] = None

    def register_kind(self, kind: ResourceKind) -> None:
        self.registered.append(kind)

    def register_kinds(self, kinds) -> None:
        for kind in kinds:
            self.register_kind(kind)

    def create(self, spec: ResourceSpec) -> Dict[str, Any]:
        self.calls.append(("create", spec.ref))
        if spec.ref in self.fail_create:
            raise self.fail_create[spec.ref]
        if spec.ref in self.objects:
            raise ConflictError(f"{spec.ref} already exists")
        manifest = spec.to_manifest()
        if spec.readiness is not None and self.auto_ready:
            manifest["status"] = {
                "conditions": [
                    {"type": spec.readiness.condition_type, "status": spec.readiness.status}
                ]
            }
        self.objects[spec.ref] = manifest
        return manifest

    def delete(self, ref: ResourceRef) -> bool:
        self.calls.append(("delete", ref))
        if ref in self.fail_delete:
            raise self.fail_delete[ref]
        if ref not in self.objects:
            return False
        del self.objects[ref]
        if ref.kind is ResourceKind.NAMESPACE:
            for inner in [r for r in self.objects if r.namespace == ref.name]:
                del self.objects[inner]
        return True

    def get(self, ref: ResourceRef) -> Optional[Dict[str, Any]]:
        self.calls.append(("get", ref))
        return self.objects.get(ref)

    def list(self, kind: ResourceKind, namespace: Optional[str] = None, label_selector: str = ""):
        return [
            obj
            for ref, obj in self.objects.items()
            if ref.kind is kind
            and (namespace is None or ref.namespace == namespace)
            and matches_selector(obj["metadata"].get("labels", {}), label_selector)
        ]

    def list_pods(self, namespace: str, label_selector: str = "") -> List[Dict[str, Any]]:
        return [
            p
            for p in self.pods.get(namespace, [])
            if matches_selector(p["metadata"].get("labels", {}), label_selector)
        ]

    def exec_in(self, ctx, namespace, pod, container, command, timeout=None) -> Tuple[bytes, bytes]:
        self.calls.append(("exec", (namespace, pod, container, tuple(command))))
        if self.exec_error is not None:
            raise self.exec_error
        return self.exec_output

    def created_refs(self) -> List[ResourceRef]:
        return [ref for op, ref in self.calls if op == "create"]

    def deleted_refs(self) -> List[ResourceRef]:
        return [ref for op, ref in self.calls if op == "delete"]


class ExecFailure(ExecError):
    """ExecError carrying partial output, for probe tests."""

    def __init__(self):
        super().__init__("command exited with 7", b"partial", b"curl: (7) Failed to connect", 7)
