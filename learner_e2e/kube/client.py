"""Remote object client over the Kubernetes API.

Thin capability wrapper: create, delete, get and list declarative objects,
and execute commands inside pods. Every call goes to the API server; the
only thing kept between calls is the discovered schema of registered kinds.
"""

import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from kubernetes import client, config as k8s_config, dynamic
from kubernetes.client.rest import ApiException
from kubernetes.dynamic.exceptions import ResourceNotFoundError
from kubernetes.stream import stream
from urllib3.exceptions import HTTPError as TransportError

from learner_e2e.context import RunContext
from learner_e2e.errors import (
    ConflictError,
    ExecError,
    NotRunningError,
    RunCancelledError,
    UnavailableError,
    ValidationError,
)
from learner_e2e.models import ResourceKind, ResourceRef, ResourceSpec
from learner_e2e.settings import settings

logger = logging.getLogger(__name__)

# Seconds between websocket reads while an exec is running
EXEC_READ_INTERVAL = 1.0


def translate_api_error(error: ApiException, action: str) -> Exception:
    """Map an API status onto the harness error taxonomy."""
    status = getattr(error, "status", None)
    reason = getattr(error, "reason", "") or ""
    message = f"{action} failed ({status} {reason})".strip()

    if status == 409:
        return ConflictError(message)
    if status in (400, 422):
        return ValidationError(message)
    if status == 404:
        return ValidationError(f"{message}: kind or namespace not found")
    return UnavailableError(message)


class RemoteObjectClient:
    """Create/delete/get/list/exec against a remote declarative-object store."""

    def __init__(
        self,
        api_client: client.ApiClient,
        dynamic_client: Optional[dynamic.DynamicClient] = None,
        core_api: Optional[client.CoreV1Api] = None,
        request_timeout: Optional[float] = None,
    ):
        self._api_client = api_client
        self._dynamic = dynamic_client
        self._core = core_api or client.CoreV1Api(api_client)
        self._resources: Dict[str, Any] = {}
        # Bounds every API call so a hung server surfaces as UnavailableError
        self.request_timeout = request_timeout or settings.request_timeout

    @classmethod
    def from_kubeconfig(cls, kubeconfig: Optional[Path] = None) -> "RemoteObjectClient":
        """Build a client from a kubeconfig file (default loading rules when None)."""
        config_file = str(kubeconfig) if kubeconfig else None
        api_client = k8s_config.new_client_from_config(config_file=config_file)
        return cls(api_client)

    @property
    def dynamic(self) -> dynamic.DynamicClient:
        # Discovery hits the API server, so the dynamic client is built on first use
        if self._dynamic is None:
            try:
                self._dynamic = dynamic.DynamicClient(self._api_client)
            except ApiException as e:
                raise translate_api_error(e, "API discovery") from e
            except TransportError as e:
                raise UnavailableError(f"API discovery failed: {e}") from e
        return self._dynamic

    # ------------------------------------------------------------------
    # Schema registration
    # ------------------------------------------------------------------

    def register_kind(self, kind: ResourceKind) -> None:
        """Resolve ``kind`` through API discovery so it can be created.

        Raises ValidationError when the server does not serve the kind,
        typically because the CRDs are not installed yet.
        """
        self._resource(kind.api_version, kind.value)

    def register_kinds(self, kinds: Iterable[ResourceKind]) -> None:
        for kind in kinds:
            self.register_kind(kind)

    def _resource(self, api_version: str, kind: str) -> Any:
        key = f"{api_version}/{kind}"
        if key not in self._resources:
            try:
                self._resources[key] = self.dynamic.resources.get(
                    api_version=api_version, kind=kind
                )
            except ResourceNotFoundError as e:
                raise ValidationError(f"kind {key} is not served by the cluster") from e
            except ApiException as e:
                raise translate_api_error(e, f"discovery of {key}") from e
            except TransportError as e:
                raise UnavailableError(f"discovery of {key} failed: {e}") from e
            logger.debug(f"Registered kind {key}")
        return self._resources[key]

    # ------------------------------------------------------------------
    # Object operations
    # ------------------------------------------------------------------

    def create(self, spec: ResourceSpec) -> Dict[str, Any]:
        """Create ``spec`` remotely and return the stored object."""
        resource = self._resource(spec.kind.api_version, spec.kind.value)
        try:
            created = resource.create(
                body=spec.to_manifest(),
                namespace=spec.namespace,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise translate_api_error(e, f"create {spec.ref}") from e
        except TransportError as e:
            raise UnavailableError(f"create {spec.ref} failed: {e}") from e

        logger.info(f"Created {spec.ref}")
        return created.to_dict()

    def delete(self, ref: ResourceRef) -> bool:
        """Delete ``ref``; returns False when it was already absent."""
        resource = self._resource(ref.kind.api_version, ref.kind.value)
        try:
            resource.delete(
                name=ref.name, namespace=ref.namespace, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if e.status == 404:
                logger.debug(f"{ref} already absent")
                return False
            raise translate_api_error(e, f"delete {ref}") from e
        except TransportError as e:
            raise UnavailableError(f"delete {ref} failed: {e}") from e

        logger.info(f"Deleted {ref}")
        return True

    def get(self, ref: ResourceRef) -> Optional[Dict[str, Any]]:
        """Return the current state of ``ref``, or None when it does not exist."""
        resource = self._resource(ref.kind.api_version, ref.kind.value)
        try:
            obj = resource.get(
                name=ref.name, namespace=ref.namespace, _request_timeout=self.request_timeout
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise translate_api_error(e, f"get {ref}") from e
        except TransportError as e:
            raise UnavailableError(f"get {ref} failed: {e}") from e
        return obj.to_dict()

    def list(
        self,
        kind: ResourceKind,
        namespace: Optional[str] = None,
        label_selector: str = "",
    ) -> List[Dict[str, Any]]:
        """List objects of ``kind``, optionally scoped to a namespace."""
        return self._list(kind.api_version, kind.value, namespace, label_selector)

    def list_pods(self, namespace: str, label_selector: str = "") -> List[Dict[str, Any]]:
        """List pods in ``namespace`` matching ``label_selector``."""
        return self._list("v1", "Pod", namespace, label_selector)

    def _list(
        self, api_version: str, kind: str, namespace: Optional[str], label_selector: str
    ) -> List[Dict[str, Any]]:
        resource = self._resource(api_version, kind)
        try:
            result = resource.get(
                namespace=namespace,
                label_selector=label_selector or None,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            raise translate_api_error(e, f"list {kind} in {namespace or 'all namespaces'}") from e
        except TransportError as e:
            raise UnavailableError(f"list {kind} failed: {e}") from e
        return list(result.to_dict().get("items") or [])

    # ------------------------------------------------------------------
    # Exec
    # ------------------------------------------------------------------

    def exec_in(
        self,
        ctx: RunContext,
        namespace: str,
        pod: str,
        container: str,
        command: List[str],
        timeout: Optional[float] = None,
    ) -> Tuple[bytes, bytes]:
        """Run ``command`` in ``container`` of ``pod`` and capture its output.

        Raises:
            NotRunningError: the pod does not exist.
            ExecError: non-zero exit, timeout or transport failure. The
                partial stdout/stderr are attached to the error.
            RunCancelledError: ``ctx`` was cancelled while the command ran.
        """
        ctx.raise_if_cancelled()
        try:
            resp = stream(
                self._core.connect_get_namespaced_pod_exec,
                pod,
                namespace,
                container=container,
                command=command,
                stderr=True,
                stdin=False,
                stdout=True,
                tty=False,
                _preload_content=False,
                _request_timeout=self.request_timeout,
            )
        except ApiException as e:
            if e.status == 404:
                raise NotRunningError(f"pod {namespace}/{pod} not found") from e
            raise ExecError(f"exec in {namespace}/{pod} failed: {e.reason}") from e
        except TransportError as e:
            raise ExecError(f"exec in {namespace}/{pod} failed: {e}") from e

        stdout = bytearray()
        stderr = bytearray()
        started = time.monotonic()
        try:
            while resp.is_open():
                if ctx.cancelled:
                    raise RunCancelledError(f"exec in {namespace}/{pod} cancelled")
                if timeout is not None and time.monotonic() - started > timeout:
                    raise ExecError(
                        f"exec in {namespace}/{pod} timed out after {timeout}s",
                        bytes(stdout),
                        bytes(stderr),
                    )
                resp.update(timeout=EXEC_READ_INTERVAL)
                if resp.peek_stdout():
                    stdout += resp.read_stdout().encode()
                if resp.peek_stderr():
                    stderr += resp.read_stderr().encode()
        except (TransportError, OSError) as e:
            raise ExecError(
                f"exec in {namespace}/{pod} interrupted: {e}", bytes(stdout), bytes(stderr)
            ) from e
        finally:
            resp.close()

        # The exit status is read from the error channel, which is missing or
        # malformed when the stream closes without a status frame
        try:
            exit_code = resp.returncode
        except (TypeError, KeyError, ValueError) as e:
            raise ExecError(
                f"exec in {namespace}/{pod} closed without an exit status",
                bytes(stdout),
                bytes(stderr),
            ) from e
        if exit_code:
            raise ExecError(
                f"command {command!r} exited with {exit_code} in {namespace}/{pod}",
                bytes(stdout),
                bytes(stderr),
                exit_code,
            )
        return bytes(stdout), bytes(stderr)
