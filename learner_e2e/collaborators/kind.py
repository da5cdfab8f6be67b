"""Cluster bootstrap collaborator backed by the ``kind`` CLI."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import yaml

from learner_e2e.collaborators.cli import run_cli
from learner_e2e.common.paths import paths

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterHandle:
    """A running cluster and the kubeconfig that reaches it."""

    name: str
    kubeconfig: Path


def write_cluster_config(
    path: Path,
    host_path: Path,
    container_path: str,
) -> Path:
    """Render a single-node kind config mounting ``host_path`` onto the node.

    The gateway later mounts ``container_path`` through a hostPath volume,
    which is how the dependency-learner module reaches the proxy.
    """
    cluster_config = {
        "kind": "Cluster",
        "apiVersion": "kind.x-k8s.io/v1alpha4",
        "nodes": [
            {
                "role": "control-plane",
                "extraMounts": [
                    {"hostPath": str(host_path.resolve()), "containerPath": container_path}
                ],
            }
        ],
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(cluster_config, f, sort_keys=False)
    return path


class KindCluster:
    """Creates, loads images into and destroys kind clusters."""

    def __init__(self, binary: str = "kind", kubeconfig_dir: Optional[Path] = None):
        self.binary = binary
        self.kubeconfig_dir = kubeconfig_dir or paths.build

    def create_cluster(self, name: str, config_path: Optional[Path] = None) -> ClusterHandle:
        kubeconfig = self.kubeconfig_dir / f"{name}.kubeconfig"
        kubeconfig.parent.mkdir(parents=True, exist_ok=True)

        cmd = [self.binary, "create", "cluster", "--name", name, "--kubeconfig", str(kubeconfig)]
        if config_path:
            cmd.extend(["--config", str(config_path)])
        run_cli(cmd)

        logger.info(f"Created kind cluster {name}")
        return ClusterHandle(name=name, kubeconfig=kubeconfig)

    def destroy_cluster(self, handle: ClusterHandle) -> None:
        run_cli(
            [self.binary, "delete", "cluster", "--name", handle.name, "--kubeconfig", str(handle.kubeconfig)]
        )
        logger.info(f"Destroyed kind cluster {handle.name}")

    def load_image(self, handle: ClusterHandle, image: str) -> None:
        """Load a locally pulled image onto the cluster nodes."""
        run_cli([self.binary, "load", "docker-image", image, "--name", handle.name])
