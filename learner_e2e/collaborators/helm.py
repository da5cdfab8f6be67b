"""Chart installer collaborator backed by the ``helm`` CLI."""

import logging
from pathlib import Path
from typing import Mapping, Optional

from learner_e2e.collaborators.cli import run_cli

logger = logging.getLogger(__name__)


class HelmInstaller:
    """Manages chart repositories and installs releases into a cluster."""

    def __init__(self, kubeconfig: Optional[Path] = None, binary: str = "helm"):
        self.kubeconfig = kubeconfig
        self.binary = binary

    def _base(self) -> list[str]:
        cmd = [self.binary]
        if self.kubeconfig:
            cmd.extend(["--kubeconfig", str(self.kubeconfig)])
        return cmd

    def add_repo(self, name: str, url: str) -> None:
        run_cli(self._base() + ["repo", "add", name, url])

    def update_repo(self) -> None:
        run_cli(self._base() + ["repo", "update"])

    def remove_repo(self, name: str) -> None:
        run_cli(self._base() + ["repo", "remove", name])

    def install(
        self,
        name: str,
        chart: str,
        namespace: str,
        version: Optional[str] = None,
        values: Optional[Mapping[str, str]] = None,
        wait: bool = True,
    ) -> None:
        """Install ``chart`` as release ``name``.

        ``values`` are passed as ``--set key=value`` pairs in order.
        """
        cmd = self._base() + ["install", name, chart, "--namespace", namespace]
        if version:
            cmd.extend(["--version", version])
        if wait:
            cmd.append("--wait")
        for key, value in (values or {}).items():
            cmd.extend(["--set", f"{key}={value}"])

        run_cli(cmd)
        logger.info(f"Installed {chart} as {name} in {namespace}")
