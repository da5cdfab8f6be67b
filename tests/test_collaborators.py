"""
Collaborator Tests

Command lines built for the kind and helm CLIs, and the mapping of their
failures onto CollaboratorError. subprocess.run is replaced throughout.
"""
import subprocess
from pathlib import Path

import pytest
import yaml

from learner_e2e.collaborators import cli
from learner_e2e.collaborators.cli import run_cli
from learner_e2e.collaborators.helm import HelmInstaller
from learner_e2e.collaborators.kind import ClusterHandle, KindCluster, write_cluster_config
from learner_e2e.errors import CollaboratorError


@pytest.fixture
def commands(monkeypatch):
    """Capture every command passed to subprocess.run."""
    captured = []

    def fake_run(cmd, **kwargs):
        captured.append(cmd)
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")

    monkeypatch.setattr(cli.subprocess, "run", fake_run)
    return captured


@pytest.mark.unit
class TestRunCli:
    """Subprocess failure mapping"""

    def test_non_zero_exit(self, monkeypatch):
        def fail(cmd, **kwargs):
            raise subprocess.CalledProcessError(1, cmd, stderr="ERROR: cluster already exists\n")

        monkeypatch.setattr(cli.subprocess, "run", fail)

        with pytest.raises(CollaboratorError) as exc_info:
            run_cli(["kind", "create", "cluster"])

        assert exc_info.value.command == ["kind", "create", "cluster"]
        assert str(exc_info.value) == "kind exited with 1: ERROR: cluster already exists"

    def test_missing_binary(self, monkeypatch):
        def missing(cmd, **kwargs):
            raise FileNotFoundError(cmd[0])

        monkeypatch.setattr(cli.subprocess, "run", missing)

        with pytest.raises(CollaboratorError, match="not found"):
            run_cli(["helm", "version"])

    def test_timeout(self, monkeypatch):
        def slow(cmd, **kwargs):
            raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

        monkeypatch.setattr(cli.subprocess, "run", slow)

        with pytest.raises(CollaboratorError, match="timed out after 5s"):
            run_cli(["helm", "install"], timeout=5)


@pytest.mark.unit
class TestHelmInstaller:
    """Helm command lines"""

    def test_install_passes_values_in_order(self, commands):
        HelmInstaller(kubeconfig=Path("/tmp/kc")).install(
            "gateway",
            "istio/gateway",
            namespace="istio-system",
            version="1.22.0",
            values={"name": "test-gateway", "service.type": "ClusterIP"},
        )

        assert commands == [
            [
                "helm", "--kubeconfig", "/tmp/kc",
                "install", "gateway", "istio/gateway",
                "--namespace", "istio-system",
                "--version", "1.22.0",
                "--wait",
                "--set", "name=test-gateway",
                "--set", "service.type=ClusterIP",
            ]
        ]

    def test_repo_management(self, commands):
        helm = HelmInstaller()
        helm.add_repo("istio", "https://example.invalid/charts")
        helm.update_repo()
        helm.remove_repo("istio")

        assert commands == [
            ["helm", "repo", "add", "istio", "https://example.invalid/charts"],
            ["helm", "repo", "update"],
            ["helm", "repo", "remove", "istio"],
        ]


@pytest.mark.unit
class TestKindCluster:
    """Kind command lines and cluster config"""

    def test_create_and_destroy(self, commands, tmp_path):
        kind = KindCluster(kubeconfig_dir=tmp_path)

        handle = kind.create_cluster("test-cluster-istio-1", tmp_path / "kind.yaml")
        kind.destroy_cluster(handle)

        kubeconfig = str(tmp_path / "test-cluster-istio-1.kubeconfig")
        assert handle == ClusterHandle("test-cluster-istio-1", tmp_path / "test-cluster-istio-1.kubeconfig")
        assert commands[0] == [
            "kind", "create", "cluster", "--name", "test-cluster-istio-1",
            "--kubeconfig", kubeconfig, "--config", str(tmp_path / "kind.yaml"),
        ]
        assert commands[1] == [
            "kind", "delete", "cluster", "--name", "test-cluster-istio-1", "--kubeconfig", kubeconfig,
        ]

    def test_load_image(self, commands, tmp_path):
        KindCluster(kubeconfig_dir=tmp_path).load_image(
            ClusterHandle("c1", tmp_path / "c1.kubeconfig"), "istio/pilot:1.22.0"
        )

        assert commands == [["kind", "load", "docker-image", "istio/pilot:1.22.0", "--name", "c1"]]

    def test_cluster_config_mounts_component(self, tmp_path):
        component = tmp_path / "component"
        component.mkdir()

        path = write_cluster_config(tmp_path / "build" / "kind.yaml", component, "/dependency-learner")

        with open(path) as f:
            rendered = yaml.safe_load(f)
        mounts = rendered["nodes"][0]["extraMounts"]
        assert rendered["apiVersion"] == "kind.x-k8s.io/v1alpha4"
        assert mounts == [{"hostPath": str(component.resolve()), "containerPath": "/dependency-learner"}]
