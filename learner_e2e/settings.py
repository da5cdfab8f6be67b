"""Harness settings and configuration management."""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class HarnessSettings(BaseSettings):
    """Harness settings loaded from environment variables."""

    # Cluster configuration
    kubeconfig: Optional[Path] = Field(
        default=None,
        description="Kubeconfig of an existing cluster; when unset a kind cluster is created",
    )

    cluster_name_prefix: str = Field(
        default="test-cluster-istio",
        description="Prefix of the generated kind cluster name",
    )

    kind_config: Optional[Path] = Field(
        default=None,
        description="Kind cluster config file; rendered from the WASM build dir when unset",
    )

    # Mesh versions
    istio_version: str = Field(
        default="1.22.0",
        description="Istio chart and image version",
    )

    istio_repo_url: str = Field(
        default="https://istio-release.storage.googleapis.com/charts",
        description="Helm repository hosting the Istio charts",
    )

    nginx_version: str = Field(
        default="1.25.5",
        description="Tag of the nginx image used for client and server workloads",
    )

    # Dependency learner filter
    wasm_build_dir: Optional[Path] = Field(
        default=None,
        description="Host directory holding the built dependency-learner component",
    )

    wasm_relative_path: str = Field(
        default="target/wasm32-wasi/release/dependency_learner.wasm",
        description="Path of the WASM module relative to the mount path",
    )

    response_header: str = Field(
        default="detected-dependency",
        description="Response header the filter stamps with the learned dependency",
    )

    # Timing
    wait_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Readiness wait timeout in seconds",
    )

    poll_interval: float = Field(
        default=2.0,
        gt=0,
        description="Readiness poll interval in seconds",
    )

    exec_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Timeout for commands executed inside workloads",
    )

    request_timeout: float = Field(
        default=30.0,
        gt=0,
        description="Timeout in seconds of each API server request",
    )

    cli_timeout: int = Field(
        default=600,
        gt=0,
        description="Timeout in seconds for kind and helm invocations",
    )

    keep_cluster: bool = Field(
        default=False,
        description="Skip cluster destruction at the end of the run",
    )

    class Config:
        """Pydantic settings configuration."""

        env_prefix = "LEARNER_E2E_"
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = HarnessSettings()
