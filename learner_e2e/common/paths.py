"""Centralized path configuration for the harness.

Single source of truth for the locations the harness reads from and writes
to: the dependency-learner build output mounted into the cluster nodes, the
rendered kind cluster config, and the run results directory.
"""

from pathlib import Path


class ProjectPaths:
    """Project directory structure paths."""

    def __init__(self, base_path: Path | None = None):
        """Initialize project paths.

        Args:
            base_path: Optional base path for the project root.
                      If None, auto-detects from this file's location.
        """
        if base_path is None:
            # Auto-detect: go up from learner_e2e/common/paths.py to repository root
            self.root = Path(__file__).parent.parent.parent
        else:
            self.root = base_path

        self.package = self.root / "learner_e2e"
        self.tests = self.root / "tests"

        # Dependency learner component (built separately)
        self.components = self.root / "components"
        self.dependency_learner = self.components / "dependency-learner"

        # Generated files
        self.build = self.root / "build"
        self.kind_config = self.build / "kind-cluster.yaml"
        self.results = self.build / "results"

    def ensure_build_dirs(self) -> None:
        """Ensure generated-file directories exist."""
        self.results.mkdir(parents=True, exist_ok=True)

    def validate(self) -> list[str]:
        """Validate that the paths a live run needs exist.

        Returns:
            List of missing critical paths (empty if all exist).
        """
        critical_paths = [
            ("Root directory", self.root),
            ("Dependency learner component", self.dependency_learner),
        ]

        missing = []
        for name, path in critical_paths:
            if not path.exists():
                missing.append(f"{name}: {path}")

        return missing


# Global singleton instance
paths = ProjectPaths()
