"""Subprocess wrapper shared by the CLI-backed collaborators."""

import logging
import subprocess
from typing import List, Optional

from learner_e2e.errors import CollaboratorError
from learner_e2e.settings import settings

logger = logging.getLogger(__name__)


def run_cli(cmd: List[str], timeout: Optional[int] = None) -> subprocess.CompletedProcess:
    """Run ``cmd`` and return the completed process.

    Raises:
        CollaboratorError: the binary is missing, timed out or exited non-zero.
    """
    logger.info(f"Running: {' '.join(cmd)}")
    try:
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=True,
            timeout=timeout or settings.cli_timeout,
        )
    except subprocess.CalledProcessError as e:
        raise CollaboratorError(
            f"{cmd[0]} exited with {e.returncode}", cmd, e.stderr or ""
        ) from e
    except subprocess.TimeoutExpired as e:
        raise CollaboratorError(f"{cmd[0]} timed out after {e.timeout}s", cmd) from e
    except FileNotFoundError as e:
        raise CollaboratorError(f"{cmd[0]} not found on PATH", cmd) from e
