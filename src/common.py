"""Common utilities and types for deployment role orchestration."""

import logging
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class ActionResult:
    """Result returned by an action.

    A degraded result is a success that lost capability along the way
    (e.g. fell back to ambient credentials, engine destroy failed but the
    manual sweep still ran).
    """
    success: bool
    message: str = ''
    duration: float = 0.0
    context_updates: dict = field(default_factory=dict)
    continue_on_failure: bool = False
    degraded: bool = False


@dataclass
class ResourceOutcome:
    """Outcome of a single best-effort operation on a cloud resource."""
    kind: str      # 'parameter', 'role', 'policy', 'lock', 'state'
    resource: str
    outcome: str   # 'deleted', 'failed', 'skipped'
    detail: str = ''

    @property
    def failed(self) -> bool:
        return self.outcome == 'failed'


def count_outcomes(outcomes: list[ResourceOutcome]) -> dict[str, int]:
    """Tally outcomes by status."""
    counts = {'deleted': 0, 'failed': 0, 'skipped': 0}
    for item in outcomes:
        counts[item.outcome] = counts.get(item.outcome, 0) + 1
    return counts


def run_command(
    cmd: list[str],
    cwd: Optional[Path] = None,
    timeout: int = 600,
    capture: bool = True,
    env: Optional[dict] = None
) -> tuple[int, str, str]:
    """Run a command and return (returncode, stdout, stderr)."""
    logger.debug(f"Running: {' '.join(cmd)}")
    try:
        result = subprocess.run(
            cmd,
            cwd=cwd,
            capture_output=capture,
            text=True,
            timeout=timeout,
            env=env,
            check=False  # We handle return codes explicitly
        )
        return result.returncode, result.stdout, result.stderr
    except subprocess.TimeoutExpired:
        return -1, '', f'Command timed out after {timeout}s'
    except Exception as e:
        return -1, '', str(e)


def tool_available(name: str) -> bool:
    """Check whether an executable is on PATH."""
    return shutil.which(name) is not None


def tool_version(cmd: list[str]) -> str:
    """Return the first line of a tool's version output, or '' on failure."""
    rc, out, err = run_command(cmd, timeout=30)
    if rc != 0:
        return ''
    text = (out or err).strip()
    return text.splitlines()[0] if text else ''
