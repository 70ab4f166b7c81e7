"""Run reports for deploy and destroy.

A report is always built in memory (the CLI prints it with --json-output).
Files are written only when a report directory was requested, so a normal
run never leaves untracked files in the repository it manages.
"""

import json
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from common import ActionResult, ResourceOutcome

PASSED = 'passed'
DEGRADED = 'degraded'
FAILED = 'failed'
SKIPPED = 'skipped'

_MARKS = {PASSED: '✓', DEGRADED: '⚠', FAILED: '✗', SKIPPED: '-'}


@dataclass
class PhaseResult:
    """Recorded outcome of one phase."""
    name: str
    description: str
    status: str
    message: str = ''
    duration: float = 0.0

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'description': self.description,
            'status': self.status,
            'message': self.message,
            'duration': round(self.duration, 1),
        }


def _status_for(result: ActionResult) -> str:
    if not result.success:
        return FAILED
    return DEGRADED if result.degraded else PASSED


def _outcomes_to_dicts(outcomes: list[ResourceOutcome]) -> list[dict]:
    return [
        {'kind': o.kind, 'resource': o.resource, 'outcome': o.outcome, 'detail': o.detail}
        for o in outcomes
    ]


@dataclass
class RunReport:
    repository: str
    scenario: str = ''
    report_dir: Optional[Path] = None
    phases: list[PhaseResult] = field(default_factory=list)
    started_at: Optional[datetime] = None
    success: bool = False

    _current: Optional[tuple[str, str, float]] = field(default=None, repr=False)
    _elapsed: float = field(default=0.0, repr=False)

    def start(self):
        self.started_at = datetime.now()
        self._elapsed = time.time()

    def start_phase(self, name: str, description: str):
        self._current = (name, description, time.time())

    def record(self, name: str, result: ActionResult) -> PhaseResult:
        """Record a finished phase from its action result."""
        description, began = name, time.time()
        if self._current and self._current[0] == name:
            _, description, began = self._current
        phase = PhaseResult(
            name=name,
            description=description,
            status=_status_for(result),
            message=result.message,
            duration=result.duration or time.time() - began,
        )
        self.phases.append(phase)
        self._current = None
        return phase

    def skip_phase(self, name: str, description: str):
        self.phases.append(PhaseResult(name=name, description=description, status=SKIPPED))

    def count(self, status: str) -> int:
        return sum(1 for p in self.phases if p.status == status)

    def summary(self) -> str:
        """One-line tally, e.g. '6 passed, 1 degraded, 0 failed in 12.3s'."""
        return (
            f"{self.count(PASSED)} passed, {self.count(DEGRADED)} degraded, "
            f"{self.count(FAILED)} failed in {self._elapsed:.1f}s"
        )

    def finish(self, success: bool):
        """Close the run; write report files if a report dir was given."""
        self.success = success
        if self._elapsed:
            self._elapsed = time.time() - self._elapsed
        if self.report_dir:
            self.report_dir.mkdir(parents=True, exist_ok=True)
            stem = self._report_stem()
            (self.report_dir / f'{stem}.json').write_text(
                json.dumps(self.to_dict(), indent=2), encoding='utf-8')
            (self.report_dir / f'{stem}.md').write_text(self.to_markdown(), encoding='utf-8')

    def _report_stem(self) -> str:
        """e.g. 20260101-120000.destroy.passed"""
        stamp = self.started_at.strftime('%Y%m%d-%H%M%S') if self.started_at else 'unknown'
        return f"{stamp}.{self.scenario}.{PASSED if self.success else FAILED}"

    def to_markdown(self) -> str:
        lines = [
            f"# {self.scenario}: {self.repository}",
            "",
            f"- Result: {'PASSED' if self.success else 'FAILED'}",
            f"- Started: {self.started_at.isoformat(timespec='seconds') if self.started_at else 'n/a'}",
            f"- Phases: {self.summary()}",
            "",
            "| Phase | Result | Duration | Message |",
            "|-------|--------|----------|---------|",
        ]
        for p in self.phases:
            message = p.message.replace('\n', ' ').replace('|', '\\|')
            lines.append(f"| {p.name} | {_MARKS[p.status]} {p.status} | {p.duration:.1f}s | {message} |")
        return '\n'.join(lines) + '\n'

    def to_dict(self, context: Optional[dict] = None) -> dict:
        """Report as a JSON-ready dict.

        Args:
            context: Run context; resource outcome lists are flattened and
                values that cannot be serialized are dropped.
        """
        data = {
            'repository': self.repository,
            'scenario': self.scenario,
            'success': self.success,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'duration_seconds': round(self._elapsed, 1),
            'phases': [p.to_dict() for p in self.phases],
        }
        failed = next((p for p in self.phases if p.status == FAILED and p.message), None)
        if failed and not self.success:
            data['error'] = failed.message

        if context:
            results = {}
            for key, value in context.items():
                if isinstance(value, list) and value and all(isinstance(v, ResourceOutcome) for v in value):
                    value = _outcomes_to_dicts(value)
                try:
                    json.dumps(value)
                except (TypeError, ValueError):
                    continue
                results[key] = value
            if results:
                data['context'] = results
        return data
