"""Prerequisite gate for lifecycle scenarios."""

import logging
import time
from dataclasses import dataclass

from bootstrap import BootstrapError, bootstrap_automation_variable
from common import ActionResult
from config import OrchestratorConfig
from validation import format_prerequisite_results, run_prerequisite_checks

logger = logging.getLogger(__name__)


@dataclass
class PrerequisiteAction:
    """Run the prerequisite checks, bootstrapping at most once.

    When the only thing standing in the way is the missing automation
    variable and a human is at the terminal, bootstrap runs once and the
    checks run once more. Nothing loops.
    """
    name: str
    remediate: bool = True

    def run(self, config: OrchestratorConfig, context: dict) -> ActionResult:
        start = time.time()
        report = run_prerequisite_checks(config)
        print(format_prerequisite_results(report))

        if not report.passed and self.remediate and report.only_bootstrap_missing \
                and config.interactive and not config.ci:
            logger.info(f"[{self.name}] Automation variable missing, running bootstrap...")
            try:
                print(bootstrap_automation_variable(config))
            except BootstrapError as e:
                return ActionResult(
                    success=False,
                    message=f"Bootstrap failed: {e}",
                    duration=time.time() - start
                )
            logger.info(f"[{self.name}] Re-verifying prerequisites...")
            report = run_prerequisite_checks(config)
            print(format_prerequisite_results(report))

        if not report.passed:
            return ActionResult(
                success=False,
                message=f"{len(report.failures)} prerequisite checks failed: "
                        f"{', '.join(r.name for r in report.failures)}",
                duration=time.time() - start
            )
        return ActionResult(
            success=True,
            degraded=bool(report.warnings),
            message=f"All prerequisites satisfied ({len(report.warnings)} warnings)",
            duration=time.time() - start
        )
