"""Scenario registry and the phase runner shared by deploy and destroy."""

import logging
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from common import ActionResult
from config import OrchestratorConfig
from reporting import RunReport

logger = logging.getLogger(__name__)


class SkipPhaseError(ValueError):
    """A phase named for skipping cannot be skipped."""


class UnknownPhaseError(SkipPhaseError):
    """A phase named for skipping does not exist in the scenario."""


class RequiredPhaseError(SkipPhaseError):
    """A phase named for skipping gates the whole run."""


# Phases every run must execute
NON_SKIPPABLE = frozenset({'prerequisites'})


@runtime_checkable
class Scenario(Protocol):
    """A named, ordered list of phases.

    get_phases returns (phase_name, action, description) tuples; each action
    has run(config, context) -> ActionResult.
    """
    name: str
    description: str

    def get_phases(self, config: OrchestratorConfig) -> list[tuple[str, Any, str]]:
        ...


class Orchestrator:
    """Runs one scenario's phases against one execution context.

    Phases share a context dict that each successful result extends. A
    failed phase ends the run unless its result sets continue_on_failure,
    in which case later phases still run but the run reports failure.
    Degraded phases count as passed.
    """

    def __init__(
        self,
        scenario: Scenario,
        config: OrchestratorConfig,
        report_dir: Optional[Path] = None,
        skip_phases: Optional[list[str]] = None,
        dry_run: bool = False
    ):
        self.scenario = scenario
        self.config = config
        self.skip_phases = set(skip_phases or [])
        self.dry_run = dry_run
        self.context: dict[str, Any] = {}
        self.report = RunReport(
            repository=config.repo.full_name if config.repo else str(config.root),
            scenario=scenario.name,
            report_dir=report_dir,
        )

    def phases(self) -> list[tuple[str, Any, str]]:
        """Scenario phases, after validating the skip list.

        Raises:
            RequiredPhaseError: If a phase in NON_SKIPPABLE is skipped
            UnknownPhaseError: If a skipped phase name is not in the scenario
        """
        required = sorted(self.skip_phases & NON_SKIPPABLE)
        if required:
            raise RequiredPhaseError(f"Phase(s) cannot be skipped: {', '.join(required)}")
        phases = self.scenario.get_phases(self.config)
        unknown = sorted(self.skip_phases - {name for name, _, _ in phases})
        if unknown:
            names = ', '.join(name for name, _, _ in phases)
            raise UnknownPhaseError(
                f"Unknown phase(s) for {self.scenario.name}: {', '.join(unknown)}\n"
                f"  Available: {names}"
            )
        return phases

    def preview(self) -> bool:
        """Print the phase plan without executing anything."""
        phases = self.phases()
        print(f"\n{self.scenario.name} for {self.report.repository} (dry run, nothing executed)\n")
        for index, (name, action, description) in enumerate(phases, 1):
            mark = 'skip' if name in self.skip_phases else 'run '
            print(f"  {index}. [{mark}] {name}: {description} ({type(action).__name__})")
        to_run = sum(1 for name, _, _ in phases if name not in self.skip_phases)
        print(f"\n  {to_run} phase(s) to run, {len(phases) - to_run} skipped\n")
        return True

    def _execute(self, name: str, action) -> ActionResult:
        try:
            return action.run(self.config, self.context)
        except Exception as e:  # pylint: disable=broad-except
            logger.exception(f"[{self.scenario.name}] Phase {name} raised")
            return ActionResult(success=False, message=str(e))

    def run(self) -> bool:
        """Run all phases. Returns True if no phase failed."""
        if self.dry_run:
            return self.preview()

        phases = self.phases()
        logger.info(f"[{self.scenario.name}] Starting for {self.report.repository}")
        self.report.start()
        try:
            ok = self._run_phases(phases)
        finally:
            self._cleanup(phases)

        self.report.finish(ok)
        logger.info(f"[{self.scenario.name}] {self.report.summary()}")
        return ok

    def _cleanup(self, phases) -> None:
        """Give every action with a cleanup(context) hook a chance to release resources."""
        for name, action, _ in phases:
            cleanup = getattr(action, 'cleanup', None)
            if cleanup is None:
                continue
            try:
                cleanup(self.context)
            except Exception:  # pylint: disable=broad-except
                logger.exception(f"[{self.scenario.name}] Cleanup for {name} raised")

    def _run_phases(self, phases) -> bool:
        ok = True
        for name, action, description in phases:
            if name in self.skip_phases:
                logger.info(f"[{self.scenario.name}] Skipping {name}")
                self.report.skip_phase(name, description)
                continue

            logger.info(f"[{self.scenario.name}] {name}: {description}")
            self.report.start_phase(name, description)
            result = self._execute(name, action)
            phase = self.report.record(name, result)

            if result.success:
                if phase.status == 'degraded':
                    logger.warning(f"[{self.scenario.name}] {name} degraded: {result.message}")
                self.context.update(result.context_updates)
                continue

            logger.error(f"[{self.scenario.name}] {name} failed: {result.message}")
            ok = False
            if not result.continue_on_failure:
                break
        return ok


_scenarios: dict[str, type[Scenario]] = {}


def register_scenario(cls: type[Scenario]) -> type[Scenario]:
    _scenarios[cls.name] = cls
    return cls


def get_scenario(name: str) -> Scenario:
    """Instantiate a registered scenario.

    Raises:
        ValueError: If no scenario has that name
    """
    try:
        return _scenarios[name]()
    except KeyError:
        raise ValueError(f"Unknown scenario: {name}. Available: {list_scenarios()}") from None


def list_scenarios() -> list[str]:
    return sorted(_scenarios)


# Registration happens on import
from scenarios import deploy  # noqa: E402, F401
from scenarios import destroy  # noqa: E402, F401
