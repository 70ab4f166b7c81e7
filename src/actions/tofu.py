"""OpenTofu actions driving the deployment role resource graph."""

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from cloud import CredentialBroker
from common import ActionResult, run_command, tool_available
from config import OrchestratorConfig
from descriptors import desired_roles, scan_projects, validate_role_name
from guard import find_self_references

logger = logging.getLogger(__name__)


def detect_engine_binary() -> str:
    """Prefer OpenTofu, fall back to Terraform."""
    if tool_available('tofu'):
        return 'tofu'
    if tool_available('terraform'):
        return 'terraform'
    return 'tofu'


def create_temp_file(prefix: str, suffix: str) -> Path:
    """Create a unique temporary file outside the repository.

    Keeps the working tree clean so the next run's untracked-files check
    does not trip over leftovers. Caller is responsible for cleanup.
    """
    fd, path = tempfile.mkstemp(prefix=prefix, suffix=suffix)
    os.close(fd)
    return Path(path)


def _unlink(path: Optional[Path]) -> None:
    if path and path.exists():
        path.unlink()


@dataclass
class EngineResult:
    """Outcome of an engine command."""
    success: bool
    changes: bool = False
    output: str = ''
    error: str = ''


class TofuEngine:
    """Narrow interface to the declarative apply engine."""

    def __init__(self, workdir: Path, env: Optional[dict] = None, binary: Optional[str] = None,
                 timeout_init: int = 300, timeout_apply: int = 1800):
        self.workdir = workdir
        self.env = env
        self.binary = binary or detect_engine_binary()
        self.timeout_init = timeout_init
        self.timeout_apply = timeout_apply

    def _run(self, args: list[str], timeout: int) -> tuple[int, str, str]:
        return run_command([self.binary, *args], cwd=self.workdir, timeout=timeout, env=self.env)

    def init(self, channel, region: str) -> EngineResult:
        """Configure the remote backend (always reconfigures)."""
        rc, out, err = self._run(
            ['init', '-input=false', '-reconfigure', *channel.backend_args(region)],
            self.timeout_init,
        )
        return EngineResult(success=rc == 0, output=out, error=err)

    def plan(self, var_file: Path, plan_file: Path) -> EngineResult:
        """Plan with -detailed-exitcode: 0 = no changes, 2 = changes present."""
        rc, out, err = self._run(
            ['plan', '-input=false', '-detailed-exitcode',
             f'-out={plan_file}', f'-var-file={var_file}'],
            self.timeout_apply,
        )
        if rc in (0, 2):
            return EngineResult(success=True, changes=rc == 2, output=out)
        return EngineResult(success=False, output=out, error=err)

    def apply(self, plan_file: Path) -> EngineResult:
        rc, out, err = self._run(
            ['apply', '-input=false', '-auto-approve', str(plan_file)],
            self.timeout_apply,
        )
        return EngineResult(success=rc == 0, changes=rc == 0, output=out, error=err)

    def destroy(self, var_file: Optional[Path] = None) -> EngineResult:
        args = ['destroy', '-input=false', '-auto-approve']
        if var_file:
            args.append(f'-var-file={var_file}')
        rc, out, err = self._run(args, self.timeout_apply)
        return EngineResult(success=rc == 0, output=out, error=err)

    def outputs(self) -> dict:
        """Named output values from the engine state ({} when unavailable)."""
        rc, out, _ = self._run(['output', '-json'], self.timeout_init)
        if rc != 0:
            return {}
        try:
            raw = json.loads(out or '{}')
        except json.JSONDecodeError:
            return {}
        return {name: item.get('value') for name, item in raw.items()}


def engine_for(config: OrchestratorConfig) -> TofuEngine:
    return TofuEngine(config.root, env=config.subprocess_env())


def _account_id(config: OrchestratorConfig, context: dict) -> str:
    if account_id := context.get('account_id'):
        return account_id
    return CredentialBroker(config).caller_identity()['Account']


def write_tfvars(config: OrchestratorConfig, account_id: str) -> tuple[Path, dict]:
    """Write the desired role set as a tfvars JSON file.

    Returns:
        (path, roles) tuple; roles maps descriptor key to RoleResource
    """
    descriptors = scan_projects(config.projects_root)
    roles = desired_roles(descriptors, config, account_id)
    tfvars = {
        'github_org': config.repo.org if config.repo else '',
        'github_repo': config.repo.name if config.repo else '',
        'projects': {
            key: {
                'project_name': d.project_name,
                'environment': d.environment,
                'policy_document_path': str(d.policy_document_path.relative_to(config.root)),
            }
            for key, d in sorted(descriptors.items())
        },
        'roles': {key: role.to_tfvars() for key, role in roles.items()},
    }
    path = create_temp_file('tfvars-deployment-roles-', '.tfvars.json')
    with open(path, 'w', encoding='utf-8') as f:
        json.dump(tfvars, f, indent=2)
    return path, roles


@dataclass
class TofuInitAction:
    """Initialize the engine against the resolved remote backend."""
    name: str

    def run(self, config: OrchestratorConfig, context: dict) -> ActionResult:
        start = time.time()
        channel = context.get('backend')
        if channel is None:
            return ActionResult(
                success=False,
                message="No backend in context",
                duration=time.time() - start
            )

        logger.info(f"[{self.name}] Running {engine_for(config).binary} init (key: {channel.state_key})...")
        result = engine_for(config).init(channel, config.region)
        if not result.success:
            return ActionResult(
                success=False,
                message=f"init failed: {result.error.strip()}",
                duration=time.time() - start
            )
        return ActionResult(
            success=True,
            message=f"Engine initialized with state key {channel.state_key}",
            duration=time.time() - start
        )


@dataclass
class TofuPlanAction:
    """Plan the desired role set.

    Refuses to plan when any descriptor targets the hosting repository or
    would derive a role name over the IAM length limit, so neither can ever
    reach the engine.
    """
    name: str

    def run(self, config: OrchestratorConfig, context: dict) -> ActionResult:
        start = time.time()

        descriptors = scan_projects(config.projects_root)
        offenders = find_self_references(config.repo_project, descriptors.values())
        if offenders:
            return ActionResult(
                success=False,
                message=f"Self-deployment descriptors present: {', '.join(offenders)}",
                duration=time.time() - start
            )

        name_errors = [
            error for d in descriptors.values()
            if (error := validate_role_name(f'{config.role_prefix}{d.project_name}-{d.environment}'))
        ]
        if name_errors:
            return ActionResult(
                success=False,
                message='; '.join(name_errors),
                duration=time.time() - start
            )

        try:
            account_id = _account_id(config, context)
        except (ClientError, BotoCoreError) as e:
            return ActionResult(
                success=False,
                message=f"Cannot determine AWS account id: {e}",
                duration=time.time() - start
            )

        tfvars_path, roles = write_tfvars(config, account_id)
        plan_file = create_temp_file('tfplan-deployment-roles-', '.plan')
        logger.info(f"[{self.name}] Planning {len(roles)} deployment roles...")
        try:
            result = engine_for(config).plan(tfvars_path, plan_file)
        finally:
            _unlink(tfvars_path)

        if not result.success:
            _unlink(plan_file)
            return ActionResult(
                success=False,
                message=f"plan failed: {result.error.strip()}",
                duration=time.time() - start
            )

        summary = "changes pending" if result.changes else "no changes"
        return ActionResult(
            success=True,
            message=f"Planned {len(roles)} roles ({summary})",
            duration=time.time() - start,
            context_updates={
                'plan_file': str(plan_file),
                'plan_changes': result.changes,
                'desired_roles': sorted(r.role_name for r in roles.values()),
                'account_id': account_id,
            }
        )

    def cleanup(self, context: dict) -> None:
        """Remove a plan file no apply consumed (skipped or failed apply)."""
        if context.get('plan_file'):
            _unlink(Path(context['plan_file']))


@dataclass
class TofuApplyAction:
    """Apply the saved plan."""
    name: str

    def run(self, config: OrchestratorConfig, context: dict) -> ActionResult:
        start = time.time()
        plan_file = Path(context['plan_file']) if context.get('plan_file') else None
        if plan_file is None:
            return ActionResult(
                success=False,
                message="No plan in context",
                duration=time.time() - start
            )

        try:
            if not context.get('plan_changes', True):
                return ActionResult(
                    success=True,
                    message="No changes; desired state already applied",
                    duration=time.time() - start
                )
            logger.info(f"[{self.name}] Applying plan {plan_file}...")
            result = engine_for(config).apply(plan_file)
        finally:
            _unlink(plan_file)

        if not result.success:
            return ActionResult(
                success=False,
                message=f"apply failed: {result.error.strip()}",
                duration=time.time() - start
            )
        return ActionResult(
            success=True,
            message=f"Applied {len(context.get('desired_roles', []))} deployment roles",
            duration=time.time() - start
        )


@dataclass
class TofuDestroyAction:
    """Best-effort engine destroy; failures fall through to the manual sweep."""
    name: str

    def run(self, config: OrchestratorConfig, context: dict) -> ActionResult:
        start = time.time()
        channel = context.get('backend')
        if channel is None:
            return ActionResult(
                success=True,
                degraded=True,
                message="No backend configured, skipping engine destroy",
                duration=time.time() - start,
                context_updates={'engine_destroyed': False}
            )

        engine = engine_for(config)
        logger.info(f"[{self.name}] Running {engine.binary} init (key: {channel.state_key})...")
        init = engine.init(channel, config.region)
        if not init.success:
            print("⚠ Engine init failed, proceeding with manual cleanup...")
            return ActionResult(
                success=True,
                degraded=True,
                message=f"init failed, continuing with manual sweep: {init.error.strip()}",
                duration=time.time() - start,
                context_updates={'engine_destroyed': False}
            )

        tfvars_path = None
        try:
            try:
                tfvars_path, _ = write_tfvars(config, _account_id(config, context))
            except (ClientError, BotoCoreError) as e:
                logger.warning(f"[{self.name}] Destroying without tfvars: {e}")
            result = engine.destroy(tfvars_path)
        finally:
            _unlink(tfvars_path)

        if not result.success:
            print("⚠ Engine destroy had issues, continuing with manual cleanup...")
            return ActionResult(
                success=True,
                degraded=True,
                message=f"destroy failed, continuing with manual sweep: {result.error.strip()}",
                duration=time.time() - start,
                context_updates={'engine_destroyed': False}
            )
        return ActionResult(
            success=True,
            message="Engine destroy completed",
            duration=time.time() - start,
            context_updates={'engine_destroyed': True}
        )
