"""Orchestrator configuration and execution context.

Configuration is resolved from, in order of precedence:
- DEPLOYMENT_ROLES_* environment variables
- deployment-roles.yaml at the project root (optional)
- built-in defaults

The resulting OrchestratorConfig is the execution context threaded through
every component: project root, hosting repository identity, control-plane
region, naming conventions, a snapshot of the process environment and the
active AWS session. Nothing reads os.environ or the working directory
behind its back.
"""

import os
import re
import sys
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Optional

import boto3
import yaml

from common import run_command

CONFIG_FILENAME = 'deployment-roles.yaml'
DEFAULT_REGION = 'us-east-1'

# github.com:org/repo.git, https://github.com/org/repo, ssh://git@github.com/org/repo.git
_GITHUB_REMOTE_RE = re.compile(r'github\.com[:/]([^/]+)/([^/]+?)(?:\.git)?/?$')


class ConfigError(Exception):
    """Configuration error."""


@dataclass(frozen=True)
class RepoIdentity:
    """Identity of the repository hosting the orchestrator."""
    org: str
    name: str

    @property
    def full_name(self) -> str:
        return f'{self.org}/{self.name}'


def parse_github_remote(url: str) -> Optional[RepoIdentity]:
    """Parse org/repo from a GitHub remote URL. Returns None if not GitHub."""
    match = _GITHUB_REMOTE_RE.search(url.strip())
    if not match:
        return None
    return RepoIdentity(org=match.group(1), name=match.group(2))


def detect_repo_identity(root: Path, env: dict) -> Optional[RepoIdentity]:
    """Detect the hosting repository from the origin remote.

    Falls back to GITHUB_REPOSITORY (set by GitHub Actions) when the
    checkout has no usable origin remote.
    """
    rc, out, _ = run_command(['git', 'remote', 'get-url', 'origin'], cwd=root, timeout=30)
    if rc == 0 and out.strip():
        identity = parse_github_remote(out)
        if identity:
            return identity

    if full_name := env.get('GITHUB_REPOSITORY'):
        if full_name.count('/') == 1:
            org, name = full_name.split('/')
            return RepoIdentity(org=org, name=name)

    return None


@dataclass
class OrchestratorConfig:
    """Execution context for a single orchestrator run."""
    root: Path
    repo: Optional[RepoIdentity] = None
    region: str = DEFAULT_REGION

    # Foundation parameters (shared state channel + optional bootstrap role)
    state_bucket_parameter: str = '/terraform/foundation/s3-state-bucket'
    lock_table_parameter: str = '/terraform/foundation/dynamodb-lock-table'
    bootstrap_role_parameter: str = '/terraform/foundation/deployment-roles-role-arn'

    # Naming conventions
    registry_prefix: str = '/deployment-roles'
    role_prefix: str = 'gharole-'
    policy_prefix: str = 'ghpolicy-'
    state_key_prefix: str = 'deployment-roles'
    account_variable: str = 'AWS_ACCOUNT_ID'
    oidc_audience: str = 'sts.amazonaws.com'
    expected_tags: list = field(default_factory=lambda: ['Project', 'Environment'])

    # Project tree layout
    projects_dir: str = 'projects'
    template_dir: str = 'templates/new-project'
    required_files: list = field(default_factory=lambda: ['main.tf'])

    env: dict = field(default_factory=dict)
    interactive: bool = False

    # AWS session; replaced when a bootstrap role is assumed
    session: Any = field(default=None, repr=False)
    assumed_role_arn: str = ''
    _assumed_credentials: dict = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        if isinstance(self.root, str):
            self.root = Path(self.root)

    @property
    def ci(self) -> bool:
        """True when running inside unattended automation (GitHub Actions)."""
        return self.env.get('GITHUB_ACTIONS') == 'true'

    @property
    def repo_project(self) -> Optional[str]:
        """Project name the hosting repository would have as a descriptor."""
        return self.repo.name if self.repo else None

    @property
    def projects_root(self) -> Path:
        return self.root / self.projects_dir

    def get_session(self):
        """Return the active boto3 session, creating one lazily."""
        if self.session is None:
            self.session = boto3.session.Session(region_name=self.region)
        return self.session

    def client(self, service: str):
        """Create a boto3 client for the control-plane region."""
        return self.get_session().client(service, region_name=self.region)

    def use_assumed_role(self, role_arn: str, credentials: dict) -> None:
        """Switch the context to temporary credentials from an assumed role.

        Args:
            role_arn: ARN of the assumed role
            credentials: STS Credentials dict (AccessKeyId, SecretAccessKey, SessionToken)
        """
        self.session = boto3.session.Session(
            aws_access_key_id=credentials['AccessKeyId'],
            aws_secret_access_key=credentials['SecretAccessKey'],
            aws_session_token=credentials['SessionToken'],
            region_name=self.region,
        )
        self.assumed_role_arn = role_arn
        self._assumed_credentials = {
            'AWS_ACCESS_KEY_ID': credentials['AccessKeyId'],
            'AWS_SECRET_ACCESS_KEY': credentials['SecretAccessKey'],
            'AWS_SESSION_TOKEN': credentials['SessionToken'],
        }

    def subprocess_env(self) -> dict:
        """Environment for child processes (apply engine, CLIs)."""
        env = {**self.env, 'AWS_PAGER': ''}
        env.update(self._assumed_credentials)
        return env


# Keys deployment-roles.yaml may override
_OVERRIDABLE = {
    f.name for f in fields(OrchestratorConfig)
    if f.name not in ('root', 'repo', 'env', 'interactive', 'session',
                      'assumed_role_arn', '_assumed_credentials')
}


def _parse_yaml(path: Path) -> dict:
    """Parse a YAML file and return contents."""
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping, got {type(data).__name__}")
    return data


def load_config(
    root: Optional[Path] = None,
    env: Optional[dict] = None,
    interactive: Optional[bool] = None,
    repo: Optional[RepoIdentity] = None,
) -> OrchestratorConfig:
    """Build the execution context for a run.

    Args:
        root: Project root (defaults to the current working directory)
        env: Environment snapshot (defaults to a copy of os.environ)
        interactive: Override TTY detection
        repo: Override repository identity (skips git remote detection)

    Raises:
        ConfigError: On invalid deployment-roles.yaml
    """
    root = Path(root) if root else Path.cwd()
    env = dict(os.environ) if env is None else dict(env)

    overrides: dict = {}
    config_file = root / CONFIG_FILENAME
    if config_file.exists():
        overrides = _parse_yaml(config_file)
        unknown = sorted(set(overrides) - _OVERRIDABLE)
        if unknown:
            raise ConfigError(
                f"Unknown keys in {CONFIG_FILENAME}: {', '.join(unknown)}\n"
                f"  Allowed: {', '.join(sorted(_OVERRIDABLE))}"
            )

    if region := env.get('DEPLOYMENT_ROLES_REGION'):
        overrides['region'] = region

    if repo is None:
        repo = detect_repo_identity(root, env)

    config = OrchestratorConfig(root=root, repo=repo, env=env, **overrides)

    if interactive is None:
        interactive = sys.stdin.isatty() and not config.ci
    config.interactive = interactive
    return config
