"""Backend resolution for the apply engine's remote state.

The shared state channel (S3 bucket + DynamoDB lock table) is provisioned by
a separate foundation stack, which publishes its coordinates to the
parameter registry. Each hosting repository owns exactly one state object.
"""

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


class BackendNotConfigured(Exception):
    """Foundation backend coordinates are missing from the registry."""

    def __init__(self, missing: list[str]):
        self.missing = missing
        super().__init__(
            f"Foundation backend configuration not found: {', '.join(missing)}"
        )


@dataclass(frozen=True)
class StateChannelConfig:
    """Where the apply engine keeps its record of reality."""
    object_store_location: str  # S3 bucket
    lock_table_location: str    # DynamoDB table
    state_key: str

    def backend_args(self, region: str) -> list[str]:
        """Engine init arguments for an s3 backend."""
        return [
            f'-backend-config=bucket={self.object_store_location}',
            f'-backend-config=key={self.state_key}',
            f'-backend-config=region={region}',
            f'-backend-config=dynamodb_table={self.lock_table_location}',
        ]


@dataclass(frozen=True)
class LockRecord:
    """A lock table entry referencing a state key."""
    lock_id: str
    state_key: str


def state_key_for(org: str, repo: str, prefix: str = 'deployment-roles') -> str:
    """Derive the state object key for a hosting repository.

    GitHub org and repo names cannot contain '/', so keeping them as separate
    path segments gives every repository its own key.
    """
    return f'{prefix}/{org}/{repo}/terraform.tfstate'


def resolve_backend(registry, config) -> StateChannelConfig:
    """Read backend coordinates from the registry.

    Args:
        registry: ParameterRegistry
        config: OrchestratorConfig

    Raises:
        BackendNotConfigured: If either coordinate is absent
    """
    bucket = registry.get(config.state_bucket_parameter)
    table = registry.get(config.lock_table_parameter)

    missing = []
    if not bucket:
        missing.append(config.state_bucket_parameter)
    if not table:
        missing.append(config.lock_table_parameter)
    if missing:
        raise BackendNotConfigured(missing)

    org, repo = (config.repo.org, config.repo.name) if config.repo else ('unknown', 'unknown')
    channel = StateChannelConfig(
        object_store_location=bucket,
        lock_table_location=table,
        state_key=state_key_for(org, repo, config.state_key_prefix),
    )
    logger.debug(f"Resolved backend: {channel}")
    return channel


def discover_bootstrap_role(registry, config) -> Optional[str]:
    """Return the foundation's higher-privilege role ARN, if published."""
    return registry.get(config.bootstrap_role_parameter)
