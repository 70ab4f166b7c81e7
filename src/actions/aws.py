"""AWS-side phase actions: credentials, backend discovery, locks and cleanup."""

import logging
import time
from dataclasses import dataclass

from botocore.exceptions import BotoCoreError, ClientError

from backend import BackendNotConfigured, discover_bootstrap_role, resolve_backend
from cloud import CredentialBroker, IdentityControlPlane, ParameterRegistry, StateStore
from common import ActionResult, count_outcomes
from config import OrchestratorConfig
from locks import clear_stale_locks
from sweep import sweep_all

logger = logging.getLogger(__name__)

_AWS_ERRORS = (ClientError, BotoCoreError)


@dataclass
class AssumeBootstrapRoleAction:
    """Switch to the foundation's bootstrap role when one is published.

    Running under the caller's own credentials is the fallback, so lookup
    and assumption failures only warn.
    """
    name: str

    def run(self, config: OrchestratorConfig, context: dict) -> ActionResult:
        start = time.time()
        try:
            role_arn = discover_bootstrap_role(ParameterRegistry(config), config)
        except _AWS_ERRORS as e:
            logger.warning(f"[{self.name}] Cannot look up bootstrap role: {e}")
            return ActionResult(
                success=True,
                degraded=True,
                message=f"Bootstrap role lookup failed, using current credentials: {e}",
                duration=time.time() - start
            )

        if not role_arn:
            return ActionResult(
                success=True,
                message="No bootstrap role published, using current credentials",
                duration=time.time() - start
            )

        logger.info(f"[{self.name}] Assuming bootstrap role {role_arn}...")
        try:
            credentials = CredentialBroker(config).assume_role(role_arn)
        except _AWS_ERRORS as e:
            logger.warning(f"[{self.name}] Cannot assume {role_arn}: {e}")
            return ActionResult(
                success=True,
                degraded=True,
                message=f"Cannot assume {role_arn}, using current credentials",
                duration=time.time() - start
            )

        config.use_assumed_role(role_arn, credentials)
        return ActionResult(
            success=True,
            message=f"Assumed {role_arn}",
            duration=time.time() - start,
            context_updates={'assumed_role_arn': role_arn}
        )


@dataclass
class DiscoverBackendAction:
    """Resolve the shared state channel from the parameter registry.

    With required=False (destroy), a missing foundation is a degraded
    success that leaves 'backend' out of the context.
    """
    name: str
    required: bool = True

    def run(self, config: OrchestratorConfig, context: dict) -> ActionResult:
        start = time.time()
        try:
            channel = resolve_backend(ParameterRegistry(config), config)
        except BackendNotConfigured as e:
            if self.required:
                return ActionResult(
                    success=False,
                    message=f"{e}\n  Deploy the foundation stack before deployment roles.",
                    duration=time.time() - start
                )
            print("⚠ Foundation backend not configured, skipping engine destroy")
            return ActionResult(
                success=True,
                degraded=True,
                message=str(e),
                duration=time.time() - start
            )
        except _AWS_ERRORS as e:
            return ActionResult(
                success=False,
                message=f"Cannot read backend configuration: {e}",
                duration=time.time() - start,
                continue_on_failure=not self.required
            )

        return ActionResult(
            success=True,
            message=f"Backend s3://{channel.object_store_location}/{channel.state_key}",
            duration=time.time() - start,
            context_updates={'backend': channel}
        )


@dataclass
class ClearStaleLocksAction:
    """Remove lock records left behind by crashed runs."""
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

        outcomes = clear_stale_locks(StateStore(config), channel)
        counts = count_outcomes(outcomes)
        if counts['failed']:
            return ActionResult(
                success=True,
                degraded=True,
                message=f"Cleared {counts['deleted']} locks, {counts['failed']} failed",
                duration=time.time() - start,
                context_updates={'lock_outcomes': outcomes}
            )
        return ActionResult(
            success=True,
            message=f"Cleared {counts['deleted']} stale locks",
            duration=time.time() - start,
            context_updates={'lock_outcomes': outcomes}
        )


@dataclass
class PurgeStateAction:
    """Delete this repository's state object, then its lock records."""
    name: str

    def run(self, config: OrchestratorConfig, context: dict) -> ActionResult:
        start = time.time()
        channel = context.get('backend')
        if channel is None:
            return ActionResult(
                success=True,
                degraded=True,
                message="No backend configured, nothing to purge",
                duration=time.time() - start
            )

        store = StateStore(config)
        bucket, key = channel.object_store_location, channel.state_key
        problems = []
        print("Cleaning up state file...")
        try:
            if store.object_exists(bucket, key):
                store.delete_object(bucket, key)
                print(f"  Deleted s3://{bucket}/{key}")
            else:
                print(f"  No state object at s3://{bucket}/{key}")
        except _AWS_ERRORS as e:
            print(f"  ⚠ Failed to delete state object: {e}")
            problems.append(f"state object: {e}")

        outcomes = clear_stale_locks(store, channel)
        problems += [f"lock {o.resource}: {o.detail}" for o in outcomes if o.failed]

        if problems:
            return ActionResult(
                success=True,
                degraded=True,
                message='; '.join(problems),
                duration=time.time() - start,
                context_updates={'purge_outcomes': outcomes}
            )
        return ActionResult(
            success=True,
            message=f"Purged state {key}",
            duration=time.time() - start,
            context_updates={'purge_outcomes': outcomes}
        )


@dataclass
class ManualSweepAction:
    """Delete every resource matching the naming conventions."""
    name: str

    def run(self, config: OrchestratorConfig, context: dict) -> ActionResult:
        start = time.time()
        outcomes = sweep_all(ParameterRegistry(config), IdentityControlPlane(config), config)
        counts = count_outcomes(outcomes)
        message = f"Deleted {counts['deleted']} resources"
        if counts['failed']:
            message += f", {counts['failed']} failed"
        return ActionResult(
            success=True,
            degraded=bool(counts['failed']),
            message=message,
            duration=time.time() - start,
            context_updates={'sweep_outcomes': outcomes}
        )
