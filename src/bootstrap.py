"""One-time bootstrap of the automation variable.

Writes the caller's AWS account id into the hosting repository's variable
store so CI workflows can build deployment role ARNs. Bootstrap needs
repository admin rights, which automated runs must not hold, so it only
ever runs interactively.
"""

import logging
from typing import Optional

from botocore.exceptions import BotoCoreError, ClientError

from cloud import CredentialBroker
from repo_variables import GitHubError, VariableStore, open_variable_store

logger = logging.getLogger(__name__)


class BootstrapError(Exception):
    """Bootstrap refused or failed."""


def bootstrap_automation_variable(config, store: Optional[VariableStore] = None,
                                  broker: Optional[CredentialBroker] = None) -> str:
    """Ensure the automation variable holds the caller's account id.

    Idempotent: the variable is written only when absent or different.

    Args:
        config: OrchestratorConfig
        store: Variable store override (defaults to the hosting repository)
        broker: Credential broker override

    Returns:
        Human-readable status message

    Raises:
        BootstrapError: In automation, without a variable store, or on API failure
    """
    if config.ci:
        raise BootstrapError(
            "Bootstrap cannot run in GitHub Actions.\n"
            "  Someone with repository admin permissions must run "
            "'deployment-roles bootstrap' locally."
        )
    if not config.interactive:
        raise BootstrapError(
            "Bootstrap requires an interactive session.\n"
            "  Run 'deployment-roles bootstrap' from a terminal."
        )

    if store is None:
        store = open_variable_store(config)
    if store is None:
        raise BootstrapError(
            "No GitHub credentials available for the variable store.\n"
            "  Authenticate with 'gh auth login' or set GH_TOKEN."
        )

    try:
        account_id = (broker or CredentialBroker(config)).caller_identity()['Account']
    except (ClientError, BotoCoreError) as e:
        raise BootstrapError(f"Cannot determine AWS account id: {e}") from e

    name = config.account_variable
    try:
        current = store.get(name)
        if current == account_id:
            return f"{name} already set to {account_id}"
        store.put(name, account_id)
    except GitHubError as e:
        raise BootstrapError(f"Cannot configure {name}: {e}") from e

    if current is None:
        return f"{name} set to {account_id}"
    return f"{name} updated from {current} to {account_id}"
