"""Stale lock cleanup for the shared state channel.

A run that crashes mid-apply leaves its lock behind and every later run
would wait on it forever. Before initializing the engine, every lock that
references this repository's state key is removed. Mutual exclusion between
runs is left to operational convention: one run per repository at a time.
"""

import logging

from botocore.exceptions import BotoCoreError, ClientError

from backend import LockRecord, StateChannelConfig
from common import ResourceOutcome

logger = logging.getLogger(__name__)


def find_locks(store, channel: StateChannelConfig) -> list[LockRecord]:
    """List lock records whose id contains the state key."""
    return [
        LockRecord(lock_id=lock_id, state_key=channel.state_key)
        for lock_id in store.scan_locks(channel.lock_table_location, channel.state_key)
        if channel.state_key in lock_id
    ]


def clear_stale_locks(store, channel: StateChannelConfig) -> list[ResourceOutcome]:
    """Delete every lock record for the channel's state key.

    Args:
        store: StateStore
        channel: Resolved backend

    Returns:
        One outcome per lock found. Scan failures yield a single failed
        outcome for the table.
    """
    try:
        records = find_locks(store, channel)
    except (ClientError, BotoCoreError) as e:
        logger.warning(f"Cannot scan lock table {channel.lock_table_location}: {e}")
        return [ResourceOutcome('lock', channel.lock_table_location, 'failed', str(e))]

    outcomes = []
    for record in records:
        try:
            store.delete_lock(channel.lock_table_location, record.lock_id)
            print(f"  Cleared stale lock: {record.lock_id}")
            outcomes.append(ResourceOutcome('lock', record.lock_id, 'deleted'))
        except (ClientError, BotoCoreError) as e:
            print(f"  ⚠ Failed to clear lock {record.lock_id}: {e}")
            outcomes.append(ResourceOutcome('lock', record.lock_id, 'failed', str(e)))
    return outcomes
