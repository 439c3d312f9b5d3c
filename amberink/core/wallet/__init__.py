"""
Wallet Management Module

Session key models and per-device persistence:
- SessionKey: Locally stored keypair registered for an owner
- SessionKeyRecord: Read-only mirror of the on-chain authorization
- KeyValueStore: Per-device persistence (in memory or JSON file)

The lifecycle manager lives in ``session_manager`` and is imported from
there, since it depends on the execution and funding layers that in turn
use these models.

Usage:
    from amberink.core.wallet import JsonFileStore
    from amberink.core.wallet.session_manager import SessionKeyManager
    from amberink.core.execution import Publish

    manager = SessionKeyManager(wallet=wallet, chain=chain, store=JsonFileStore(path))

    # Make a key ready for publishing (registers and funds it if needed)
    key = await manager.ensure_ready(required_selector=Publish.selector)

    if key is None:
        # Use the owner wallet directly
        ...

    # Or let the manager choose the path
    tx_hash = await manager.call_with_session_key(
        with_key=lambda key: executor.execute(key, action),
        without_key=lambda: wallet.send_transaction(direct_tx),
        required_selector=action.selector,
        pending_value=action.value,
    )
"""

from .models import (
    SessionKey,
    SessionKeyRecord,
    SessionKeyState,
    normalize_selector,
)
from .store import InMemoryStore, JsonFileStore, KeyValueStore

__all__ = [
    "InMemoryStore",
    "JsonFileStore",
    "KeyValueStore",
    "SessionKey",
    "SessionKeyRecord",
    "SessionKeyState",
    "normalize_selector",
]
