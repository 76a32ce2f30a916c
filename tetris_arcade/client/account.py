"""
Account Commands
================
Score-service calls the desktop host makes outside of a running game:
leaderboard listing, history reset and key map sync.
"""

from typing import Dict, List, Optional
import logging

from tetris_arcade.client.api_client import TetrisApiClient
from tetris_arcade.client.local_store import LocalStore
from tetris_arcade.policies.key_bindings import KeyMapValidator

logger = logging.getLogger(__name__)


async def leaderboard_lines(api: TetrisApiClient) -> List[str]:
    """Ranking as printable lines, or the error message"""
    result = await api.leaderboard()
    if not result.get("success"):
        return [result.get("error") or "Leaderboard unavailable"]

    entries = result.get("data") or []
    if not entries:
        return ["No scores yet"]
    return [f"#{rank} {entry['username']}: {entry['score']:,}"
            for rank, entry in enumerate(entries, start=1)]


async def reset_history(api: TetrisApiClient) -> str:
    if not api.token:
        return "Log in to reset your history"

    result = await api.reset_history()
    if not result.get("success"):
        return result.get("error") or "Reset failed"
    return f"Deleted {result.get('deleted', 0)} games"


async def sync_key_map(api: TetrisApiClient, store: LocalStore) -> Dict[str, str]:
    """
    Pull the account's key map into the local store

    The local map is kept when the service is unreachable, the account
    has no saved map, or the saved one does not validate.
    """
    if api.token:
        result = await api.profile()
        remote = (result.get("data") or {}).get("keyMap") if result.get("success") else None
        if remote:
            check = KeyMapValidator().validate(remote)
            if check.approved:
                store.save_key_map(remote)
            else:
                logger.warning("Ignoring account key map: %s", check.reason)
    return store.key_map()


def parse_bindings(pairs: List[str]) -> Dict[str, str]:
    """["rotate=ArrowUp", ...] -> {"rotate": "ArrowUp", ...}"""
    bindings = {}
    for pair in pairs:
        name, sep, code = pair.partition("=")
        if not sep or not name.strip() or not code.strip():
            raise ValueError(f"Expected ACTION=CODE, got '{pair}'")
        bindings[name.strip()] = code.strip()
    return bindings


async def rebind_keys(api: TetrisApiClient, store: LocalStore, pairs: List[str]) -> Optional[str]:
    """
    Apply ACTION=CODE overrides on top of the current key map

    Saves locally, then to the account when signed in.

    Returns:
        An error message, or None when the new map was saved
    """
    try:
        overrides = parse_bindings(pairs)
    except ValueError as e:
        return str(e)

    key_map = {**store.key_map(), **overrides}
    check = KeyMapValidator().validate(key_map)
    if not check.approved:
        return check.reason

    store.save_key_map(key_map)
    if api.token:
        result = await api.update_settings(key_map)
        if not result.get("success"):
            return f"Saved locally; account not updated: {result.get('error')}"
    return None
