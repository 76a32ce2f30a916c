"""Client-side persisted session token, username and key bindings"""

from typing import Optional, Dict, Tuple, Any
import json
import logging
import os

from tetris_arcade.policies.key_bindings import merge_key_map

logger = logging.getLogger(__name__)

TOKEN_KEY = "tetris_token"
USER_KEY = "tetris_user"
KEYS_KEY = "tetris_keys_v2"


class LocalStore:
    """Small JSON file standing in for browser local storage"""

    def __init__(self, path: str):
        self.path = path

    def _load(self) -> Dict[str, Any]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Unreadable local store %s: %s", self.path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def _save(self, data: Dict[str, Any]) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def session(self) -> Tuple[Optional[str], Optional[str]]:
        data = self._load()
        return data.get(TOKEN_KEY), data.get(USER_KEY)

    def save_session(self, token: str, username: str) -> None:
        data = self._load()
        data[TOKEN_KEY] = token
        data[USER_KEY] = username
        self._save(data)

    def key_map(self) -> Dict[str, str]:
        stored = self._load().get(KEYS_KEY)
        return merge_key_map(stored if isinstance(stored, dict) else None)

    def save_key_map(self, key_map: Dict[str, str]) -> None:
        data = self._load()
        data[KEYS_KEY] = key_map
        self._save(data)

    def clear(self) -> None:
        """Forget everything (logout)"""
        if os.path.exists(self.path):
            os.remove(self.path)
