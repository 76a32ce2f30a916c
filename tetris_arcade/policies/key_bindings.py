"""
Key Binding Policy
==================
Validates player key maps and resolves key codes to game actions.

Used by the client when loading stored bindings and by the service before
persisting a new map.
"""

from typing import Dict, Optional, Any
from dataclasses import dataclass
import logging

from tetris_arcade.game.tetris_engine import TetrisAction

logger = logging.getLogger(__name__)


# Binding name -> action triggered
KEY_ACTIONS = {
    "left": TetrisAction.MOVE_LEFT,
    "right": TetrisAction.MOVE_RIGHT,
    "down": TetrisAction.MOVE_DOWN,
    "drop": TetrisAction.HARD_DROP,
    "rotate": TetrisAction.ROTATE_CW,
    "hold": TetrisAction.HOLD,
}

DEFAULT_KEY_MAP = {
    "left": "KeyA",
    "right": "KeyD",
    "down": "ArrowDown",
    "drop": "Space",
    "rotate": "KeyH",
    "hold": "KeyC",
}


@dataclass
class PolicyResult:
    """Result of policy check"""
    approved: bool
    reason: Optional[str] = None


class KeyMapValidator:
    """
    Checks a key map before it is used or stored

    - every binding name is present, and nothing else
    - each code is a non-empty string
    - no code drives two actions
    """

    def __init__(self, max_code_length: int = 32):
        self.max_code_length = max_code_length

    def validate(self, key_map: Any) -> PolicyResult:
        if not isinstance(key_map, dict):
            return PolicyResult(approved=False, reason="Key map must be an object")

        missing = [name for name in KEY_ACTIONS if name not in key_map]
        if missing:
            return PolicyResult(approved=False, reason=f"Missing bindings: {', '.join(missing)}")

        unknown = [name for name in key_map if name not in KEY_ACTIONS]
        if unknown:
            return PolicyResult(approved=False, reason=f"Unknown bindings: {', '.join(unknown)}")

        for name, code in key_map.items():
            if not isinstance(code, str) or not code.strip():
                return PolicyResult(approved=False, reason=f"Binding '{name}' has no key")
            if len(code) > self.max_code_length:
                return PolicyResult(approved=False, reason=f"Binding '{name}' key code too long")

        seen: Dict[str, str] = {}
        for name, code in key_map.items():
            if code in seen:
                return PolicyResult(
                    approved=False,
                    reason=f"Key {code} bound to both '{seen[code]}' and '{name}'"
                )
            seen[code] = name

        return PolicyResult(approved=True)


def merge_key_map(stored: Optional[Dict[str, str]]) -> Dict[str, str]:
    """Stored bindings on top of the defaults; defaults if the result is invalid"""
    if not stored:
        return dict(DEFAULT_KEY_MAP)

    key_map = dict(DEFAULT_KEY_MAP)
    key_map.update({k: v for k, v in stored.items() if k in KEY_ACTIONS})

    result = KeyMapValidator().validate(key_map)
    if not result.approved:
        logger.warning("Ignoring stored key map: %s", result.reason)
        return dict(DEFAULT_KEY_MAP)
    return key_map


def resolve_action(key_map: Dict[str, str], code: str) -> Optional[TetrisAction]:
    for name, bound in key_map.items():
        if bound == code:
            return KEY_ACTIONS.get(name)
    return None
