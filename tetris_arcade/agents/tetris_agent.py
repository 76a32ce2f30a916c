"""
Tetris Agent Loop - Game Controller
===================================
Owns the game session and drives it frame by frame.

Input → Engine → Event → Effects / stats

States: IDLE → RUNNING ⇄ PAUSED → GAME_OVER → (restart) RUNNING
"""

from typing import Optional, Dict, Any, Callable
from enum import Enum
import logging
import time

from tetris_arcade.game.tetris_engine import (
    TetrisEngine,
    TetrisAction,
    GameState,
    drop_interval_ms,
)
from tetris_arcade.policies.key_bindings import merge_key_map, resolve_action

logger = logging.getLogger(__name__)


class LoopStatus(str, Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    GAME_OVER = "GAME_OVER"


class TetrisAgent:
    """
    Game loop controller

    This is the single owner of the GameState:
    1. Accumulates frame time and applies gravity
    2. Translates key codes into engine actions
    3. Feeds cleared cells to the effect sink
    4. Hands the final stats to on_game_over, once per session
    """

    def __init__(
        self,
        engine: Optional[TetrisEngine] = None,
        on_game_over: Optional[Callable[[Dict[str, Any]], None]] = None,
        key_map: Optional[Dict[str, str]] = None,
        clock: Callable[[], float] = time.time
    ):
        self.engine = engine or TetrisEngine(clock=clock)
        self.effects = self.engine.effects
        self.on_game_over = on_game_over
        self.key_map = merge_key_map(key_map)
        self.clock = clock

        self.state: GameState = self.engine.new_game()
        self.status = LoopStatus.IDLE
        self.drop_counter = 0.0
        self.last_event: Optional[Dict[str, Any]] = None
        self._reported = False

    @property
    def running(self) -> bool:
        return self.status in (LoopStatus.RUNNING, LoopStatus.PAUSED)

    @property
    def paused(self) -> bool:
        return self.status == LoopStatus.PAUSED

    def start(self) -> None:
        """Start (or restart) a session from an empty board"""
        self.engine.reset(self.state)
        self.effects.clear()
        self.drop_counter = 0.0
        self._reported = False
        self.status = LoopStatus.RUNNING

        self.last_event = self.engine.spawn_piece(self.state)
        logger.info("Game started")
        self._check_game_over()

    def pause(self) -> None:
        if self.status == LoopStatus.RUNNING:
            self.status = LoopStatus.PAUSED

    def resume(self) -> None:
        if self.status == LoopStatus.PAUSED:
            self.status = LoopStatus.RUNNING

    def toggle_pause(self) -> None:
        if self.paused:
            self.resume()
        else:
            self.pause()

    def advance(self, dt: float) -> bool:
        """
        Run one frame

        Args:
            dt: milliseconds since the previous frame

        Returns:
            True while another frame should be requested
        """
        if not self.running:
            return False

        if self.status == LoopStatus.RUNNING:
            self.drop_counter += dt
            if self.drop_counter > drop_interval_ms(self.state.stats.level):
                self._step_down()
                self._check_game_over()

        self.effects.update()
        return self.running

    def handle_key(self, code: str) -> Optional[Dict[str, Any]]:
        """Dispatch a key code through the current key map"""
        action = resolve_action(self.key_map, code)
        if action is None:
            return None
        return self.perform(action)

    def perform(self, action: TetrisAction) -> Optional[Dict[str, Any]]:
        """Apply a player action; ignored unless running and not paused"""
        if self.status != LoopStatus.RUNNING:
            return None

        if action == TetrisAction.MOVE_LEFT:
            event = self.engine.move(self.state, -1)
        elif action == TetrisAction.MOVE_RIGHT:
            event = self.engine.move(self.state, 1)
        elif action == TetrisAction.MOVE_DOWN:
            event = self._step_down()
        elif action == TetrisAction.ROTATE_CW:
            event = self.engine.rotate(self.state, 1)
        elif action == TetrisAction.ROTATE_CCW:
            event = self.engine.rotate(self.state, -1)
        elif action == TetrisAction.HARD_DROP:
            event = self.engine.hard_drop(self.state)
        elif action == TetrisAction.HOLD:
            event = self.engine.hold(self.state)
        else:
            return None

        if event is not None:
            self.last_event = event
        self._check_game_over()
        return event

    def set_key_map(self, key_map: Optional[Dict[str, str]]) -> None:
        self.key_map = merge_key_map(key_map)

    def elapsed_seconds(self) -> int:
        return int(self.clock() - self.state.stats.started_at)

    def lines_per_minute(self) -> int:
        minutes = (self.clock() - self.state.stats.started_at) / 60
        return int(self.state.stats.lines / minutes) if minutes > 0 else 0

    def summary(self) -> Dict[str, Any]:
        """Final stats payload for the score service"""
        stats = self.state.stats
        return {
            "score": stats.score,
            "lines": stats.lines,
            "level": stats.level,
            "time": self.elapsed_seconds(),
            "breakdown": dict(stats.breakdown)
        }

    def _step_down(self) -> Optional[Dict[str, Any]]:
        event = self.engine.step_down(self.state)
        self.drop_counter = 0.0
        return event

    def _check_game_over(self) -> None:
        if not self.state.game_over or self.status == LoopStatus.GAME_OVER:
            return

        self.status = LoopStatus.GAME_OVER
        summary = self.summary()
        self.last_event = {"action": TetrisAction.GAME_OVER, **summary}
        logger.info("Game over: score=%d lines=%d level=%d",
                    summary["score"], summary["lines"], summary["level"])

        if self.on_game_over is not None and not self._reported:
            self._reported = True
            self.on_game_over(summary)
