"""
Tetris Game Engine
==================
Board, piece catalog, collision, rotation with kick search and line sweep.

Every operation works on an explicit GameState owned by the game loop.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any, Deque, Protocol
from collections import deque
from enum import Enum
import logging
import random
import time

logger = logging.getLogger(__name__)

ROWS = 20
COLS = 10
QUEUE_SIZE = 3

Board = List[List[int]]
Matrix = List[List[int]]


class TetrisAction(str, Enum):
    """Actions that generate events"""
    SPAWN_PIECE = "SPAWN_PIECE"
    MOVE_LEFT = "MOVE_LEFT"
    MOVE_RIGHT = "MOVE_RIGHT"
    MOVE_DOWN = "MOVE_DOWN"
    ROTATE_CW = "ROTATE_CW"
    ROTATE_CCW = "ROTATE_CCW"
    HARD_DROP = "HARD_DROP"
    HOLD = "HOLD"
    PIECE_LOCKED = "PIECE_LOCKED"
    GAME_OVER = "GAME_OVER"


class Tetromino(str, Enum):
    """Tetris pieces, in catalog order (color index = position + 1)"""
    I = "I"  # Line
    L = "L"
    J = "J"
    O = "O"  # Square
    T = "T"
    S = "S"
    Z = "Z"


# Spawn orientation of each piece; the nonzero value is its color index
SHAPES: Dict[Tetromino, Matrix] = {
    Tetromino.I: [[0, 1, 0, 0], [0, 1, 0, 0], [0, 1, 0, 0], [0, 1, 0, 0]],
    Tetromino.L: [[0, 0, 2], [2, 2, 2], [0, 0, 0]],
    Tetromino.J: [[3, 0, 0], [3, 3, 3], [0, 0, 0]],
    Tetromino.O: [[4, 4], [4, 4]],
    Tetromino.T: [[0, 5, 0], [5, 5, 5], [0, 0, 0]],
    Tetromino.S: [[0, 6, 6], [6, 6, 0], [0, 0, 0]],
    Tetromino.Z: [[7, 7, 0], [0, 7, 7], [0, 0, 0]],
}

COLORS = (None, "#00f2ea", "#f0f000", "#a000f0", "#00ff00", "#ff0050", "#0055ff", "#ffaa00")

LINE_CLEAR_POINTS = {0: 0, 1: 100, 2: 300, 3: 500, 4: 800}
BREAKDOWN_KEYS = {1: "singles", 2: "doubles", 3: "triples", 4: "tetris"}


class EffectSink(Protocol):
    """Visual feedback for cleared cells (fire-and-forget)"""

    def explode(self, x: int, y: int, color: Optional[str]) -> None: ...

    def update(self) -> None: ...

    def clear(self) -> None: ...


class NullEffects:
    """Effect sink that draws nothing"""

    def explode(self, x: int, y: int, color: Optional[str]) -> None:
        pass

    def update(self) -> None:
        pass

    def clear(self) -> None:
        pass


@dataclass
class Player:
    """Active piece and its grid offset"""
    matrix: Optional[Matrix] = None
    x: int = 0
    y: int = 0

    @property
    def width(self) -> int:
        return len(self.matrix[0]) if self.matrix else 0


def _empty_breakdown() -> Dict[str, int]:
    return {key: 0 for key in BREAKDOWN_KEYS.values()}


@dataclass
class SessionStats:
    score: int = 0
    lines: int = 0
    level: int = 1
    breakdown: Dict[str, int] = field(default_factory=_empty_breakdown)
    started_at: float = 0.0


@dataclass
class GameState:
    """
    Complete state of one game session

    Owned by the game loop and passed into every engine operation.
    """
    board: Board
    player: Player
    queue: Deque[Matrix]
    hold_piece: Optional[Matrix]
    can_hold: bool
    stats: SessionStats
    game_over: bool
    move_count: int

    @staticmethod
    def new_game(rows: int = ROWS, cols: int = COLS) -> "GameState":
        """Create new game state"""
        return GameState(
            board=new_board(rows, cols),
            player=Player(),
            queue=deque(),
            hold_piece=None,
            can_hold=True,
            stats=SessionStats(),
            game_over=False,
            move_count=0
        )


# =============================================================================
# Pieces
# =============================================================================

def create_piece(shape: Tetromino) -> Matrix:
    """Fresh copy of a piece template"""
    return [row[:] for row in SHAPES[Tetromino(shape)]]


def random_piece(rng: Optional[random.Random] = None) -> Matrix:
    """Independent uniform draw over the seven pieces"""
    return create_piece((rng or random).choice(list(Tetromino)))


def new_board(rows: int = ROWS, cols: int = COLS) -> Board:
    return [[0 for _ in range(cols)] for _ in range(rows)]


# =============================================================================
# Collision & merge
# =============================================================================

def collides(board: Board, player: Player) -> bool:
    """
    Check if the player's piece overlaps the walls, the floor or settled cells

    Rows above the top of the board are open space.
    """
    for dy, row in enumerate(player.matrix):
        for dx, value in enumerate(row):
            if value == 0:
                continue
            y = player.y + dy
            x = player.x + dx
            if y >= len(board) or x < 0 or x >= len(board[0]):
                return True
            if y >= 0 and board[y][x] != 0:
                return True
    return False


def merge(board: Board, player: Player) -> None:
    """Copy the player's cells into the board"""
    for dy, row in enumerate(player.matrix):
        for dx, value in enumerate(row):
            if value and player.y + dy >= 0:
                board[player.y + dy][player.x + dx] = value


def ghost_y(board: Board, player: Player) -> int:
    """Lowest row the active piece can reach from where it is"""
    ghost = Player(player.matrix, player.x, player.y)
    while not collides(board, ghost):
        ghost.y += 1
    return ghost.y - 1


# =============================================================================
# Rotation
# =============================================================================

def rotate_matrix(matrix: Matrix, direction: int) -> None:
    """Rotate a square matrix 90 degrees in place (direction > 0 is clockwise)"""
    size = len(matrix)
    for y in range(size):
        for x in range(y):
            matrix[x][y], matrix[y][x] = matrix[y][x], matrix[x][y]
    if direction > 0:
        for row in matrix:
            row.reverse()
    else:
        matrix.reverse()


def rotate(board: Board, player: Player, direction: int) -> bool:
    """
    Rotate the player's piece, kicking sideways if it lands on something

    Kick offsets +1, -2, +3, -4, ... are applied cumulatively to x. Once the
    next offset would exceed the piece width the rotation is undone and x
    restored. The vertical offset is never touched.

    Returns:
        True if the piece ended up rotated
    """
    origin_x = player.x
    offset = 1
    rotate_matrix(player.matrix, direction)

    while collides(board, player):
        player.x += offset
        offset = -(offset + (1 if offset > 0 else -1))
        if offset > player.width:
            rotate_matrix(player.matrix, -direction)
            player.x = origin_x
            return False

    return True


# =============================================================================
# Line sweep & scoring
# =============================================================================

def sweep(board: Board, effects: Optional[EffectSink] = None) -> int:
    """
    Remove completed rows, bottom to top

    Each cleared row is reported cell by cell to the effect sink, then replaced
    by an empty row at the top. The same index is checked again afterwards
    since everything above has shifted down.

    Returns:
        Number of rows cleared
    """
    cleared = 0
    width = len(board[0])
    y = len(board) - 1

    while y >= 0:
        if all(cell != 0 for cell in board[y]):
            if effects is not None:
                for x, cell in enumerate(board[y]):
                    effects.explode(x, y, COLORS[cell])
            board.pop(y)
            board.insert(0, [0] * width)
            cleared += 1
        else:
            y -= 1

    return cleared


def line_clear_points(count: int, level: int) -> int:
    return LINE_CLEAR_POINTS.get(count, 0) * level


def level_for_lines(lines: int) -> int:
    return lines // 10 + 1


def drop_interval_ms(level: int) -> int:
    """Gravity delay for a level, floored at 100ms"""
    return max(100, 1000 - (level - 1) * 100)


class TetrisEngine:
    """
    Core Tetris game mechanics

    Stateless - mutates the GameState it is handed and returns event payloads
    (None when an action is refused).
    """

    def __init__(
        self,
        rows: int = ROWS,
        cols: int = COLS,
        rng: Optional[random.Random] = None,
        effects: Optional[EffectSink] = None,
        clock=time.time
    ):
        self.rows = rows
        self.cols = cols
        self.rng = rng or random.Random()
        self.effects = effects or NullEffects()
        self.clock = clock

    def new_game(self) -> GameState:
        state = GameState.new_game(self.rows, self.cols)
        state.stats.started_at = self.clock()
        return state

    def reset(self, state: GameState) -> None:
        """Clear a finished or running session in place"""
        for row in state.board:
            row[:] = [0] * self.cols
        state.player = Player()
        state.queue.clear()
        state.hold_piece = None
        state.can_hold = True
        state.stats = SessionStats(started_at=self.clock())
        state.game_over = False
        state.move_count = 0

    def spawn_x(self, matrix: Matrix) -> int:
        return (self.cols - len(matrix[0])) // 2

    def _refill_queue(self, state: GameState) -> None:
        while len(state.queue) < QUEUE_SIZE:
            state.queue.append(random_piece(self.rng))

    def spawn_piece(self, state: GameState) -> Dict[str, Any]:
        """
        Spawn the next piece from the queue

        Returns:
            event payload; game_over is set when the spawn is blocked
        """
        self._refill_queue(state)
        matrix = state.queue.popleft()
        self._refill_queue(state)

        state.player = Player(matrix, self.spawn_x(matrix), 0)
        state.can_hold = True

        if collides(state.board, state.player):
            state.game_over = True
            logger.info("Spawn blocked, game over (score=%d)", state.stats.score)

        return {
            "action": TetrisAction.SPAWN_PIECE,
            "position": (state.player.x, state.player.y),
            "game_over": state.game_over
        }

    def move(self, state: GameState, dx: int) -> Optional[Dict[str, Any]]:
        """Shift the piece sideways; refused on collision"""
        if state.player.matrix is None or state.game_over:
            return None

        state.player.x += dx
        if collides(state.board, state.player):
            state.player.x -= dx
            return None

        state.move_count += 1
        return {
            "action": TetrisAction.MOVE_LEFT if dx < 0 else TetrisAction.MOVE_RIGHT,
            "to": (state.player.x, state.player.y),
            "move_number": state.move_count
        }

    def step_down(self, state: GameState) -> Optional[Dict[str, Any]]:
        """Move one row down, locking the piece if it cannot go further"""
        if state.player.matrix is None or state.game_over:
            return None

        state.player.y += 1
        if collides(state.board, state.player):
            state.player.y -= 1
            return self._lock_piece(state)

        state.move_count += 1
        return {
            "action": TetrisAction.MOVE_DOWN,
            "to": (state.player.x, state.player.y),
            "move_number": state.move_count
        }

    def rotate(self, state: GameState, direction: int = 1) -> Optional[Dict[str, Any]]:
        """Rotate current piece"""
        if state.player.matrix is None or state.game_over:
            return None

        from_x = state.player.x
        if not rotate(state.board, state.player, direction):
            return None

        state.move_count += 1
        return {
            "action": TetrisAction.ROTATE_CW if direction > 0 else TetrisAction.ROTATE_CCW,
            "kick": state.player.x - from_x,
            "move_number": state.move_count
        }

    def hard_drop(self, state: GameState) -> Optional[Dict[str, Any]]:
        """Drop piece to bottom immediately"""
        if state.player.matrix is None or state.game_over:
            return None

        from_y = state.player.y
        state.player.y = ghost_y(state.board, state.player)
        drop_distance = state.player.y - from_y
        state.stats.score += drop_distance * 2

        lock_event = self._lock_piece(state, lock_point=False)

        return {
            "action": TetrisAction.HARD_DROP,
            "drop_distance": drop_distance,
            "bonus_points": drop_distance * 2,
            "lock": lock_event
        }

    def hold(self, state: GameState) -> Optional[Dict[str, Any]]:
        """Swap the active piece with the held one, once per spawn"""
        if not state.can_hold or state.player.matrix is None or state.game_over:
            return None

        current = state.player.matrix
        incoming = state.hold_piece
        from_queue = incoming is None
        if from_queue:
            self._refill_queue(state)
            incoming = state.queue[0]

        candidate = Player(incoming, self.spawn_x(incoming), 0)
        if collides(state.board, candidate):
            return None

        if from_queue:
            state.queue.popleft()
            self._refill_queue(state)
        state.hold_piece = current
        state.player = candidate
        state.can_hold = False

        return {
            "action": TetrisAction.HOLD,
            "from_queue": from_queue
        }

    def apply_clear(self, stats: SessionStats, count: int) -> int:
        """
        Score a sweep

        Points use the level in force before the clear.

        Returns:
            points awarded
        """
        if count <= 0:
            return 0

        points = line_clear_points(count, stats.level)
        stats.score += points
        stats.lines += count
        stats.level = level_for_lines(stats.lines)
        key = BREAKDOWN_KEYS.get(count)
        if key:
            stats.breakdown[key] += 1
        return points

    def _lock_piece(self, state: GameState, lock_point: bool = True) -> Dict[str, Any]:
        """
        Merge the piece into the board, sweep, score, and spawn the next one

        lock_point adds the 1 point of a natural lock; hard drops skip it.
        """
        merge(state.board, state.player)
        locked_at = (state.player.x, state.player.y)

        line_count = sweep(state.board, self.effects)
        points = self.apply_clear(state.stats, line_count)
        if lock_point:
            state.stats.score += 1

        if line_count:
            logger.debug("Cleared %d line(s) for %d points", line_count, points)

        spawn_event = self.spawn_piece(state)

        return {
            "action": TetrisAction.PIECE_LOCKED,
            "position": locked_at,
            "lines_cleared": line_count,
            "points_earned": points,
            "total_score": state.stats.score,
            "game_over": spawn_event["game_over"]
        }
