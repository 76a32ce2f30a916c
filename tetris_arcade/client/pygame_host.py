"""
Pygame Host
===========
Desktop window for the game: draws the board and side panels, feeds key
presses to the agent and reports finished games to the score service.
"""

from typing import List, Optional, Any
import argparse
import asyncio
import logging

import pygame

from tetris_arcade.agents.frame_scheduler import FrameScheduler, GameOverReporter
from tetris_arcade.agents.tetris_agent import TetrisAgent, LoopStatus
from tetris_arcade.client import account
from tetris_arcade.client.api_client import TetrisApiClient
from tetris_arcade.client.local_store import LocalStore
from tetris_arcade.config import Settings, configure_logging
from tetris_arcade.game.tetris_engine import TetrisEngine, COLORS, ghost_y

logger = logging.getLogger(__name__)

BLOCK = 30
PREVIEW_BLOCK = 20
PANEL = 120
WIDTH = PANEL + 10 * BLOCK + PANEL
HEIGHT = 20 * BLOCK
FLASH_FRAMES = 12

BREAKDOWN_LABELS = {"singles": "1 LINE", "doubles": "2 LINES", "triples": "3 LINES", "tetris": "TETRIS"}

SPECIAL_KEYS = {
    "space": "Space",
    "left": "ArrowLeft",
    "right": "ArrowRight",
    "up": "ArrowUp",
    "down": "ArrowDown",
    "escape": "Escape",
    "return": "Enter",
    "tab": "Tab",
    "left shift": "ShiftLeft",
    "right shift": "ShiftRight",
}


def key_code(key: int) -> str:
    """Translate a pygame key constant to a browser-style key code"""
    name = pygame.key.name(key)
    if name in SPECIAL_KEYS:
        return SPECIAL_KEYS[name]
    if len(name) == 1 and name.isalpha():
        return f"Key{name.upper()}"
    if len(name) == 1 and name.isdigit():
        return f"Digit{name}"
    return name.title().replace(" ", "")


class FlashEffects:
    """Cleared cells flash white and fade out"""

    def __init__(self):
        self.cells: List[List[Any]] = []

    def explode(self, x: int, y: int, color: Optional[str]) -> None:
        self.cells.append([x, y, color or "#ffffff", FLASH_FRAMES])

    def update(self) -> None:
        for cell in self.cells:
            cell[3] -= 1
        self.cells = [cell for cell in self.cells if cell[3] > 0]

    def clear(self) -> None:
        self.cells = []


class PygameHost:

    def __init__(self, screen, agent: TetrisAgent, effects: FlashEffects, username: str):
        self.screen = screen
        self.agent = agent
        self.effects = effects
        self.username = username
        self.font = pygame.font.SysFont("couriernew", 18, bold=True)
        self.big_font = pygame.font.SysFont("couriernew", 32, bold=True)
        self.message: Optional[str] = None
        self.quit = False

    def notify(self, message: str) -> None:
        self.message = message

    # --- input ---

    def pump_events(self) -> List[str]:
        codes = []
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self.quit = True
                self.agent.status = LoopStatus.IDLE
            elif event.type == pygame.KEYDOWN:
                codes.append(key_code(event.key))
        return codes

    def frame(self, agent: TetrisAgent) -> None:
        for code in self.pump_events():
            if code in ("KeyP", "Escape"):
                agent.toggle_pause()
            else:
                agent.handle_key(code)
        self.draw()

    # --- drawing ---

    def _block(self, x: int, y: int, color: str) -> None:
        rect = pygame.Rect(PANEL + x * BLOCK, y * BLOCK, BLOCK, BLOCK)
        pygame.draw.rect(self.screen, pygame.Color(color), rect)
        pygame.draw.rect(self.screen, pygame.Color(0, 0, 0), rect, 1)
        pygame.draw.rect(self.screen, pygame.Color(255, 255, 255), (rect.x, rect.y, BLOCK, 3))

    def _text(self, text: str, x: int, y: int, font=None) -> None:
        surface = (font or self.font).render(text, True, pygame.Color(230, 230, 230))
        self.screen.blit(surface, (x, y))

    def draw(self) -> None:
        state = self.agent.state
        self.screen.fill(pygame.Color(16, 16, 32))
        pygame.draw.rect(self.screen, pygame.Color(0, 0, 0), (PANEL, 0, 10 * BLOCK, HEIGHT))

        for y, row in enumerate(state.board):
            for x, value in enumerate(row):
                if value:
                    self._block(x, y, COLORS[value])

        player = state.player
        if player.matrix and not self.agent.paused and self.agent.status == LoopStatus.RUNNING:
            ghost = ghost_y(state.board, player)
            for y, row in enumerate(player.matrix):
                for x, value in enumerate(row):
                    if not value:
                        continue
                    outline = pygame.Rect(PANEL + (player.x + x) * BLOCK, (ghost + y) * BLOCK, BLOCK, BLOCK)
                    pygame.draw.rect(self.screen, pygame.Color(90, 90, 90), outline, 1)
                    if player.y + y >= 0:
                        self._block(player.x + x, player.y + y, COLORS[value])

        for x, y, color, ttl in self.effects.cells:
            fade = int(255 * ttl / FLASH_FRAMES)
            pygame.draw.rect(self.screen, pygame.Color(fade, fade, fade),
                             (PANEL + x * BLOCK, y * BLOCK, BLOCK, BLOCK))

        self._side_panels()

        if self.agent.paused:
            self._text("PAUSED", PANEL + 100, HEIGHT // 2, self.big_font)
        if self.agent.status == LoopStatus.GAME_OVER:
            self._game_over()
        pygame.display.flip()

    def _side_panels(self) -> None:
        state = self.agent.state
        right = PANEL + 10 * BLOCK + 10

        self._text("HOLD", 10, 10)
        if state.hold_piece:
            self._draw_piece(state.hold_piece, 10, 40)

        self._text("NEXT", right, 10)
        for i, matrix in enumerate(state.queue):
            self._draw_piece(matrix, right, 40 + i * 4 * PREVIEW_BLOCK)

        stats = state.stats
        rows = [
            ("PLAYER", self.username),
            ("SCORE", f"{stats.score:,}"),
            ("LINES", str(stats.lines)),
            ("LEVEL", str(stats.level)),
            ("LPM", str(self.agent.lines_per_minute())),
        ]
        for i, (label, value) in enumerate(rows):
            self._text(label, 10, 200 + i * 50)
            self._text(value, 10, 220 + i * 50)

        if self.message:
            self._text(self.message, 10, HEIGHT - 30)

    def _draw_piece(self, matrix, left: int, top: int) -> None:
        for y, row in enumerate(matrix):
            for x, value in enumerate(row):
                if value:
                    rect = pygame.Rect(left + x * PREVIEW_BLOCK, top + y * PREVIEW_BLOCK,
                                       PREVIEW_BLOCK, PREVIEW_BLOCK)
                    pygame.draw.rect(self.screen, pygame.Color(COLORS[value]), rect)
                    pygame.draw.rect(self.screen, pygame.Color(0, 0, 0), rect, 1)

    def _game_over(self) -> None:
        stats = self.agent.state.stats
        left = PANEL + 20
        self._text("GAME OVER", left, 150, self.big_font)
        self._text(f"FINAL SCORE {stats.score:,}", left, 200)

        total = sum(stats.breakdown.values()) or 1
        for i, (key, count) in enumerate(stats.breakdown.items()):
            top = 250 + i * 30
            self._text(BREAKDOWN_LABELS[key], left, top)
            bar = int(120 * count / total)
            pygame.draw.rect(self.screen, pygame.Color(0, 242, 234), (left + 110, top + 4, bar, 12))
            self._text(str(count), left + 240, top)

        self._text("R: retry   Q: quit", left, 400)


async def _sign_in(api: TetrisApiClient, store: LocalStore, args) -> str:
    """Reuse a stored session or log in with the given credentials"""
    token, username = store.session()
    if args.username and args.password:
        if args.register:
            result = await api.register(args.username, args.password)
            print(result.get("message") or result.get("error"))
        result = await api.login(args.username, args.password)
        if result.get("token"):
            store.save_session(result["token"], result["username"])
            return result["username"]
        print(result.get("error"))
        return "guest"

    api.token = token
    return username or "guest"


async def play(settings: Settings, args) -> None:
    store = LocalStore(settings.local_store_path)
    api = TetrisApiClient(settings.api_url)

    if args.logout:
        store.clear()

    username = await _sign_in(api, store, args)
    key_map = await account.sync_key_map(api, store)

    if args.bind:
        error = await account.rebind_keys(api, store, args.bind)
        print(error or "Key bindings saved")
        key_map = store.key_map()

    if args.leaderboard or args.reset_history:
        if args.reset_history:
            print(await account.reset_history(api))
        if args.leaderboard:
            for line in await account.leaderboard_lines(api):
                print(line)
        return

    pygame.init()
    pygame.display.set_caption("Tetris Arcade")
    screen = pygame.display.set_mode((WIDTH, HEIGHT))

    effects = FlashEffects()
    agent = TetrisAgent(TetrisEngine(effects=effects), key_map=key_map)
    host = PygameHost(screen, agent, effects, username)
    reporter = GameOverReporter(api, host.notify)
    if api.token:
        agent.on_game_over = reporter

    scheduler = FrameScheduler(agent, fps=settings.fps, render=host.frame)

    try:
        while not host.quit:
            host.message = None
            agent.start()
            await scheduler.run()

            # game over screen until retry or quit
            while not host.quit:
                codes = host.pump_events()
                if "KeyQ" in codes:
                    host.quit = True
                elif "KeyR" in codes:
                    break
                host.draw()
                await asyncio.sleep(1 / settings.fps)
        await reporter.drain()
    finally:
        pygame.quit()


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Play Tetris Arcade")
    parser.add_argument("--username", help="account to log in with")
    parser.add_argument("--password", help="account password")
    parser.add_argument("--register", action="store_true", help="create the account first")
    parser.add_argument("--logout", action="store_true", help="forget the stored session")
    parser.add_argument("--leaderboard", action="store_true", help="print the top scores and exit")
    parser.add_argument("--reset-history", action="store_true", help="delete your recorded games and exit")
    parser.add_argument("--bind", action="append", metavar="ACTION=CODE",
                        help="rebind a key, e.g. rotate=ArrowUp (repeatable)")
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    asyncio.run(play(settings, args))


if __name__ == "__main__":
    main()
