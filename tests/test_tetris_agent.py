import random
import unittest

from tetris_arcade.agents.frame_scheduler import FrameScheduler, GameOverReporter
from tetris_arcade.agents.tetris_agent import LoopStatus, TetrisAgent
from tetris_arcade.game.tetris_engine import (
    COLS,
    ROWS,
    Player,
    TetrisAction,
    TetrisEngine,
    Tetromino,
    create_piece,
)


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def make_agent(on_game_over=None, key_map=None):
    clock = FakeClock()
    engine = TetrisEngine(rng=random.Random(11), clock=clock)
    agent = TetrisAgent(engine, on_game_over=on_game_over, key_map=key_map, clock=clock)
    return agent, clock


def fill_to_top(agent):
    for y in range(ROWS):
        agent.state.board[y] = [1 if x else 0 for x in range(COLS)]


def stack_to_spawn(agent):
    """Fill the board so the next spawn is blocked, with the active O piece just above it"""
    fill_to_top(agent)
    agent.state.board[0][4] = agent.state.board[0][5] = 0
    agent.state.player = Player(create_piece(Tetromino.O), 4, -2)


class TetrisAgentTests(unittest.TestCase):
    def test_starts_idle_and_runs_after_start(self):
        agent, _ = make_agent()
        self.assertEqual(agent.status, LoopStatus.IDLE)
        self.assertFalse(agent.advance(16))

        agent.start()
        self.assertEqual(agent.status, LoopStatus.RUNNING)
        self.assertIsNotNone(agent.state.player.matrix)
        self.assertTrue(agent.advance(16))

    def test_gravity_waits_for_level_interval(self):
        agent, _ = make_agent()
        agent.start()
        y = agent.state.player.y

        agent.advance(600)
        agent.advance(400)
        self.assertEqual(agent.state.player.y, y)

        agent.advance(1)
        self.assertEqual(agent.state.player.y, y + 1)
        self.assertEqual(agent.drop_counter, 0)

    def test_gravity_faster_at_higher_level(self):
        agent, _ = make_agent()
        agent.start()
        agent.state.stats.level = 5
        y = agent.state.player.y
        agent.advance(601)
        self.assertEqual(agent.state.player.y, y + 1)

    def test_pause_suspends_gravity_and_input(self):
        agent, _ = make_agent()
        agent.start()
        x, y = agent.state.player.x, agent.state.player.y

        agent.pause()
        self.assertTrue(agent.advance(5000))
        self.assertIsNone(agent.perform(TetrisAction.MOVE_LEFT))
        self.assertEqual((agent.state.player.x, agent.state.player.y), (x, y))

        agent.toggle_pause()
        self.assertEqual(agent.status, LoopStatus.RUNNING)
        self.assertIsNotNone(agent.perform(TetrisAction.MOVE_LEFT))

    def test_key_codes_follow_key_map(self):
        agent, _ = make_agent(key_map={"left": "ArrowLeft"})
        agent.start()
        x = agent.state.player.x

        agent.handle_key("ArrowLeft")
        self.assertEqual(agent.state.player.x, x - 1)
        agent.handle_key("KeyD")
        self.assertEqual(agent.state.player.x, x)
        self.assertIsNone(agent.handle_key("KeyA"))

    def test_hard_drop_key_locks_piece(self):
        agent, _ = make_agent()
        agent.start()
        event = agent.handle_key("Space")
        self.assertEqual(event["action"], TetrisAction.HARD_DROP)
        self.assertTrue(any(agent.state.board[ROWS - 1]))

    def test_hold_once_per_spawn(self):
        agent, _ = make_agent()
        agent.start()
        self.assertIsNotNone(agent.handle_key("KeyC"))
        self.assertIsNone(agent.handle_key("KeyC"))

    def test_game_over_reports_once(self):
        reports = []
        agent, clock = make_agent(on_game_over=reports.append)
        agent.start()
        stack_to_spawn(agent)

        clock.now += 42
        agent.perform(TetrisAction.MOVE_DOWN)
        agent.perform(TetrisAction.MOVE_DOWN)
        self.assertEqual(agent.status, LoopStatus.GAME_OVER)
        self.assertFalse(agent.advance(2000))
        self.assertIsNone(agent.perform(TetrisAction.HARD_DROP))

        self.assertEqual(len(reports), 1)
        self.assertEqual(reports[0]["time"], 42)
        self.assertEqual(set(reports[0]), {"score", "lines", "level", "time", "breakdown"})

    def test_restart_resets_session(self):
        reports = []
        agent, _ = make_agent(on_game_over=reports.append)
        agent.start()
        agent.state.stats.score = 500
        stack_to_spawn(agent)
        agent.perform(TetrisAction.HARD_DROP)
        self.assertEqual(agent.status, LoopStatus.GAME_OVER)

        agent.start()
        self.assertEqual(agent.status, LoopStatus.RUNNING)
        self.assertEqual(agent.state.stats.score, 0)
        self.assertTrue(all(v == 0 for row in agent.state.board for v in row))
        self.assertEqual(len(reports), 1)

    def test_lines_per_minute(self):
        agent, clock = make_agent()
        agent.start()
        agent.state.stats.lines = 10
        clock.now += 120
        self.assertEqual(agent.lines_per_minute(), 5)


class FakeApi:
    def __init__(self, result):
        self.result = result
        self.submitted = []

    async def submit_stats(self, summary):
        self.submitted.append(summary)
        return self.result


class FrameSchedulerTests(unittest.IsolatedAsyncioTestCase):
    async def test_stops_requesting_frames_after_game_over(self):
        agent, _ = make_agent()
        agent.start()
        frames = []

        def render(a):
            frames.append(a.status)
            if len(frames) == 3:
                stack_to_spawn(a)
                a.perform(TetrisAction.HARD_DROP)

        scheduler = FrameScheduler(agent, fps=1000, render=render)
        count = await scheduler.run()

        self.assertEqual(agent.status, LoopStatus.GAME_OVER)
        self.assertEqual(count, 4)

    async def test_tick_passes_elapsed_time(self):
        agent, _ = make_agent()
        agent.start()
        scheduler = FrameScheduler(agent)
        y = agent.state.player.y
        self.assertTrue(scheduler.tick(1001))
        self.assertEqual(agent.state.player.y, y + 1)

    async def test_reporter_notifies_on_failure(self):
        messages = []
        api = FakeApi({"success": False, "error": "Connection error"})
        reporter = GameOverReporter(api, messages.append)

        reporter({"score": 10})
        await reporter.drain()

        self.assertEqual(api.submitted, [{"score": 10}])
        self.assertEqual(messages, ["Connection error"])

    async def test_reporter_silent_on_success(self):
        messages = []
        reporter = GameOverReporter(FakeApi({"success": True}), messages.append)
        reporter({"score": 10})
        await reporter.drain()
        self.assertEqual(messages, [])


if __name__ == "__main__":
    unittest.main()
