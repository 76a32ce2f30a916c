"""
Frame Scheduler
===============
Cooperative run-loop for the game agent.

One callback per frame on the asyncio event loop; nothing runs while the
loop is suspended between frames. Input handlers and network callbacks
interleave with frames on the same thread.
"""

from typing import Optional, Callable, Dict, Any, Set
import asyncio
import logging
import time

from tetris_arcade.agents.tetris_agent import TetrisAgent

logger = logging.getLogger(__name__)


class FrameScheduler:
    """
    Drives agent.advance(dt) once per frame until the agent stops running
    """

    def __init__(
        self,
        agent: TetrisAgent,
        fps: int = 60,
        render: Optional[Callable[[TetrisAgent], None]] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.agent = agent
        self.frame_time = 1.0 / fps
        self.render = render
        self.clock = clock
        self.frames = 0

    def tick(self, dt: float) -> bool:
        """One frame of work; returns whether to request the next frame"""
        keep_going = self.agent.advance(dt)
        if self.render is not None:
            self.render(self.agent)
        self.frames += 1
        return keep_going

    async def run(self) -> int:
        """
        Run frames until the game stops

        Returns:
            number of frames executed
        """
        last = self.clock()
        while True:
            now = self.clock()
            dt = (now - last) * 1000
            last = now

            if not self.tick(dt):
                break

            # next frame
            await asyncio.sleep(self.frame_time)

        logger.debug("Frame loop stopped after %d frames", self.frames)
        return self.frames


class GameOverReporter:
    """
    Game-over callback that submits stats without blocking the frame loop

    The submission runs as a background task; an error response is handed to
    notify() for display.
    """

    def __init__(self, api, notify: Callable[[str], None]):
        self.api = api
        self.notify = notify
        self.pending: Set[asyncio.Task] = set()

    def __call__(self, summary: Dict[str, Any]) -> None:
        task = asyncio.ensure_future(self._submit(summary))
        self.pending.add(task)
        task.add_done_callback(self.pending.discard)

    async def _submit(self, summary: Dict[str, Any]) -> Dict[str, Any]:
        result = await self.api.submit_stats(summary)
        if result.get("success") is False:
            logger.warning("Stats submission failed: %s", result.get("error"))
            self.notify(result.get("error") or "Could not save score")
        return result

    async def drain(self) -> None:
        """Wait for in-flight submissions (used on shutdown)"""
        if self.pending:
            await asyncio.gather(*self.pending)
