import asyncio
import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


class Heartbeat:
    """Logs a liveness line at a fixed interval while a run waits on the model.

    Purely diagnostic: it never cancels the wait it reports on.
    """

    def __init__(self, interval: float, describe: Callable[[], str]) -> None:
        self._interval = interval
        self._describe = describe
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None

    def start(self) -> None:
        self.stop()
        if self._interval <= 0:
            return
        self._task = asyncio.create_task(self._beat(time.monotonic()))

    def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _beat(self, started: float) -> None:
        while True:
            await asyncio.sleep(self._interval)
            logger.info(
                "%s Waiting for model response... (%.0fs)",
                self._describe(),
                time.monotonic() - started,
            )
