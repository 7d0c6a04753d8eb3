from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Set

logger = logging.getLogger(__name__)


class Debouncer:
    """
    Cancel-and-restart timer around an async call.

    Every call restarts the quiet period; only the arguments of the last call
    made within the window reach `func`. A call that already started is not
    cancelled by later triggers, only by cancel().
    """

    def __init__(self, delay_s: float, func: Callable[..., Awaitable[Any]]):
        if delay_s < 0:
            raise ValueError("delay_s must be >= 0")
        self.delay_s = delay_s
        self.func = func
        self.fired = 0
        self._timer: Optional[asyncio.Task] = None
        self._running: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        if self._timer is not None:
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._wait(args, kwargs))

    async def _wait(self, args, kwargs) -> None:
        await asyncio.sleep(self.delay_s)
        self._timer = None
        task = asyncio.get_running_loop().create_task(self._fire(args, kwargs))
        self._running.add(task)
        task.add_done_callback(self._running.discard)

    async def _fire(self, args, kwargs) -> None:
        self.fired += 1
        try:
            await self.func(*args, **kwargs)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Debounced call failed")

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for task in list(self._running):
            task.cancel()
        self._running.clear()
