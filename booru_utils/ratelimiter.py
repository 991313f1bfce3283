from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple, TypeVar

T = TypeVar("T")
R = TypeVar("R")

# ---------------------------------------------------------------------------
# General helpers
# ---------------------------------------------------------------------------


def _now() -> float:
    """Monotonic clock, so pacing survives wall-clock jumps."""
    return time.monotonic()


# ---------------------------------------------------------------------------
# Request pacing + concurrency ceiling
# ---------------------------------------------------------------------------


class RateLimiter:
    """
    Bounds a batch of coroutines on two axes:

      - at most ``max_concurrent`` of them run at the same time
      - two consecutive starts are at least ``min_interval`` seconds apart

    Work is admitted in submission order and may finish in any order. A task
    that raises only fails its own ``schedule`` call.
    """

    def __init__(self, max_per_second: Optional[float] = None, max_concurrent: int = 4, *, min_interval: Optional[float] = None) -> None:
        if min_interval is None:
            min_interval = 1.0 / max_per_second if max_per_second else 0.0
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.min_interval: float = float(min_interval)
        self.max_concurrent = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._pace_lock = asyncio.Lock()
        self._last_start: Optional[float] = None

    async def _wait_until_allowed(self) -> None:
        async with self._pace_lock:
            if self._last_start is not None:
                while (remaining := self._last_start + self.min_interval - _now()) > 0:
                    await asyncio.sleep(remaining)
            self._last_start = _now()

    async def schedule(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Run ``func(*args, **kwargs)`` once a slot and a pacing window are free."""
        async with self._semaphore:
            await self._wait_until_allowed()
            return await func(*args, **kwargs)

    async def map(
        self,
        func: Callable[[T], Awaitable[R]],
        items: Iterable[T],
        on_done: Optional[Callable[[T, Optional[R], Optional[BaseException]], None]] = None,
    ) -> List[Tuple[T, Optional[R], Optional[BaseException]]]:
        """
        Schedule ``func(item)`` for every item and collect ``(item, result, error)``.

        ``on_done`` is called once per finished task, one call at a time, so it
        can update shared counters without locking.
        """

        async def run(item: T) -> Tuple[T, Optional[R], Optional[BaseException]]:
            try:
                return item, await self.schedule(func, item), None
            except Exception as exc:
                return item, None, exc

        tasks = [asyncio.ensure_future(run(item)) for item in items]
        outcomes = []
        try:
            for future in asyncio.as_completed(tasks):
                outcome = await future
                if on_done is not None:
                    on_done(*outcome)
                outcomes.append(outcome)
        finally:
            # on_done raised or map was cancelled; stop the rest before leaving
            leftover = [task for task in tasks if not task.done()]
            for task in leftover:
                task.cancel()
            await asyncio.gather(*leftover, return_exceptions=True)
        return outcomes
