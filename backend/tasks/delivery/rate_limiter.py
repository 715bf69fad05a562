# backend/tasks/delivery/rate_limiter.py - EMAIL PROVIDER PACING QUEUE
"""
Single-flight pacing queue for outbound email provider calls.

Resend accepts 2 requests per second. Every task submitted to a limiter is
dispatched in FIFO order by one drain loop, and consecutive dispatches are
at least `min_delay_ms` apart (550 ms, ~1.8 requests per second). The gap is
measured from dispatch start, so a slow task neither banks credit for the
next one nor adds extra throttling on top of the minimum gap.
"""
import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Sequence, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

MIN_DELAY_MS = 550

ProgressCallback = Callable[[int, int], None]


class RateLimiter:
    """Paces asynchronous operations through a FIFO queue with a minimum gap"""

    def __init__(self, min_delay_ms: int = MIN_DELAY_MS, name: str = "resend"):
        self.name = name
        self.min_delay_ms = min_delay_ms
        self._queue: Deque[Tuple[Callable[[], Awaitable[Any]], asyncio.Future]] = deque()
        self._processing = False
        self._last_request_time: Optional[float] = None
        self._drain_task: Optional[asyncio.Task] = None
        self._dispatched_count = 0
        self._failed_count = 0

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def is_processing(self) -> bool:
        return self._processing

    @property
    def last_request_time(self) -> Optional[float]:
        """Monotonic timestamp of the most recent dispatch"""
        return self._last_request_time

    @property
    def dispatched_count(self) -> int:
        return self._dispatched_count

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Queue `fn` and wait for its outcome.

        Only `fn`'s own exception is propagated; queuing never fails.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        self._queue.append((fn, future))

        # Check-and-set with no await in between keeps a single drain loop
        if not self._processing:
            self._processing = True
            self._drain_task = loop.create_task(self._process_queue())

        return await future

    async def _process_queue(self) -> None:
        try:
            while self._queue:
                await self._wait_for_slot()

                fn, future = self._queue.popleft()
                self._last_request_time = time.monotonic()
                self._dispatched_count += 1

                try:
                    result = await fn()
                except asyncio.CancelledError:
                    future.cancel()
                    raise
                except Exception as e:
                    self._failed_count += 1
                    if not future.done():
                        future.set_exception(e)
                else:
                    if not future.done():
                        future.set_result(result)
        except asyncio.CancelledError:
            pending = len(self._queue)
            while self._queue:
                _, future = self._queue.popleft()
                future.cancel()
            logger.warning(f"Rate limiter '{self.name}' drain loop cancelled, {pending} queued tasks dropped")
            raise
        finally:
            self._processing = False
            self._drain_task = None

    async def claim_slot(self) -> None:
        """Wait out the minimum gap and stamp a provider call made by a running task.

        For tasks that call the provider more than once, such as retries.
        """
        await self._wait_for_slot()
        self._last_request_time = time.monotonic()

    async def _wait_for_slot(self) -> None:
        if self._last_request_time is None:
            return

        elapsed_ms = (time.monotonic() - self._last_request_time) * 1000
        if elapsed_ms < self.min_delay_ms:
            await asyncio.sleep((self.min_delay_ms - elapsed_ms) / 1000)

    async def process_with_rate_limit(
        self,
        items: Sequence[T],
        processor: Callable[[T], Awaitable[R]],
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[R]:
        """Run `processor` over `items` one at a time through the queue.

        Results keep input order. The first processor failure aborts the
        remaining items and propagates; wrap the processor to tolerate
        partial failures.
        """
        results: List[R] = []
        total = len(items)
        completed = 0

        for item in items:
            result = await self.execute(lambda item=item: processor(item))
            results.append(result)
            completed += 1

            if on_progress:
                on_progress(completed, total)

        return results

    def stats(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "min_delay_ms": self.min_delay_ms,
            "queue_size": self.queue_size,
            "processing": self._processing,
            "dispatched": self._dispatched_count,
            "failed": self._failed_count,
            "requests_per_second": round(1000 / self.min_delay_ms, 2) if self.min_delay_ms else None,
        }
