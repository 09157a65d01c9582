"""
Cooperative scheduling for bounded rounds of codec work

A RoundTask wraps a step function `step(limit) -> bool` that processes at
most `limit` units of input and reports whether any input remains. Instead
of the step rescheduling itself recursively, the task re-queues one tick
per round on a Scheduler (or yields to asyncio between rounds), so a bulk
operation is spread over as many ticks as it needs.
"""

import asyncio
import logging
from collections import deque
from typing import Any, Callable, Deque, Optional, Tuple

logger = logging.getLogger(__name__)


class Scheduler:
    """FIFO run loop; every executed callback counts as one tick"""

    def __init__(self):
        self._queue: Deque[Tuple[Callable[..., Any], tuple]] = deque()
        self.ticks = 0

    def call_soon(self, callback: Callable[..., Any], *args) -> None:
        self._queue.append((callback, args))

    @property
    def pending(self) -> int:
        return len(self._queue)

    def run_once(self) -> bool:
        """Run one queued callback; returns False when the queue was empty"""
        if not self._queue:
            return False
        callback, args = self._queue.popleft()
        self.ticks += 1
        callback(*args)
        return True

    def run_until_idle(self) -> int:
        """Drain the queue, including callbacks queued while draining

        Returns:
            Number of ticks executed by this call
        """
        start = self.ticks
        while self.run_once():
            pass
        return self.ticks - start


class RoundTask:
    """
    Drive a step function one bounded round per scheduler tick

    Args:
        step: Callable taking the round limit, returning True while input remains
        limit: Maximum units of work per round
        on_finish: Internal completion hook run before the task is marked done
        on_done: Caller continuation, called with the finished task
        name: Label used in log messages
        on_start: Called once when the task is started, before the first round
        on_error: Called when a round raises; the exception is re-raised after it
    """

    def __init__(self, step: Callable[[int], bool], limit: int,
                 on_finish: Optional[Callable[[], None]] = None,
                 on_done: Optional[Callable[['RoundTask'], None]] = None,
                 name: str = "round-task",
                 on_start: Optional[Callable[[], None]] = None,
                 on_error: Optional[Callable[[BaseException], None]] = None):
        if limit < 1:
            raise ValueError("round limit has to be at least 1")
        self._step = step
        self.limit = limit
        self._on_finish = on_finish
        self._on_done = on_done
        self._on_start = on_start
        self._on_error = on_error
        self.name = name
        self.rounds = 0
        self.started = False
        self.done = False
        self.error: Optional[BaseException] = None

    @property
    def failed(self) -> bool:
        return self.error is not None

    def _begin(self) -> None:
        if self.started:
            raise RuntimeError(f"{self.name} already started")
        if self._on_start is not None:
            self._on_start()
        self.started = True

    def start(self, scheduler: Scheduler) -> 'RoundTask':
        self._begin()
        scheduler.call_soon(self._tick, scheduler)
        return self

    def _tick(self, scheduler: Scheduler) -> None:
        if self._advance():
            scheduler.call_soon(self._tick, scheduler)

    def _advance(self) -> bool:
        """Run one round; returns True if another round is needed"""
        self.rounds += 1
        try:
            more = self._step(self.limit)
            if not more and self._on_finish is not None:
                self._on_finish()
        except Exception as exc:
            self.error = exc
            logger.debug("%s: round %d failed: %r", self.name, self.rounds, exc)
            if self._on_error is not None:
                self._on_error(exc)
            raise
        if more:
            logger.debug("%s: round %d done, rescheduling", self.name, self.rounds)
            return True
        self.done = True
        logger.debug("%s: finished after %d round(s)", self.name, self.rounds)
        if self._on_done is not None:
            self._on_done(self)
        return False

    def run(self) -> 'RoundTask':
        """Run every round to completion on a private scheduler"""
        scheduler = Scheduler()
        self.start(scheduler)
        scheduler.run_until_idle()
        return self

    async def run_async(self) -> 'RoundTask':
        """Run every round, handing control back to the event loop in between"""
        self._begin()
        while self._advance():
            await asyncio.sleep(0)
        return self
