"""
Async utilities for the single-threaded cooperative scheduler.

Both the client and the server run one asyncio loop. Engine callbacks are
plain synchronous methods invoked on the loop thread; anything that waits on
the network or the disk is scheduled as a task on that loop.

Usage:
    from core.async_utils import spawn, LoopScheduler

    # Fire-and-forget from a sync callback running inside the loop
    task = spawn(poller.run())

    # Delayed callback
    LoopScheduler().call_later(0.5, push_state)
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Optional, Protocol, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def spawn(coro: Coroutine[Any, Any, T]) -> Optional["asyncio.Task[T]"]:
    """
    Schedule a coroutine as a task in the running event loop.

    If there's no running event loop, the coroutine is closed and None is
    returned without error.

    Args:
        coro: The coroutine to schedule

    Returns:
        The created task, or None if no event loop is running
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("No running event loop, dropping %s", getattr(coro, "__name__", coro))
        coro.close()
        return None
    return loop.create_task(coro)


class Scheduler(Protocol):
    """Timer scheduling used by the client state machine."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Any:
        ...


class LoopScheduler:
    """Scheduler backed by the running asyncio loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Optional[asyncio.TimerHandle]:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, timer of %.2fs dropped", delay)
            return None
        return loop.call_later(delay, callback)
