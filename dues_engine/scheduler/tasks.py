"""Cancellable asyncio tasks for debounced calls and bounded polling.

Both helpers return a ``TaskHandle`` whose ``cancel()`` must be called when the
owning view goes away, so no callback can fire for an abandoned session.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional

from dues_engine.logging_config import get_logger

logger = get_logger(__name__)


class TaskHandle:
    """Handle over a scheduled asyncio task."""

    def __init__(self, task: asyncio.Task, name: str = "task"):
        self._task = task
        self.name = name
        # Set by debounce once the delay has elapsed and the callback is running
        self.fired = False

    def cancel(self) -> bool:
        """Cancel the task if it has not finished. Returns True if a cancellation was requested."""
        if self._task.done():
            return False
        logger.debug(f"Cancelling {self.name}")
        return self._task.cancel()

    def cancel_pending(self) -> bool:
        """Cancel only while the debounce delay is still running.

        Once the callback has started it is left to finish. Returns True if a
        cancellation was requested.
        """
        if self.fired:
            return False
        return self.cancel()

    @property
    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled()

    async def wait(self) -> Any:
        """Wait for the task to finish; returns its result, or None if it was cancelled."""
        await asyncio.wait({self._task})
        if self._task.cancelled():
            return None
        return self._task.result()


def debounce(
    delay: float, callback: Callable[[], Awaitable[Any]], name: str = "debounce"
) -> TaskHandle:
    """Run ``callback`` after ``delay`` seconds unless the handle is cancelled first.

    Args:
        delay (float): Seconds to wait.
        callback (Callable[[], Awaitable]): Coroutine function to run.
        name (str): Label used in logs.

    Returns:
        TaskHandle: Handle for cancellation.
    """

    handle: Optional[TaskHandle] = None

    async def runner():
        await asyncio.sleep(delay)
        handle.fired = True
        return await callback()

    handle = TaskHandle(asyncio.get_running_loop().create_task(runner()), name)
    return handle


def poll_until(
    check: Callable[[], Awaitable[Any]],
    interval: float,
    max_attempts: int,
    on_complete: Optional[Callable[[Any], None]] = None,
    name: str = "poll",
) -> TaskHandle:
    """Call ``check`` every ``interval`` seconds until it returns a truthy value.

    Errors raised by ``check`` are logged and the poll continues. After
    ``max_attempts`` checks the poll ends quietly; the task result is then False.

    Args:
        check (Callable[[], Awaitable]): Status check; truthy result ends the poll.
        interval (float): Seconds between checks.
        max_attempts (int): Upper bound on the number of checks.
        on_complete (Optional[Callable]): Called with the truthy result.
        name (str): Label used in logs.

    Returns:
        TaskHandle: Handle for cancellation. The task result is True when
        ``check`` succeeded, False on timeout.
    """

    async def runner():
        for attempt in range(1, max_attempts + 1):
            await asyncio.sleep(interval)
            try:
                result = await check()
            except Exception:
                logger.warning(f"{name}: check {attempt}/{max_attempts} failed", exc_info=True)
                continue
            if result:
                logger.info(f"{name}: completed after {attempt} checks")
                if on_complete is not None:
                    on_complete(result)
                return True
        logger.info(f"{name}: gave up after {max_attempts} checks")
        return False

    return TaskHandle(asyncio.get_running_loop().create_task(runner()), name)
