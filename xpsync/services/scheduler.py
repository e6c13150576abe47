"""
Cancellable delayed execution on the running event loop.

Re-arming a DeferredTask cancels the previous pending run, so only the
latest scheduled callback fires. Once the delay has elapsed and the
callback started, the run is in flight and re-arming no longer cancels it.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[object]]


class DeferredTask:
    """A re-armable timer that awaits one coroutine callback when it fires."""

    def __init__(self, name: str = "deferred") -> None:
        self._name = name
        self._timer: Optional[asyncio.Task] = None
        self._callback: Optional[Callback] = None
        self._in_flight: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        """True while a run is scheduled but has not started."""
        return self._timer is not None and not self._timer.done()

    @property
    def in_flight(self) -> bool:
        return bool(self._in_flight)

    def arm(self, delay: float, callback: Callback) -> None:
        """Schedule callback after delay seconds, replacing any pending run."""
        self.cancel()
        self._callback = callback
        self._timer = asyncio.create_task(
            self._fire_after(delay, callback), name=f"{self._name}-timer"
        )

    def cancel(self) -> bool:
        """Cancel the pending run, if any. In-flight runs are not affected."""
        if not self.pending:
            return False
        assert self._timer is not None  # Guaranteed by pending check
        self._timer.cancel()
        self._timer = None
        self._callback = None
        return True

    async def run_now(self) -> bool:
        """Cancel the timer and await the pending callback immediately.

        Returns False if nothing was pending.
        """
        callback = self._callback
        if not self.pending or callback is None:
            return False
        self.cancel()
        await asyncio.create_task(self._execute(callback), name=f"{self._name}-run")
        return True

    async def wait(self) -> None:
        """Wait until the pending run (if any) and in-flight runs finish."""
        tasks = list(self._in_flight)
        if self._timer is not None:
            tasks.append(self._timer)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def aclose(self) -> None:
        """Cancel the pending run and let in-flight runs complete."""
        self.cancel()
        await self.wait()

    async def _fire_after(self, delay: float, callback: Callback) -> None:
        await asyncio.sleep(delay)
        # Past this point re-arming must not cancel the run
        self._timer = None
        self._callback = None
        await self._execute(callback)

    async def _execute(self, callback: Callback) -> None:
        current = asyncio.current_task()
        if current is not None:
            self._in_flight.add(current)
        try:
            await callback()
        except Exception:
            logger.exception("Deferred task '%s' failed", self._name)
        finally:
            if current is not None:
                self._in_flight.discard(current)
