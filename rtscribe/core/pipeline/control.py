"""Coordination primitives shared by a session's tasks and timers.

Everything here runs on a single asyncio event loop, which serialises the
mutations coming from the receiver, the sender, the timers and the caller.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, List, Optional

from ...logging import get_logger
from ..errors import CANCELLED_MESSAGE

LOGGER = get_logger(__name__)


class SessionControl:
    """Caller-side cancellation handle.

    ``cancel`` may be called at any point of the lifecycle and any number of
    times; only the first call notifies the registered sessions.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: Optional[str] = None
        self._callbacks: List[Callable[[str], None]] = []

    def cancel(self, reason: str = CANCELLED_MESSAGE) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self._reason = reason
        for callback in list(self._callbacks):
            try:
                callback(reason)
            except Exception:  # pragma: no cover - callbacks should not break cancellation
                LOGGER.exception("Cancellation callback raised an exception")

    def cancel_threadsafe(self, loop: asyncio.AbstractEventLoop, reason: str = CANCELLED_MESSAGE) -> None:
        loop.call_soon_threadsafe(self.cancel, reason)

    def add_callback(self, callback: Callable[[str], None]) -> None:
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[str], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> Optional[str]:
        return self._reason


class SessionOutcome:
    """Single-assignment result cell; later assignments are ignored."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        loop = loop or asyncio.get_running_loop()
        self._future: "asyncio.Future[Any]" = loop.create_future()

    def resolve(self, value: Any) -> bool:
        if self._future.done():
            return False
        self._future.set_result(value)
        return True

    def reject(self, error: BaseException) -> bool:
        if self._future.done():
            return False
        self._future.set_exception(error)
        return True

    def done(self) -> bool:
        return self._future.done()

    def result(self) -> Any:
        return self._future.result()

    async def wait(self) -> None:
        """Wait for assignment without cancelling the cell when the waiter is cancelled."""

        await asyncio.wait([self._future])

    @property
    def future(self) -> "asyncio.Future[Any]":
        return self._future


class StartGate:
    """Single-fire gate guarding the transition into streaming.

    Several triggers race for the same transition: the connection opening, a
    server "started" acknowledgment and a grace-period timer. Only the first
    trigger runs ``action``; firing cancels the armed timer.
    """

    def __init__(self, action: Callable[[str], None]) -> None:
        self._action = action
        self._fired = False
        self._trigger: Optional[str] = None
        self._timer: Optional[asyncio.TimerHandle] = None

    def arm(self, delay: float, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        if self._fired:
            return
        self._cancel_timer()
        loop = loop or asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self.fire, "timer")

    def fire(self, trigger: str) -> bool:
        if self._fired:
            return False
        self._fired = True
        self._trigger = trigger
        self._cancel_timer()
        self._action(trigger)
        return True

    def close(self) -> None:
        """Disarm without running the action."""

        self._fired = True
        self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    @property
    def fired(self) -> bool:
        return self._fired

    @property
    def trigger(self) -> Optional[str]:
        return self._trigger

    @property
    def armed(self) -> bool:
        return self._timer is not None


__all__ = ["SessionControl", "SessionOutcome", "StartGate"]
