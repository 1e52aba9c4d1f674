"""
Run-scoped cancellation signal.

Cancelling before submission guarantees nothing is broadcast. Cancelling
after submission stops pending confirmation polls and any further network
calls, but CANNOT retract transactions already broadcast: the ledger may
still accept them. Re-scan afterwards to see what actually closed.

The signal may be created (and cancelled) outside the event loop; its
asyncio.Event is only created on first wait, inside the running loop.
"""

import asyncio
from typing import Optional


class RunCancellation:
    def __init__(self):
        self._cancelled = False
        self._event: Optional[asyncio.Event] = None
        self.reason = ""

    def cancel(self, reason: str = "cancelled by caller") -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self.reason = reason
        if self._event is not None:
            self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _get_event(self) -> asyncio.Event:
        if self._event is None:
            self._event = asyncio.Event()
            if self._cancelled:
                self._event.set()
        return self._event

    async def wait(self) -> None:
        await self._get_event().wait()

    async def sleep(self, delay: float) -> bool:
        """Sleep up to `delay` seconds; True if cancelled before it elapsed."""
        if self.cancelled:
            return True
        if delay <= 0:
            return False
        try:
            await asyncio.wait_for(self._get_event().wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True
