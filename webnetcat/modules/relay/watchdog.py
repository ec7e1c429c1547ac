import asyncio
import logging
from datetime import UTC, datetime
from typing import Optional

logger = logging.getLogger("webnetcat.relay.watchdog")


class IdleWatchdog:
    def __init__(self, timeout: float):
        """
        Initialize idle watchdog.

        Args:
            timeout: Seconds of inactivity before the watchdog expires

        One timer handle per watchdog. touch() only moves the deadline; when
        the handle fires early it re-arms itself for the remaining time.
        """
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self.timeout = timeout
        self.last_activity: Optional[datetime] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._deadline = 0.0
        self._expired = asyncio.Event()
        self._cancelled = False

    def start(self) -> None:
        """Arm the timer. Must be called from within the event loop."""
        if self._loop is not None:
            raise RuntimeError("Watchdog already started")
        if self._cancelled:
            raise RuntimeError("Watchdog was cancelled")
        self._loop = asyncio.get_running_loop()
        self.touch()
        self._handle = self._loop.call_at(self._deadline, self._check)

    def touch(self) -> None:
        """Record activity, pushing the deadline out by a full timeout."""
        self.last_activity = datetime.now(UTC)
        if self._loop is not None:
            self._deadline = self._loop.time() + self.timeout

    def _check(self) -> None:
        self._handle = None
        if self._cancelled:
            return
        remaining = self._deadline - self._loop.time()
        if remaining > 0:
            self._handle = self._loop.call_at(self._deadline, self._check)
            return
        logger.debug(f"Idle watchdog expired after {self.timeout}s")
        self._expired.set()

    async def wait(self) -> None:
        """Wait until the watchdog expires."""
        await self._expired.wait()

    def cancel(self) -> None:
        """Disarm the timer. Safe to call more than once."""
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    @property
    def expired(self) -> bool:
        return self._expired.is_set()
