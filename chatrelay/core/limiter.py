import asyncio
import threading
import time
from typing import Callable, Dict, Optional

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from chatrelay.core.config import settings
from chatrelay.core.logging import logger


# Request Limiter Configuration
# Coarse per-IP ceilings for every route, applied through SlowAPIMiddleware.
# The chat cooldown below is a separate, much tighter gate on exchanges.
def build_request_limiter() -> Limiter:
    return Limiter(
        key_func=get_remote_address,
        default_limits=list(settings.RATE_LIMIT_DEFAULT),
    )


def client_key(request: Request) -> str:
    """Network identity of the caller, used when no session id is known."""
    return get_remote_address(request) or "anonymous"


# Chat Cooldown
class CooldownRateLimiter:
    """
    Per-key cooldown gate. A key is accepted at most once per cooldown window.

    The key -> last-accepted map is the only hot shared structure in the process,
    so every lookup+update runs under one lock, and so does the sweep.
    Losing the map (restart) only resets cooldowns.
    """

    def __init__(
        self,
        cooldown_seconds: float = settings.CHAT_COOLDOWN_SECONDS,
        sweep_interval_seconds: float = settings.RATE_LIMIT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.cooldown_seconds = cooldown_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._last_accepted: Dict[str, float] = {}
        self._lock = threading.Lock()
        self._sweeper: Optional[asyncio.Task] = None

    def allow(self, key: str) -> bool:
        """
        Accept `key` if its last accepted call is older than the cooldown window.

        Returns:
            bool: True (and records now) if accepted, False without touching state otherwise
        """
        with self._lock:
            now = self._clock()
            last = self._last_accepted.get(key)
            if last is not None and now - last < self.cooldown_seconds:
                return False
            self._last_accepted[key] = now
            return True

    def sweep(self) -> int:
        """Drop entries idle for longer than the cooldown window. Returns how many were removed."""
        with self._lock:
            now = self._clock()
            stale = [k for k, ts in self._last_accepted.items() if now - ts > self.cooldown_seconds]
            for key in stale:
                del self._last_accepted[key]
        if stale:
            logger.debug("rate_limit_sweep", removed=len(stale), remaining=len(self))
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_accepted)

    async def _run_sweeper(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            self.sweep()

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._run_sweeper(), name="rate-limit-sweeper")
            logger.info("rate_limit_sweeper_started",
                        cooldown_seconds=self.cooldown_seconds,
                        interval_seconds=self.sweep_interval_seconds)

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
        logger.info("rate_limit_sweeper_stopped")
