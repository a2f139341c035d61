"""
Fixed Window Rate Limiter - Per-client admission control for audit requests.

Each client (usually identified by its IP address) may start a bounded number
of audits per fixed window. Counters reset at the end of the window rather
than sliding, and a background sweep drops quotas whose window has expired.

Design Pattern: Fixed Window Counter
"""

import asyncio
import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog


@dataclass
class RateLimitConfig:
    """Configuration for rate limiter"""
    max_requests: int = 100        # Audits allowed per client per window
    window_seconds: float = 3600.0  # Window length (1 hour)
    sweep_interval: Optional[float] = None  # Defaults to window_seconds


@dataclass
class ClientQuota:
    """Request count of one client inside its current window"""
    client_key: str
    count: int
    window_reset_at: float

    def expired(self, now: float) -> bool:
        return now >= self.window_reset_at


@dataclass
class AdmissionResult:
    """Outcome of a single admission check"""
    allowed: bool
    retry_after_seconds: Optional[int] = None


class RateLimiter:
    """
    Fixed window rate limiter keyed by client identifier.

    The quota map is the only state shared between concurrent audits, so the
    increment-and-compare step of every admission runs under one lock. Two
    simultaneous requests from the same client can never both take the last
    slot of a window.

    Example:
        >>> limiter = RateLimiter(RateLimitConfig(max_requests=2))
        >>> limiter.admit("203.0.113.7").allowed
        True
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the rate limiter.

        Args:
            config: Rate limit configuration (uses defaults if None)
            clock: Time source in seconds, injectable for tests
        """
        self.config = config or RateLimitConfig()
        self.clock = clock

        self._quotas: Dict[str, ClientQuota] = {}
        self._lock = threading.Lock()

        self.logger = structlog.get_logger(__name__)

        self.logger.info(
            "rate_limiter_initialized",
            max_requests=self.config.max_requests,
            window_seconds=self.config.window_seconds,
        )

    def admit(self, client_key: str) -> AdmissionResult:
        """
        Record a request from a client and decide whether it may proceed.

        Args:
            client_key: Client identifier (e.g. origin IP)

        Returns:
            AdmissionResult; rejected results carry the seconds left until
            the client's window resets
        """
        with self._lock:
            now = self.clock()
            quota = self._quotas.get(client_key)

            if quota is None or quota.expired(now):
                self._quotas[client_key] = ClientQuota(
                    client_key=client_key,
                    count=1,
                    window_reset_at=now + self.config.window_seconds,
                )
                return AdmissionResult(allowed=True)

            quota.count += 1
            if quota.count <= self.config.max_requests:
                return AdmissionResult(allowed=True)

            retry_after = max(1, math.ceil(quota.window_reset_at - now))

        self.logger.warning(
            "rate_limit_exceeded",
            client_key=client_key,
            count=quota.count,
            retry_after_seconds=retry_after,
        )
        return AdmissionResult(allowed=False, retry_after_seconds=retry_after)

    def sweep(self) -> int:
        """
        Drop quotas whose window has already expired.

        Returns:
            Number of quotas removed
        """
        with self._lock:
            now = self.clock()
            expired = [key for key, quota in self._quotas.items() if quota.expired(now)]
            for key in expired:
                del self._quotas[key]
            remaining = len(self._quotas)

        if expired:
            self.logger.debug("rate_limit_sweep", removed=len(expired), remaining=remaining)
        return len(expired)

    async def run_sweeper(self):
        """Sweep expired quotas periodically until cancelled"""
        interval = self.config.sweep_interval or self.config.window_seconds
        self.logger.info("rate_limit_sweeper_started", interval=interval)

        while True:
            await asyncio.sleep(interval)
            self.sweep()

    def get_quota(self, client_key: str) -> Optional[ClientQuota]:
        """Return a snapshot of a client's quota, if tracked"""
        with self._lock:
            quota = self._quotas.get(client_key)
            if quota is None:
                return None
            return ClientQuota(quota.client_key, quota.count, quota.window_reset_at)

    def reset(self):
        """Forget every tracked client"""
        with self._lock:
            self._quotas.clear()

        self.logger.info("rate_limiter_reset")

    def get_stats(self) -> dict:
        """
        Get rate limiter statistics.

        Returns:
            Dictionary with current statistics
        """
        with self._lock:
            tracked = len(self._quotas)

        return {
            "tracked_clients": tracked,
            "config": {
                "max_requests": self.config.max_requests,
                "window_seconds": self.config.window_seconds,
            },
        }
