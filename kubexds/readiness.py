"""
Readiness gate.

Polls a backend until a fresh connection answers a ping or the wait budget is
spent. Retries back off exponentially (base 2 s, doubling, capped at 10 s) with
uniform +/-25% jitter so several processes on one host do not retry in step.
"""

import asyncio
import math
import random
import time
from typing import Awaitable, Callable, Optional, Union

import structlog

from .drivers.registry import DriverFactory
from .errors import ConnectFailed, NotReady, PingFailed
from .schemas.stack_v1 import DBConfig

logger = structlog.get_logger()

Probe = Callable[[], Awaitable[bool]]

BACKOFF_BASE = 2.0
BACKOFF_CAP = 10.0
BACKOFF_JITTER = 0.25
MIN_ATTEMPTS = 3
MAX_ATTEMPTS = 15
DEFAULT_ATTEMPT_TIMEOUT = 5.0


def backoff_delay(
    attempt: int,
    base: float = BACKOFF_BASE,
    cap: float = BACKOFF_CAP,
    jitter: float = BACKOFF_JITTER,
    rng: Optional[random.Random] = None,
) -> float:
    """Delay before retry number ``attempt`` (1-based)."""
    uniform = (rng or random).uniform
    raw = min(base * 2 ** max(attempt - 1, 0), cap)
    return raw * uniform(1 - jitter, 1 + jitter)


def max_attempts_for(max_wait: float, base: float = BACKOFF_BASE) -> int:
    """Attempt budget for ``max_wait`` seconds, clamped to [3, 15]."""
    wanted = math.ceil(max_wait / base) if max_wait > 0 else 0
    return max(MIN_ATTEMPTS, min(MAX_ATTEMPTS, wanted))


def driver_probe(
    factory: DriverFactory,
    target: Union[DBConfig, str],
    ping_timeout: float = DEFAULT_ATTEMPT_TIMEOUT,
) -> Probe:
    """Probe that opens a short-lived driver, pings it and always closes it."""

    async def probe() -> bool:
        driver = factory()
        driver.ping_timeout = ping_timeout
        try:
            if isinstance(target, str):
                await driver.connect_dsn(target)
            else:
                await driver.connect(target)
            return await driver.ping()
        finally:
            await driver.close()

    return probe


class ReadinessGate:
    """Bounded retry loop around a probe."""

    def __init__(
        self,
        probe: Probe,
        max_wait: float,
        attempt_timeout: float = DEFAULT_ATTEMPT_TIMEOUT,
        service: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        rng: Optional[random.Random] = None,
    ):
        self.probe = probe
        self.max_wait = max_wait
        self.attempt_timeout = attempt_timeout
        self.service = service
        self.max_attempts = max_attempts_for(max_wait)
        self._sleep = sleep
        self._clock = clock
        self._rng = rng
        self.logger = logger.bind(service=service)

    async def wait(self) -> int:
        """Return the attempt number that succeeded.

        Raises:
            NotReady: every attempt failed or the deadline passed.
            ConfigInvalid: the probe target cannot be reached as configured.
        """
        deadline = self._clock() + self.max_wait
        attempt = 0
        while attempt < self.max_attempts:
            attempt += 1
            if await self._attempt(attempt):
                self.logger.info("backend_ready", attempt=attempt)
                return attempt

            remaining = deadline - self._clock()
            if attempt >= self.max_attempts or remaining <= 0:
                break
            delay = min(backoff_delay(attempt, rng=self._rng), remaining)
            self.logger.debug("readiness_retry", attempt=attempt, delay=round(delay, 3))
            await self._sleep(delay)

        self.logger.warning("backend_not_ready", attempts=attempt, max_wait=self.max_wait)
        raise NotReady(
            f"not ready after {attempt} attempt(s) within {self.max_wait:g}s",
            self.service,
            attempts=attempt,
        )

    async def _attempt(self, attempt: int) -> bool:
        try:
            return bool(await asyncio.wait_for(self.probe(), timeout=self.attempt_timeout))
        except asyncio.TimeoutError:
            self.logger.debug("readiness_attempt_timeout", attempt=attempt)
        except (ConnectFailed, PingFailed) as e:
            self.logger.debug("readiness_attempt_failed", attempt=attempt, error=str(e))
        return False


async def wait_ready(
    factory: DriverFactory,
    target: Union[DBConfig, str],
    max_wait: float,
    attempt_timeout: float = DEFAULT_ATTEMPT_TIMEOUT,
    service: Optional[str] = None,
) -> int:
    """Block until ``target`` accepts connections; see ``ReadinessGate.wait``."""
    probe = driver_probe(factory, target, ping_timeout=attempt_timeout)
    gate = ReadinessGate(probe, max_wait, attempt_timeout=attempt_timeout, service=service)
    return await gate.wait()
