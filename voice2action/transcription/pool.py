"""Bounded pool of pre-authenticated transcription sessions."""

import asyncio
import itertools
import logging
import time
from collections import deque
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Deque, Dict, List, Optional, Set

from ..errors import PoolExhaustedError

logger = logging.getLogger(__name__)

SLOW_ACQUISITION_MS = 50.0


@dataclass
class PooledConnection:
    """One pooled client session plus its health bookkeeping."""
    id: str
    session: Any
    created_at: float = field(default_factory=time.time)
    last_used: float = field(default_factory=time.time)
    healthy: bool = True
    request_count: int = 0
    consecutive_failures: int = 0  # Request failures
    health_failures: int = 0       # Failed health pings


class ConnectionPool:
    """Fixed-size pool partitioned into available and active handles.

    All bookkeeping happens between awaits, so handing out a handle is atomic
    with respect to other coroutines on the same loop.
    """

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        health_check: Optional[Callable[[Any], Awaitable[bool]]] = None,
        pool_size: int = 5,
        acquire_timeout: float = 5.0,
        health_check_interval: float = 60.0,
        max_health_failures: int = 2,
        max_request_failures: int = 3,
    ):
        """Initialize connection pool.

        Args:
            connection_factory: Creates a new session (e.g. ``backend.create_session``)
            health_check: Async probe returning True for a usable session
            pool_size: Number of sessions kept open
            acquire_timeout: Seconds ``acquire`` waits before giving up
            health_check_interval: Seconds between health sweeps, 0 disables them
            max_health_failures: Consecutive failed pings before a session is replaced
            max_request_failures: Consecutive failed requests before a session is replaced
        """
        if pool_size < 1:
            raise ValueError("pool_size must be at least 1")
        self.connection_factory = connection_factory
        self.health_check = health_check
        self.pool_size = pool_size
        self.acquire_timeout = acquire_timeout
        self.health_check_interval = health_check_interval
        self.max_health_failures = max_health_failures
        self.max_request_failures = max_request_failures

        self._ids = itertools.count(1)
        self._connections: Dict[str, PooledConnection] = {}
        self._available: Deque[PooledConnection] = deque()
        self._active: Dict[str, PooledConnection] = {}
        self._waiters: Deque[asyncio.Future] = deque()
        self._closing_tasks: Set[asyncio.Task] = set()
        self._monitor_task: Optional[asyncio.Task] = None
        self._started = False
        self._closed = False

        self.total_requests = 0
        self.failed_requests = 0
        self._acquisition_times: Deque[float] = deque(maxlen=100)

    async def start(self) -> None:
        """Open all sessions and start the health monitor."""
        if self._started:
            return
        for _ in range(self.pool_size):
            self._available.append(self._create_connection())
        self._started = True
        if self.health_check and self.health_check_interval > 0:
            self._monitor_task = asyncio.ensure_future(self._health_monitor())
        logger.info(f"Connection pool started with {self.pool_size} connections")

    def _create_connection(self) -> PooledConnection:
        handle = PooledConnection(id=f"conn-{next(self._ids)}", session=self.connection_factory())
        self._connections[handle.id] = handle
        return handle

    async def acquire(self) -> PooledConnection:
        """Reserve a healthy connection.

        Returns:
            The reserved handle; pass it back to ``release`` when done

        Raises:
            PoolExhaustedError: If no healthy handle frees up within ``acquire_timeout``
        """
        if not self._started:
            await self.start()

        loop = asyncio.get_running_loop()
        started = time.perf_counter()
        deadline = loop.time() + self.acquire_timeout

        while True:
            if self._closed:
                raise PoolExhaustedError("Connection pool is shut down")

            while self._available:
                handle = self._available.popleft()
                if handle.healthy:
                    return self._reserve(handle, started)
                self._replace(handle)

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise PoolExhaustedError(
                    f"No healthy connection available after {self.acquire_timeout}s",
                    {"active": len(self._active), "pool_size": self.pool_size},
                )

            waiter = loop.create_future()
            self._waiters.append(waiter)
            try:
                await asyncio.wait_for(waiter, timeout=remaining)
            except asyncio.TimeoutError:
                raise PoolExhaustedError(
                    f"No healthy connection available after {self.acquire_timeout}s",
                    {"active": len(self._active), "pool_size": self.pool_size},
                ) from None
            except asyncio.CancelledError:
                # Pass a wakeup we may have consumed on to the next waiter
                if self._available:
                    self._notify_waiter()
                raise
            finally:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)

    def _reserve(self, handle: PooledConnection, started: float) -> PooledConnection:
        self._active[handle.id] = handle
        handle.last_used = time.time()

        elapsed_ms = (time.perf_counter() - started) * 1000
        self._acquisition_times.append(elapsed_ms)
        if elapsed_ms > SLOW_ACQUISITION_MS:
            logger.warning(f"Slow connection acquisition: {elapsed_ms:.1f}ms ({handle.id})")
        return handle

    def release(self, handle: PooledConnection) -> None:
        """Return a handle. Unhealthy handles are retired and replaced."""
        if self._active.pop(handle.id, None) is None:
            logger.warning(f"Release of unknown connection ignored: {handle.id}")
            return

        handle.last_used = time.time()
        if self._closed:
            self._close_later(handle)
            return
        if handle.healthy:
            self._available.append(handle)
        else:
            logger.info(f"Retiring unhealthy connection {handle.id}")
            self._replace(handle)
        self._notify_waiter()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[PooledConnection]:
        """Acquire a handle for the duration of a ``async with`` block."""
        handle = await self.acquire()
        try:
            yield handle
        finally:
            self.release(handle)

    def record_success(self, handle: PooledConnection) -> None:
        self.total_requests += 1
        handle.request_count += 1
        handle.consecutive_failures = 0

    def record_failure(self, handle: PooledConnection) -> None:
        self.total_requests += 1
        self.failed_requests += 1
        handle.request_count += 1
        handle.consecutive_failures += 1
        if handle.consecutive_failures >= self.max_request_failures and handle.healthy:
            handle.healthy = False
            logger.warning(f"Connection {handle.id} marked unhealthy after "
                           f"{handle.consecutive_failures} failed requests")

    def _notify_waiter(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return

    def _replace(self, handle: PooledConnection) -> None:
        """Swap ``handle`` for a fresh connection placed in ``available``."""
        self._connections.pop(handle.id, None)
        replacement = self._create_connection()
        self._available.append(replacement)
        self._close_later(handle)
        logger.debug(f"Replaced connection {handle.id} with {replacement.id}")

    def _close_later(self, handle: PooledConnection) -> None:
        self._connections.pop(handle.id, None)
        task = asyncio.ensure_future(self._close_session(handle))
        self._closing_tasks.add(task)
        task.add_done_callback(self._closing_tasks.discard)

    async def _close_session(self, handle: PooledConnection) -> None:
        close = getattr(handle.session, "close", None)
        if close is None:
            return
        try:
            result = close()
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.warning(f"Error closing connection {handle.id}: {e}")

    async def check_all_connections_health(self) -> Dict[str, bool]:
        """Ping every connection and replace idle ones that keep failing.

        Returns:
            Mapping of connection id to ping outcome
        """
        if self.health_check is None:
            return {}

        results: Dict[str, bool] = {}
        for handle in list(self._connections.values()):
            try:
                ok = bool(await self.health_check(handle.session))
            except Exception as e:
                logger.warning(f"Health check error on {handle.id}: {e}")
                ok = False

            if handle.id not in self._connections:
                continue  # Retired while we were waiting
            results[handle.id] = ok
            if ok:
                handle.health_failures = 0
            else:
                handle.health_failures += 1
                if handle.health_failures >= self.max_health_failures and handle.healthy:
                    handle.healthy = False
                    logger.warning(f"Connection {handle.id} failed {handle.health_failures} health checks")

        idle_unhealthy = [h for h in self._available if not h.healthy]
        for handle in idle_unhealthy:
            self._available.remove(handle)
            self._replace(handle)
        if idle_unhealthy:
            self._notify_waiter()
        return results

    async def _health_monitor(self) -> None:
        while not self._closed:
            await asyncio.sleep(self.health_check_interval)
            try:
                await self.check_all_connections_health()
            except Exception as e:
                logger.error(f"Health sweep failed: {e}")

    def get_stats(self) -> Dict[str, Any]:
        live = list(self._available) + list(self._active.values())
        average_ms = (sum(self._acquisition_times) / len(self._acquisition_times)
                      if self._acquisition_times else 0.0)
        return {
            "total_connections": len(live),
            "available": len(self._available),
            "active": len(self._active),
            "healthy": sum(1 for h in live if h.healthy),
            "total_requests": self.total_requests,
            "failed_requests": self.failed_requests,
            "average_acquisition_time_ms": round(average_ms, 2),
        }

    async def shutdown(self) -> None:
        """Stop monitoring, fail pending waiters and close every session."""
        if self._closed:
            return
        self._closed = True

        if self._monitor_task is not None:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)

        # Active handles are closed when their holders release them
        handles: List[PooledConnection] = list(self._available)
        self._available.clear()
        for handle in handles:
            self._connections.pop(handle.id, None)
            await self._close_session(handle)
        if self._closing_tasks:
            await asyncio.gather(*self._closing_tasks, return_exceptions=True)
        logger.info("Connection pool shut down")
